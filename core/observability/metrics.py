"""
Metrics Collection for the AutoCount Sync Engine

Collects and exposes metrics for:
- Sync runs (started, completed, partial, failed) per entity class and mode
- Records (created, updated, unchanged, failed) per entity class
- Retries (attempted, succeeded, failed, refused) per sync type
- Run durations (average, p95)

Metrics are stored in-memory, with optional SQLite persistence of run-level
events when a database path is configured.
"""

import json
import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Any
import statistics

logger = logging.getLogger(__name__)


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RunMetrics:
    """Metrics for sync runs."""
    started: int = 0
    completed: int = 0
    partial: int = 0
    failed: int = 0
    in_progress: int = 0

    # By "<entity>.<mode>"
    by_run: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "partial": 0, "failed": 0})
    )


@dataclass
class RecordMetrics:
    """Per-record outcomes of execute/push runs."""
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0

    by_entity: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"created": 0, "updated": 0, "unchanged": 0, "failed": 0})
    )


@dataclass
class RetryMetrics:
    """Retry dispatcher outcomes."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    refused: int = 0   # nothing to retry / already in progress

    by_sync_type: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"attempted": 0, "succeeded": 0, "failed": 0, "refused": 0})
    )


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    # By stage
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for sync runs.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_run_started("item", "execute")
        metrics.record_records("item", created=3, updated=1, failed=0)
        metrics.record_run_completed("item", "execute", duration_ms=1500)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self, db_path: Optional[Path] = None):
        self.runs = RunMetrics()
        self.records = RecordMetrics()
        self.retries = RetryMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()
        self.db_path = db_path

        if self.db_path:
            self._init_db()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def _init_db(self):
        """Initialize metrics table in database."""
        conn = sqlite3.connect(str(self.db_path))
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS metrics_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    metric_type TEXT NOT NULL,
                    metric_name TEXT NOT NULL,
                    metric_value REAL NOT NULL,
                    labels TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_time
                ON metrics_snapshots(metric_type, timestamp)
            """)
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Run Metrics
    # =========================================================================

    def record_run_started(self, entity_type: str, mode: str):
        """Record a sync run start."""
        key = f"{entity_type}.{mode}"
        with self._lock:
            self.runs.started += 1
            self.runs.in_progress += 1
            self.runs.by_run[key]["started"] += 1

    def record_run_completed(self, entity_type: str, mode: str, duration_ms: float = None, partial: bool = False):
        """Record a run that reached its aggregate log entry."""
        key = f"{entity_type}.{mode}"
        with self._lock:
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            if partial:
                self.runs.partial += 1
                self.runs.by_run[key]["partial"] += 1
            else:
                self.runs.completed += 1
                self.runs.by_run[key]["completed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"run.{key}")

        self._persist_metric("run", "partial" if partial else "completed", 1, {"run": key})

    def record_run_failed(self, entity_type: str, mode: str, error: str = None):
        """Record a run-level failure (authentication or fetch)."""
        key = f"{entity_type}.{mode}"
        with self._lock:
            self.runs.failed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.by_run[key]["failed"] += 1

        self._persist_metric("run", "failed", 1, {"run": key, "error": error})

    # =========================================================================
    # Record Metrics
    # =========================================================================

    def record_records(self, entity_type: str, created: int = 0, updated: int = 0,
                       unchanged: int = 0, failed: int = 0):
        """Add per-record outcomes of one run."""
        with self._lock:
            self.records.created += created
            self.records.updated += updated
            self.records.unchanged += unchanged
            self.records.failed += failed
            bucket = self.records.by_entity[entity_type]
            bucket["created"] += created
            bucket["updated"] += updated
            bucket["unchanged"] += unchanged
            bucket["failed"] += failed

    # =========================================================================
    # Retry Metrics
    # =========================================================================

    def record_retry(self, sync_type: str, outcome: str):
        """Record a retry outcome: attempted, succeeded, failed or refused."""
        with self._lock:
            setattr(self.retries, outcome, getattr(self.retries, outcome) + 1)
            self.retries.by_sync_type[sync_type][outcome] += 1

        if outcome != "attempted":
            self._persist_metric("retry", outcome, 1, {"sync_type": sync_type})

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "runs": {
                    "started": self.runs.started,
                    "completed": self.runs.completed,
                    "partial": self.runs.partial,
                    "failed": self.runs.failed,
                    "in_progress": self.runs.in_progress,
                    "by_run": {k: dict(v) for k, v in self.runs.by_run.items()},
                },
                "records": {
                    "created": self.records.created,
                    "updated": self.records.updated,
                    "unchanged": self.records.unchanged,
                    "failed": self.records.failed,
                    "by_entity": {k: dict(v) for k, v in self.records.by_entity.items()},
                },
                "retries": {
                    "attempted": self.retries.attempted,
                    "succeeded": self.retries.succeeded,
                    "failed": self.retries.failed,
                    "refused": self.retries.refused,
                    "by_sync_type": {k: dict(v) for k, v in self.retries.by_sync_type.items()},
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist_metric(self, metric_type: str, metric_name: str, value: float, labels: Dict = None):
        """Persist a metric to the database, when one is configured."""
        if not self.db_path:
            return
        try:
            conn = sqlite3.connect(str(self.db_path))
            try:
                conn.execute("""
                    INSERT INTO metrics_snapshots (timestamp, metric_type, metric_name, metric_value, labels)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    datetime.utcnow().isoformat(),
                    metric_type,
                    metric_name,
                    value,
                    json.dumps(labels) if labels else None,
                ))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            # Metrics persistence must not fail a sync run
            logger.warning(f"Metrics persistence failed: {e}")


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_run_started(entity_type: str, mode: str):
    """Record a sync run start."""
    get_metrics().record_run_started(entity_type, mode)


def record_run_completed(entity_type: str, mode: str, duration_ms: float = None, partial: bool = False):
    """Record a sync run completion."""
    get_metrics().record_run_completed(entity_type, mode, duration_ms, partial)


def record_run_failed(entity_type: str, mode: str, error: str = None):
    """Record a run-level sync failure."""
    get_metrics().record_run_failed(entity_type, mode, error)


def record_retry(sync_type: str, outcome: str):
    """Record a retry outcome."""
    get_metrics().record_retry(sync_type, outcome)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
