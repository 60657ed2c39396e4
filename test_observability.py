"""
Observability Validation Test

This test validates the observability stack:
1. Metrics collection works (run/record/retry/timing metrics)
2. Structured logging with correlation IDs works
3. Run-level metric events persist to SQLite when a database is configured
"""

import json
import logging
import sqlite3
from datetime import datetime

import pytest


def test_observability_imports():
    """Verify all observability modules import correctly."""
    from core.observability import (
        MetricsCollector, get_metrics,
        record_run_started, record_run_completed, record_run_failed,
        record_retry, record_processing_time,
        get_logger, CorrelationContext, with_correlation,
    )
    assert MetricsCollector is not None
    assert get_metrics is not None
    assert CorrelationContext is not None


class TestMetricsCollector:
    """Test the metrics collection system."""

    def test_singleton_instance(self):
        """MetricsCollector returns same instance."""
        from core.observability.metrics import MetricsCollector, get_metrics
        m1 = MetricsCollector.instance()
        m2 = MetricsCollector.instance()
        assert m1 is m2
        assert get_metrics() is m1

    def test_run_metrics_tracking(self):
        """Track run started/completed/partial/failed counts."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector()

        mc.record_run_started("item", "execute")
        mc.record_run_started("item", "execute")
        mc.record_run_started("supplier", "push")
        mc.record_run_completed("item", "execute", duration_ms=120)
        mc.record_run_completed("item", "execute", duration_ms=80, partial=True)
        mc.record_run_failed("supplier", "push", "authentication failed")

        summary = mc.get_summary()
        assert summary["runs"]["started"] == 3
        assert summary["runs"]["completed"] == 1
        assert summary["runs"]["partial"] == 1
        assert summary["runs"]["failed"] == 1
        assert summary["runs"]["in_progress"] == 0
        assert summary["runs"]["by_run"]["item.execute"] == {
            "started": 2, "completed": 1, "partial": 1, "failed": 0,
        }
        assert summary["timings"]["by_stage"]["run.item.execute"]["average_ms"] == 100

    def test_record_metrics_tracking(self):
        """Per-record outcomes accumulate overall and per entity."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector()

        mc.record_records("item", created=3, updated=1)
        mc.record_records("item", unchanged=5, failed=2)
        mc.record_records("supplier", created=1)

        summary = mc.get_summary()["records"]
        assert summary["created"] == 4
        assert summary["failed"] == 2
        assert summary["by_entity"]["item"] == {"created": 3, "updated": 1, "unchanged": 5, "failed": 2}

    def test_retry_tracking(self):
        """Track retry outcomes per sync type."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector()

        mc.record_retry("goods_receipt", "attempted")
        mc.record_retry("goods_receipt", "succeeded")
        mc.record_retry("pull", "refused")

        summary = mc.get_summary()["retries"]
        assert summary["attempted"] == 1
        assert summary["succeeded"] == 1
        assert summary["refused"] == 1
        assert summary["by_sync_type"]["goods_receipt"]["succeeded"] == 1

    def test_timing_percentile_calculation(self):
        """Calculate p95 timing correctly."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        # Add 100 samples: 1-100ms to a unique stage
        test_stage = f"test_stage_{datetime.now().timestamp()}"
        for i in range(1, 101):
            mc.record_processing_time(test_stage, i)

        stats = mc.get_timing_stats(test_stage)

        assert 49 <= stats["average_ms"] <= 52
        assert 93 <= stats["p95_ms"] <= 97
        assert stats["sample_count"] == 100

    def test_run_events_persist(self, tmp_path):
        """Run-level events are written to metrics_snapshots."""
        from core.observability.metrics import MetricsCollector
        db_path = tmp_path / "metrics.db"
        mc = MetricsCollector(db_path=db_path)

        mc.record_run_started("purchase_order", "execute")
        mc.record_run_completed("purchase_order", "execute", partial=True)
        mc.record_run_failed("item", "push", "timed out")

        conn = sqlite3.connect(str(db_path))
        rows = conn.execute(
            "SELECT metric_type, metric_name, labels FROM metrics_snapshots ORDER BY id"
        ).fetchall()
        conn.close()

        assert [(r[0], r[1]) for r in rows] == [("run", "partial"), ("run", "failed")]
        assert json.loads(rows[1][2]) == {"run": "item.push", "error": "timed out"}


class TestCorrelatedLogging:
    """Test structured logging with correlation IDs."""

    def test_correlation_context_creation(self):
        """Create correlation context and drop unset fields."""
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(sync_run_id="run-123", entity_type="item", mode="execute")

        assert ctx.to_dict() == {"sync_run_id": "run-123", "entity_type": "item", "mode": "execute"}
        assert ctx.merge(reference_id="A-1").to_dict()["reference_id"] == "A-1"

    def test_context_var_isolation(self):
        """with_correlation restores the previous context on exit."""
        from core.observability.logging import get_correlation_context, with_correlation

        assert get_correlation_context().sync_run_id is None

        with with_correlation(sync_run_id="run-1", entity_type="supplier"):
            with with_correlation(reference_id="S1"):
                inner = get_correlation_context()
                assert inner.sync_run_id == "run-1"
                assert inner.reference_id == "S1"
            assert get_correlation_context().reference_id is None

        assert get_correlation_context().sync_run_id is None

    def test_structured_formatter_json_output(self):
        """StructuredFormatter outputs valid JSON with the correlation IDs."""
        from core.observability.logging import StructuredFormatter, with_correlation

        formatter = StructuredFormatter()

        with with_correlation(sync_run_id="run-9", entity_type="purchase_order"):
            record = logging.LogRecord(
                name="reconciliation.orchestrator",
                level=logging.INFO,
                pathname="orchestrator.py",
                lineno=10,
                msg="Execute %s complete",
                args=("purchase order",),
                exc_info=None,
            )
            record.extra_fields = {"created": 4}

            data = json.loads(formatter.format(record))

        assert data["message"] == "Execute purchase order complete"
        assert data["sync_run_id"] == "run-9"
        assert data["entity_type"] == "purchase_order"
        assert data["created"] == 4
        assert data["level"] == "INFO"

    def test_human_readable_formatter(self):
        """HumanReadableFormatter tags the line with entity and run id."""
        from core.observability.logging import HumanReadableFormatter, with_correlation

        with with_correlation(sync_run_id="abcdef123456", entity_type="item"):
            record = logging.LogRecord("core", logging.WARNING, "x.py", 1, "drift", (), None)
            line = HumanReadableFormatter().format(record)

        assert "drift" in line
        assert "item" in line

    def test_get_logger_is_cached(self):
        from core.observability.logging import get_logger

        assert get_logger("reconciliation.test") is get_logger("reconciliation.test")
        assert get_logger("reconciliation.test").name == "reconciliation.test"


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
