"""
Observability Module for the AutoCount Sync Engine

Provides:
- Structured logging with correlation IDs (sync run, entity, log entry)
- Metrics collection (runs, records, retries, durations)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_run_started,
    record_run_completed,
    record_run_failed,
    record_retry,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_run_started",
    "record_run_completed",
    "record_run_failed",
    "record_retry",
    "record_processing_time",
    # Logging
    "get_logger",
    "CorrelationContext",
    "with_correlation",
]
