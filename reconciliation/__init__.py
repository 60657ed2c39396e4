"""AutoCount reconciliation: diff, sync runs, retries and FIFO valuation."""

from reconciliation.diff import classify, diff_all
from reconciliation.entities import ENTITY_SPECS, EntitySpec, get_entity_spec
from reconciliation.orchestrator import SyncOrchestrator, push_record
from reconciliation.retry import RetryDispatcher, RetryResult, RetryStatus
from reconciliation.valuation import ValuationEngine, allocate_fifo

__all__ = [
    "classify",
    "diff_all",
    "ENTITY_SPECS",
    "EntitySpec",
    "get_entity_spec",
    "SyncOrchestrator",
    "push_record",
    "RetryDispatcher",
    "RetryResult",
    "RetryStatus",
    "ValuationEngine",
    "allocate_fifo",
]
