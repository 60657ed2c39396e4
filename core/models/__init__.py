"""Core data models - ERP-neutral sync, audit and stock types.

This package contains the models shared by the sync engine, the retry
dispatcher and the valuation engine. AutoCount wire shapes live in
/connectors/autocount/.
"""

from core.models.records import (
    EntityType,
    SyncDirection,
    SyncAction,
    FieldChange,
    RecordChange,
    PreviewSummary,
    PreviewReport,
    ExecuteResult,
)
from core.models.sync_log import (
    SyncStatus,
    SyncType,
    ReferenceType,
    SyncLogEntry,
    new_sync_log_entry,
)
from core.models.stock import (
    DecimalValue,
    MovementType,
    StockMovement,
    ValuationStatus,
    ValuationBatch,
    ItemValuation,
    ValuationReport,
    OnHandCheck,
)

__all__ = [
    # Records
    "EntityType",
    "SyncDirection",
    "SyncAction",
    "FieldChange",
    "RecordChange",
    "PreviewSummary",
    "PreviewReport",
    "ExecuteResult",
    # Sync log
    "SyncStatus",
    "SyncType",
    "ReferenceType",
    "SyncLogEntry",
    "new_sync_log_entry",
    # Stock
    "DecimalValue",
    "MovementType",
    "StockMovement",
    "ValuationStatus",
    "ValuationBatch",
    "ItemValuation",
    "ValuationReport",
    "OnHandCheck",
]
