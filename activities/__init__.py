"""Activity definitions module."""

from activities.sync import (
    preview_entity,
    execute_entity,
    push_entity,
    retry_sync,
    valuate_item,
    build_valuation_report,
    EntitySyncInput,
    PreviewOutput,
    ExecuteOutput,
    RetrySyncInput,
    ValuationInput,
)

__all__ = [
    # Sync activities
    "preview_entity",
    "execute_entity",
    "push_entity",
    "retry_sync",
    # Valuation activities
    "valuate_item",
    "build_valuation_report",
    # Inputs / outputs
    "EntitySyncInput",
    "PreviewOutput",
    "ExecuteOutput",
    "RetrySyncInput",
    "ValuationInput",
]
