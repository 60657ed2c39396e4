"""Sync record models - entity classes, diff results and run reports.

These models are shared by the diff engine, the sync orchestrator and the
upward-facing surfaces (API routes, Temporal activities). Report models
serialize with camelCase aliases (``toCreate``, ``noChange``) so callers get
the same shape regardless of which surface they use.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EntityType(str, Enum):
    """Entity classes mirrored between the local store and AutoCount."""
    ITEM = "item"
    SUPPLIER = "supplier"
    PURCHASE_ORDER = "purchase_order"


class SyncDirection(str, Enum):
    """Which side is the source of truth for a run."""
    PULL = "pull"   # AutoCount -> local store
    PUSH = "push"   # local store -> AutoCount


class SyncAction(str, Enum):
    """Classification of one remote/local record pair."""
    CREATE = "create"
    UPDATE = "update"
    NONE = "none"
    SKIP = "skip"   # record could not be mapped; carries an error


class ReportModel(BaseModel):
    """Base for models returned to callers."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldChange(ReportModel):
    """Old/new pair for one field of a change set."""
    old: Any = None
    new: Any = None


class RecordChange(ReportModel):
    """Diff result for one record.

    ``changes`` is the change set: for ``create`` it holds every mapped field
    (old is always None), for ``update`` only the fields that differ, and it is
    empty for ``none``.
    """
    action: SyncAction
    key: str = Field(..., description="Natural key (item code, supplier code, doc no)")
    label: Optional[str] = Field(default=None, description="Display name of the record")
    local_id: Optional[str] = None
    changes: Dict[str, FieldChange] = Field(default_factory=dict)
    error: Optional[str] = None

    # Remote record translated to the local shape; used by execute, never serialized
    local_shape: Dict[str, Any] = Field(default_factory=dict, exclude=True)
    remote: Dict[str, Any] = Field(default_factory=dict, exclude=True)


class PreviewSummary(ReportModel):
    total: int = 0
    to_create: int = 0
    to_update: int = 0
    no_change: int = 0
    skipped: int = 0


class PreviewReport(ReportModel):
    """Read-only diff report for one entity class."""
    entity_type: EntityType
    summary: PreviewSummary = Field(default_factory=PreviewSummary)
    changes: List[RecordChange] = Field(default_factory=list)

    @classmethod
    def from_changes(cls, entity_type: EntityType, changes: List[RecordChange]) -> "PreviewReport":
        summary = PreviewSummary(
            total=len(changes),
            to_create=sum(1 for c in changes if c.action == SyncAction.CREATE),
            to_update=sum(1 for c in changes if c.action == SyncAction.UPDATE),
            no_change=sum(1 for c in changes if c.action == SyncAction.NONE),
            skipped=sum(1 for c in changes if c.action == SyncAction.SKIP),
        )
        return cls(entity_type=entity_type, summary=summary, changes=changes)

    @property
    def has_work(self) -> bool:
        return self.summary.to_create > 0 or self.summary.to_update > 0


class ExecuteResult(ReportModel):
    """Aggregate outcome of an execute or push run.

    ``needs_reconcile`` lists natural keys whose remote call succeeded but whose
    local write failed; those records are out of sync until fixed by hand or
    by a retry.
    """
    entity_type: EntityType
    direction: SyncDirection = SyncDirection.PULL
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    needs_reconcile: List[str] = Field(default_factory=list)
    sync_log_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failed == 0
