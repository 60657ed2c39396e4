"""Sync log models - the durable audit trail of every AutoCount sync attempt."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Status of one sync attempt.

    PENDING only while an AutoCount call is outstanding; every attempt ends in
    exactly one of the terminal statuses.
    """
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self != SyncStatus.PENDING


class SyncType(str, Enum):
    """Operation recorded by a sync log entry.

    Every member must have a retry handler in reconciliation.retry.
    """
    PULL = "pull"
    PUSH = "push"
    CREATE = "create"
    UPDATE = "update"
    PRODUCTION_COMPLETE = "production_complete"
    GOODS_RECEIPT = "goods_receipt"
    GRN = "grn"
    STOCK_ADJUSTMENT = "stock_adjustment"


class ReferenceType(str, Enum):
    """What a sync log entry's reference_id points at."""
    INVENTORY = "inventory"
    SUPPLIER = "supplier"
    PURCHASE_ORDER = "purchase_order"
    STOCK_MOVEMENT = "stock_movement"


class SyncLogEntry(BaseModel):
    """One row of the ``autocount_sync_log`` collection.

    Attributes:
        id: Log entry id
        reference_id: Local record id, natural key, or run marker (e.g. "inventory_pull")
        reference_type: Entity class of the reference
        sync_type: Operation name; stored as plain text so unknown values
            written by older code are still readable
        sync_status: pending / success / failed / partial
        autocount_doc_no: Document number returned by AutoCount, if any
        error_message: Last error; per-record errors joined with "; " for runs
        retry_count: Number of retries dispatched for this entry
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    reference_id: str
    reference_type: str
    sync_type: str
    sync_status: SyncStatus = SyncStatus.PENDING
    autocount_doc_no: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    synced_at: Optional[datetime] = None


def new_sync_log_entry(
    reference_id: str,
    reference_type: ReferenceType,
    sync_type: SyncType,
    sync_status: SyncStatus,
    error_message: Optional[str] = None,
    autocount_doc_no: Optional[str] = None,
) -> SyncLogEntry:
    """Create a log entry stamped with the current time."""
    now = datetime.utcnow()
    return SyncLogEntry(
        reference_id=reference_id,
        reference_type=reference_type.value,
        sync_type=sync_type.value,
        sync_status=sync_status,
        error_message=error_message,
        autocount_doc_no=autocount_doc_no,
        created_at=now,
        updated_at=now,
        synced_at=now if sync_status.is_terminal else None,
    )
