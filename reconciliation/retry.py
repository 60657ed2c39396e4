"""Retry dispatcher.

Replays one logged sync attempt. The entry is looked up by log id or by
reference id, claimed with a conditional status transition (failed/partial
-> pending) so two retries cannot both dispatch it, and handed to the handler
registered for its sync type. Handlers always re-read the referenced data
from the local store; nothing is replayed from the log itself.

Every SyncType member must have a handler; the table is checked when this
module is imported.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from connectors.autocount.ac_models import ACStockAdjustment
from connectors.erp_base import ERPError
from core.audit.sync_log import SyncLogBackend
from core.mapping.engine import MappingError
from core.models.records import ExecuteResult, ReportModel
from core.models.stock import StockMovement
from core.models.sync_log import (
    ReferenceType,
    SyncLogEntry,
    SyncStatus,
    SyncType,
    new_sync_log_entry,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector, get_metrics
from reconciliation.entities import SPECS_BY_REFERENCE, EntitySpec
from reconciliation.errors import (
    MappingFailure,
    PersistenceFailure,
    ReferenceNotFound,
    SyncError,
    SyncLogNotFound,
    UnknownSyncTypeError,
    translate_remote_error,
)
from reconciliation.orchestrator import SyncOrchestrator, connected_session, push_record
from storage.local_store import COMPONENTS, STOCK_MOVEMENTS, StoreError

logger = get_logger(__name__)


class RetryStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NOTHING_TO_RETRY = "nothing_to_retry"
    IN_PROGRESS = "in_progress"


class RetryResult(ReportModel):
    """Outcome of one retry (or first attempt) of a logged sync."""
    success: bool
    status: RetryStatus
    sync_log_id: str
    remote_doc_no: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0


@dataclass
class HandlerOutcome:
    """What a handler reports back to the dispatcher."""
    status: SyncStatus = SyncStatus.SUCCESS
    doc_no: Optional[str] = None
    error: Optional[str] = None


Handler = Callable[["RetryDispatcher", SyncLogEntry], Awaitable[HandlerOutcome]]


# =============================================================================
# Stock movement handlers
# =============================================================================

# sync type -> (AutoCount reason, forced direction; None = by quantity sign)
MOVEMENT_REASONS = {
    SyncType.PRODUCTION_COMPLETE: ("Production", "IN"),
    SyncType.GOODS_RECEIPT: ("GoodsReceipt", "IN"),
    SyncType.GRN: ("GoodsReceipt", "IN"),
    SyncType.STOCK_ADJUSTMENT: ("Adjustment", None),
}


def build_adjustment(
    movement: StockMovement,
    item_code: str,
    sync_type: SyncType,
    location: str,
) -> ACStockAdjustment:
    """AutoCount stock adjustment document for one ledger movement."""
    reason, direction = MOVEMENT_REASONS[sync_type]
    quantity = movement.quantity or Decimal("0")
    if direction is None:
        direction = "IN" if quantity >= 0 else "OUT"
    return ACStockAdjustment(
        ItemCode=item_code,
        Location=location,
        AdjustmentType=direction,
        Quantity=abs(quantity),
        Description=movement.notes or f"{reason} {movement.movement_type}",
        Reason=reason,
        DocDate=movement.created_at.date() if movement.created_at else date.today(),
    )


async def _push_movement(dispatcher: "RetryDispatcher", entry: SyncLogEntry) -> HandlerOutcome:
    store = dispatcher.store
    row = store.get_record(STOCK_MOVEMENTS, entry.reference_id)
    if row is None:
        raise ReferenceNotFound(f"stock movement {entry.reference_id} not found")
    movement = StockMovement.model_validate(row)
    if movement.autocount_synced:
        # Already posted by an earlier attempt that lost its log update
        return HandlerOutcome(doc_no=movement.autocount_doc_no)

    item = store.get_record(COMPONENTS, movement.item_id)
    item_code = (item.get("autocount_item_code") or item.get("sku")) if item else None
    if not item_code:
        raise MappingFailure(movement.id, f"item {movement.item_id} has no AutoCount item code")

    async with connected_session(dispatcher.connector_factory) as erp:
        adjustment = build_adjustment(
            movement,
            item_code,
            SyncType(entry.sync_type),
            erp.config.custom_settings.get("location", "MAIN"),
        )
        try:
            result = await erp.post_stock_adjustment(adjustment.model_dump(by_alias=True))
        except ERPError as e:
            raise translate_remote_error(e, "stock adjustment for item", item_code) from e

    try:
        store.mark_movement_synced(movement.id, result.remote_id)
    except StoreError as e:
        raise PersistenceFailure(
            movement.id,
            f"posted to AutoCount as {result.remote_id} but local update failed: {e}",
            adjustment.model_dump(by_alias=True, mode="json"),
        )
    return HandlerOutcome(doc_no=result.remote_id)


# =============================================================================
# Single-record handlers
# =============================================================================

def _spec_for(entry: SyncLogEntry) -> EntitySpec:
    spec = SPECS_BY_REFERENCE.get(entry.reference_type)
    if spec is None:
        raise UnknownSyncTypeError(
            f"cannot retry {entry.sync_type} for reference type {entry.reference_type}"
        )
    return spec


async def _push_one(dispatcher: "RetryDispatcher", entry: SyncLogEntry) -> HandlerOutcome:
    spec = _spec_for(entry)
    store = dispatcher.store
    record = store.get_record(spec.collection, entry.reference_id)
    if record is None:
        for name in spec.mapper.key_local_fields:
            record = store.find_one(spec.collection, **{name: entry.reference_id})
            if record is not None:
                break
    if record is None:
        raise ReferenceNotFound(f"{spec.label} {entry.reference_id} not found locally")

    async with connected_session(dispatcher.connector_factory) as erp:
        pushed = await push_record(erp, spec, store, record)
    return HandlerOutcome(doc_no=pushed.remote_id)


# =============================================================================
# Whole-run handlers
# =============================================================================

def _run_outcome(result: ExecuteResult) -> HandlerOutcome:
    if result.failed == 0:
        return HandlerOutcome()
    return HandlerOutcome(status=SyncStatus.PARTIAL, error="; ".join(result.errors))


async def _rerun_pull(dispatcher: "RetryDispatcher", entry: SyncLogEntry) -> HandlerOutcome:
    spec = _spec_for(entry)
    return _run_outcome(await dispatcher.orchestrator.execute(spec.entity_type, write_log=False))


async def _rerun_push(dispatcher: "RetryDispatcher", entry: SyncLogEntry) -> HandlerOutcome:
    spec = _spec_for(entry)
    return _run_outcome(await dispatcher.orchestrator.push(spec.entity_type, write_log=False))


RETRY_HANDLERS: Dict[SyncType, Handler] = {
    SyncType.PULL: _rerun_pull,
    SyncType.PUSH: _rerun_push,
    SyncType.CREATE: _push_one,
    SyncType.UPDATE: _push_one,
    SyncType.PRODUCTION_COMPLETE: _push_movement,
    SyncType.GOODS_RECEIPT: _push_movement,
    SyncType.GRN: _push_movement,
    SyncType.STOCK_ADJUSTMENT: _push_movement,
}

_unhandled = set(SyncType) - set(RETRY_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No retry handler for sync types: {sorted(t.value for t in _unhandled)}")


# =============================================================================
# Dispatcher
# =============================================================================

class RetryDispatcher:
    """Replays logged sync attempts through the handler table.

    Args:
        orchestrator: Used by the whole-run handlers; its connector factory,
            store and sync log are shared with the dispatcher
        metrics: Metrics collector (defaults to the global one)
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.orchestrator = orchestrator
        self.connector_factory = orchestrator.connector_factory
        self.store = orchestrator.store
        self.sync_log: SyncLogBackend = orchestrator.sync_log
        self.metrics = metrics or get_metrics()
        self._locks = weakref.WeakKeyDictionary()

    @asynccontextmanager
    async def _entry_lock(self, entry_id: str):
        """Hold the per-entry lock; the slot is dropped when its last user leaves."""
        locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        slot = locks.get(entry_id)
        if slot is None:
            slot = locks[entry_id] = [asyncio.Lock(), 0]
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                del locks[entry_id]

    @staticmethod
    def _handler_for(entry: SyncLogEntry) -> Handler:
        try:
            return RETRY_HANDLERS[SyncType(entry.sync_type)]
        except (ValueError, KeyError):
            raise UnknownSyncTypeError(f"Unknown sync type: {entry.sync_type}")

    async def retry(self, ref: str) -> RetryResult:
        """Retry one logged attempt by log id or reference id.

        Returns NOTHING_TO_RETRY for an entry already in ``success`` and
        IN_PROGRESS when another retry holds the entry; neither touches
        AutoCount.

        Raises:
            SyncLogNotFound: No entry matches ``ref``
            UnknownSyncTypeError: Entry's sync type has no handler
        """
        entry = self.sync_log.resolve(ref)
        if entry is None:
            raise SyncLogNotFound(f"No sync log entry for {ref}")

        async with self._entry_lock(entry.id):
            with with_correlation(sync_log_id=entry.id, reference_id=entry.reference_id):
                # Re-read under the lock; a retry that just finished changed it
                entry = self.sync_log.get(entry.id) or entry
                if entry.sync_status == SyncStatus.SUCCESS:
                    logger.info(f"Nothing to retry: {entry.sync_type} {entry.reference_id} already succeeded")
                    self.metrics.record_retry(entry.sync_type, "refused")
                    return RetryResult(
                        success=False,
                        status=RetryStatus.NOTHING_TO_RETRY,
                        sync_log_id=entry.id,
                        remote_doc_no=entry.autocount_doc_no,
                        error="nothing to retry",
                        retry_count=entry.retry_count,
                    )

                handler = self._handler_for(entry)
                claimed = self.sync_log.compare_and_set(
                    entry.id,
                    {SyncStatus.FAILED, SyncStatus.PARTIAL},
                    {"sync_status": SyncStatus.PENDING, "retry_count": entry.retry_count + 1},
                )
                if claimed is None:
                    logger.warning(f"Retry refused: {entry.sync_type} {entry.reference_id} is already in progress")
                    self.metrics.record_retry(entry.sync_type, "refused")
                    return RetryResult(
                        success=False,
                        status=RetryStatus.IN_PROGRESS,
                        sync_log_id=entry.id,
                        error="retry already in progress",
                        retry_count=entry.retry_count,
                    )

                logger.info(f"Retrying {claimed.sync_type} {claimed.reference_id} (attempt {claimed.retry_count})")
                return await self._dispatch(claimed, handler)

    async def submit(
        self,
        sync_type: SyncType,
        reference_type: ReferenceType,
        reference_id: str,
    ) -> RetryResult:
        """First attempt of a single-record sync, logged like a retry.

        Writes a pending entry, runs the handler, and leaves the entry in a
        terminal status so a failure can be retried later by its id.
        """
        handler = RETRY_HANDLERS[SyncType(sync_type)]
        entry = self.sync_log.append(new_sync_log_entry(
            reference_id=reference_id,
            reference_type=ReferenceType(reference_type),
            sync_type=SyncType(sync_type),
            sync_status=SyncStatus.PENDING,
        ))
        with with_correlation(sync_log_id=entry.id, reference_id=reference_id):
            return await self._dispatch(entry, handler)

    async def _dispatch(self, entry: SyncLogEntry, handler: Handler) -> RetryResult:
        """Run the handler and move the pending entry to a terminal status."""
        self.metrics.record_retry(entry.sync_type, "attempted")
        try:
            outcome = await handler(self, entry)
        except (SyncError, ERPError, StoreError, MappingError) as e:
            outcome = HandlerOutcome(status=SyncStatus.FAILED, error=str(e))
        except Exception as e:
            self._settle(entry, HandlerOutcome(status=SyncStatus.FAILED, error=f"unexpected error: {e}"))
            raise

        settled = self._settle(entry, outcome)
        succeeded = outcome.status == SyncStatus.SUCCESS
        self.metrics.record_retry(entry.sync_type, "succeeded" if succeeded else "failed")
        if succeeded:
            logger.info(f"Sync {entry.sync_type} {entry.reference_id} succeeded (doc no {outcome.doc_no})")
        else:
            logger.warning(f"Sync {entry.sync_type} {entry.reference_id} {outcome.status.value}: {outcome.error}")

        return RetryResult(
            success=succeeded,
            status=RetryStatus(outcome.status.value),
            sync_log_id=entry.id,
            remote_doc_no=settled.autocount_doc_no if settled else outcome.doc_no,
            error=outcome.error,
            retry_count=settled.retry_count if settled else entry.retry_count,
        )

    def _settle(self, entry: SyncLogEntry, outcome: HandlerOutcome) -> Optional[SyncLogEntry]:
        updates = {
            "sync_status": outcome.status,
            "error_message": outcome.error,
            "synced_at": datetime.utcnow(),
        }
        if outcome.doc_no:
            updates["autocount_doc_no"] = outcome.doc_no
        return self.sync_log.compare_and_set(entry.id, {SyncStatus.PENDING}, updates)
