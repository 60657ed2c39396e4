"""Sync orchestrator.

Drives the preview -> execute lifecycle for one entity class:

    authenticate -> fetch remote + local -> classify every remote record
      preview: return the report (no mutation, no log entry)
      execute: apply each create/update independently, then write exactly
               one aggregate sync log entry

The push variant reverses roles: iterate local records, create each one in
AutoCount and fall back to an update when the create is rejected.

Execute and push runs for one entity class are serialized by a per-class
lock; per-record work inside a run fans out under a semaphore.
"""

import asyncio
import time
import uuid
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from connectors.erp_base import ERPConnector, ERPError, ERPNotFoundError, RemoteWriteResult
from core.audit.sync_log import SyncLogBackend
from core.mapping.engine import MappingError
from core.models.records import (
    EntityType,
    ExecuteResult,
    PreviewReport,
    RecordChange,
    SyncAction,
    SyncDirection,
)
from core.models.sync_log import SyncLogEntry, SyncStatus, SyncType, new_sync_log_entry
from core.observability.logging import (
    get_logger,
    log_run_complete,
    log_run_error,
    log_run_start,
    with_correlation,
)
from core.observability.metrics import MetricsCollector, get_metrics
from reconciliation.diff import diff_all
from reconciliation.entities import Context, EntitySpec, get_entity_spec
from reconciliation.errors import (
    AuthenticationFailure,
    FetchFailure,
    MappingFailure,
    PersistenceFailure,
    RemoteOperationFailure,
    SyncError,
    translate_remote_error,
)
from storage.local_store import LocalStore, StoreError

logger = get_logger(__name__)

ConnectorFactory = Callable[[], ERPConnector]

# Per-record outcome labels
CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
FAILED = "failed"


@dataclass
class RecordOutcome:
    """Result of applying one record inside a run."""
    key: str
    outcome: str
    error: Optional[str] = None
    needs_reconcile: bool = False


@dataclass
class PushOutcome:
    """Result of pushing one local record to AutoCount."""
    key: str
    action: SyncAction
    remote_id: Optional[str] = None


def run_reference(spec: EntitySpec, direction: SyncDirection) -> str:
    """Reference id of a run-level log entry, e.g. "inventory_pull"."""
    return f"{spec.reference_type.value}_{direction.value}"


@asynccontextmanager
async def connected_session(connector_factory: ConnectorFactory):
    """One authenticated connector for the duration of one run.

    Raises:
        AuthenticationFailure: Login rejected or host unreachable
    """
    erp = connector_factory()
    try:
        await erp.connect()
    except ERPError as e:
        await erp.disconnect()
        raise AuthenticationFailure(f"AutoCount authentication failed: {e}") from e
    try:
        yield erp
    finally:
        await erp.disconnect()


# =============================================================================
# Single-record push (shared with the retry dispatcher)
# =============================================================================

async def push_record(
    erp: ERPConnector,
    spec: EntitySpec,
    store: LocalStore,
    record: Dict[str, Any],
) -> PushOutcome:
    """Create one local record in AutoCount, falling back to an update.

    Any create rejection (including "already exists") triggers the update
    fallback; a successful fallback is reported as UPDATE. On success the
    local record is stamped ``autocount_synced`` / ``last_synced_at``.

    Raises:
        MappingFailure: Record cannot be translated (e.g. has no natural key)
        RemoteOperationFailure: Both create and update were rejected
        PersistenceFailure: AutoCount accepted the record but the local
            stamp could not be written
    """
    mapper = spec.mapper
    try:
        payload = mapper.to_remote_shape(spec.load_for_push(store, record))
    except MappingError as e:
        raise MappingFailure(e.key, str(e))
    key = str(payload[mapper.key_remote_field])

    try:
        result: RemoteWriteResult = await erp.create_record(spec.entity_type, payload)
        action = SyncAction.CREATE
    except ERPError as create_error:
        logger.info(
            f"Create rejected for {mapper.label} {key}, falling back to update: {create_error}",
            extra_fields={"status_code": create_error.status_code},
        )
        try:
            result = await erp.update_record(spec.entity_type, key, payload)
            action = SyncAction.UPDATE
        except ERPNotFoundError:
            # Update target missing: the create error is the real cause
            raise translate_remote_error(create_error, mapper.label, key) from create_error
        except ERPError as update_error:
            raise translate_remote_error(update_error, mapper.label, key) from update_error

    stamp: Dict[str, Any] = {"autocount_synced": True, "last_synced_at": datetime.utcnow()}
    if spec.remote_id_field and not record.get(spec.remote_id_field) and result.remote_id:
        stamp[spec.remote_id_field] = result.remote_id
    try:
        store.update_record(spec.collection, record["id"], stamp)
    except StoreError as e:
        raise PersistenceFailure(key, f"pushed to AutoCount but local update failed: {e}", payload)

    return PushOutcome(key=key, action=action, remote_id=result.remote_id or key)


# =============================================================================
# Orchestrator
# =============================================================================

class SyncOrchestrator:
    """Generic preview/execute/push driver for every entity class.

    Args:
        connector_factory: Builds a fresh, unconnected connector; called once
            per run so the login is never reused across runs
        store: Local record store
        sync_log: Sync log backend
        max_concurrency: Parallel per-record operations within one run
        metrics: Metrics collector (defaults to the global one)
    """

    def __init__(
        self,
        connector_factory: ConnectorFactory,
        store: LocalStore,
        sync_log: SyncLogBackend,
        max_concurrency: int = 5,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.connector_factory = connector_factory
        self.store = store
        self.sync_log = sync_log
        self.max_concurrency = max(1, max_concurrency)
        self.metrics = metrics or get_metrics()
        # asyncio locks bind to one event loop; keep one set per loop
        self._locks = weakref.WeakKeyDictionary()

    def _run_lock(self, entity_type: EntityType) -> asyncio.Lock:
        locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        if entity_type not in locks:
            locks[entity_type] = asyncio.Lock()
        return locks[entity_type]

    # =========================================================================
    # Run plumbing
    # =========================================================================

    def _connected(self):
        return connected_session(self.connector_factory)

    async def _fetch_remote(self, erp: ERPConnector, spec: EntitySpec) -> List[Dict[str, Any]]:
        try:
            return await erp.list_records(spec.entity_type)
        except ERPError as e:
            raise FetchFailure(f"Failed to fetch {spec.label}s from AutoCount: {e}") from e

    def _fetch_local(self, spec: EntitySpec) -> Tuple[List[Dict[str, Any]], Context]:
        try:
            return self.store.list_records(spec.collection), spec.build_context(self.store)
        except StoreError as e:
            raise FetchFailure(f"Failed to read local {spec.collection}: {e}") from e

    def _classify(
        self,
        spec: EntitySpec,
        local: List[Dict[str, Any]],
        remote: List[Dict[str, Any]],
        context: Context,
    ) -> List[RecordChange]:
        """Diff every remote record, then resolve foreign keys for creates."""
        changes = diff_all(spec.mapper, local, remote)
        for i, change in enumerate(changes):
            if change.action != SyncAction.CREATE:
                continue
            try:
                resolved = spec.resolve(change.local_shape, context)
            except MappingError as e:
                changes[i] = RecordChange(
                    action=SyncAction.SKIP,
                    key=change.key,
                    label=change.label,
                    error=f"{change.key}: {e}",
                    remote=change.remote,
                )
                continue
            change.local_shape = {**change.local_shape, **resolved}
        return changes

    async def _fan_out(self, jobs: List[Callable[[], Awaitable[RecordOutcome]]]) -> List[RecordOutcome]:
        """Run per-record jobs concurrently; results keep job order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(job):
            async with semaphore:
                return await job()

        return list(await asyncio.gather(*(run(job) for job in jobs)))

    def _write_entry(self, entry: SyncLogEntry, write_log: bool) -> Optional[str]:
        if not write_log:
            return None
        self.sync_log.append(entry)
        return entry.id

    def _fail_run(
        self,
        spec: EntitySpec,
        direction: SyncDirection,
        error: SyncError,
        write_log: bool,
    ) -> None:
        """Record a run-level failure as one terminal log entry."""
        mode = "execute" if direction == SyncDirection.PULL else "push"
        log_run_error(spec.entity_type.value, mode, str(error))
        self.metrics.record_run_failed(spec.entity_type.value, mode, str(error))
        self._write_entry(
            new_sync_log_entry(
                reference_id=run_reference(spec, direction),
                reference_type=spec.reference_type,
                sync_type=SyncType.PULL if direction == SyncDirection.PULL else SyncType.PUSH,
                sync_status=SyncStatus.FAILED,
                error_message=str(error),
            ),
            write_log,
        )

    def _finish_run(
        self,
        spec: EntitySpec,
        direction: SyncDirection,
        outcomes: List[RecordOutcome],
        write_log: bool,
        started: float,
    ) -> ExecuteResult:
        """Aggregate per-record outcomes and write the single run entry."""
        result = ExecuteResult(entity_type=spec.entity_type, direction=direction)
        for outcome in outcomes:
            if outcome.outcome == CREATED:
                result.created += 1
            elif outcome.outcome == UPDATED:
                result.updated += 1
            elif outcome.outcome == UNCHANGED:
                result.unchanged += 1
            else:
                result.failed += 1
                result.errors.append(outcome.error or f"{outcome.key}: unknown error")
            if outcome.needs_reconcile:
                result.needs_reconcile.append(outcome.key)

        status = SyncStatus.SUCCESS if result.failed == 0 else SyncStatus.PARTIAL
        result.sync_log_id = self._write_entry(
            new_sync_log_entry(
                reference_id=run_reference(spec, direction),
                reference_type=spec.reference_type,
                sync_type=SyncType.PULL if direction == SyncDirection.PULL else SyncType.PUSH,
                sync_status=status,
                error_message="; ".join(result.errors) or None,
            ),
            write_log,
        )

        mode = "execute" if direction == SyncDirection.PULL else "push"
        duration_ms = (time.time() - started) * 1000
        self.metrics.record_records(
            spec.entity_type.value,
            created=result.created,
            updated=result.updated,
            unchanged=result.unchanged,
            failed=result.failed,
        )
        self.metrics.record_run_completed(
            spec.entity_type.value, mode, duration_ms, partial=status == SyncStatus.PARTIAL
        )
        log_run_complete(
            spec.entity_type.value,
            mode,
            duration_ms,
            status=status.value,
            created=result.created,
            updated=result.updated,
            failed=result.failed,
        )
        if result.needs_reconcile:
            logger.error(
                f"{len(result.needs_reconcile)} {spec.label}(s) need manual reconciliation",
                extra_fields={"keys": result.needs_reconcile},
            )
        return result

    # =========================================================================
    # Preview
    # =========================================================================

    async def preview(self, entity_type: EntityType) -> PreviewReport:
        """Read-only diff of AutoCount against the local store.

        Raises:
            AuthenticationFailure: Login rejected or host unreachable
            FetchFailure: Remote or local records could not be read
        """
        spec = get_entity_spec(entity_type)
        with with_correlation(sync_run_id=str(uuid.uuid4()), entity_type=spec.entity_type.value, mode="preview"):
            log_run_start(spec.entity_type.value, "preview")
            async with self._connected() as erp:
                remote = await self._fetch_remote(erp, spec)
            local, context = self._fetch_local(spec)
            report = PreviewReport.from_changes(spec.entity_type, self._classify(spec, local, remote, context))
            logger.info(
                f"Preview {spec.label}: {report.summary.to_create} to create, "
                f"{report.summary.to_update} to update, {report.summary.no_change} unchanged, "
                f"{report.summary.skipped} skipped"
            )
            return report

    # =========================================================================
    # Execute (pull)
    # =========================================================================

    async def execute(self, entity_type: EntityType, write_log: bool = True) -> ExecuteResult:
        """Apply AutoCount's records to the local store.

        Args:
            entity_type: Entity class to sync
            write_log: Write the aggregate sync log entry (False when the
                retry dispatcher re-runs a logged run)

        Raises:
            AuthenticationFailure: Login rejected; one failed entry is logged
            FetchFailure: Records could not be read; one failed entry is logged
        """
        spec = get_entity_spec(entity_type)
        async with self._run_lock(spec.entity_type):
            with with_correlation(sync_run_id=str(uuid.uuid4()), entity_type=spec.entity_type.value, mode="execute"):
                started = time.time()
                log_run_start(spec.entity_type.value, "execute")
                self.metrics.record_run_started(spec.entity_type.value, "execute")
                try:
                    async with self._connected() as erp:
                        remote = await self._fetch_remote(erp, spec)
                    local, context = self._fetch_local(spec)
                except (AuthenticationFailure, FetchFailure) as e:
                    self._fail_run(spec, SyncDirection.PULL, e, write_log)
                    raise

                changes = self._classify(spec, local, remote, context)
                outcomes = await self._fan_out([
                    (lambda c=change: self._apply_pull(spec, c, context)) for change in changes
                ])
                return self._finish_run(spec, SyncDirection.PULL, outcomes, write_log, started)

    async def _apply_pull(self, spec: EntitySpec, change: RecordChange, context: Context) -> RecordOutcome:
        if change.action == SyncAction.NONE:
            return RecordOutcome(change.key, UNCHANGED)
        if change.action == SyncAction.SKIP:
            logger.warning(f"Skipping {spec.label}: {change.error}")
            return RecordOutcome(change.key, FAILED, change.error)

        now = datetime.utcnow()
        try:
            if change.action == SyncAction.CREATE:
                values = spec.columns(change.local_shape)
                values["last_synced_at"] = now
                record = self.store.insert_record(spec.collection, values)
                spec.after_insert(self.store, record, change.local_shape, context)
                return RecordOutcome(change.key, CREATED)

            # Only the changed syncable fields; local-only fields stay untouched
            values = {name: change.local_shape.get(name) for name in change.changes}
            values["last_synced_at"] = now
            self.store.update_record(spec.collection, change.local_id, values)
            return RecordOutcome(change.key, UPDATED)
        except StoreError as e:
            failure = PersistenceFailure(change.key, f"local write failed: {e}", change.remote)
            logger.error(
                f"Local {change.action.value} failed for {spec.label} {change.key}: {e}",
                extra_fields={"remote": failure.payload},
            )
            return RecordOutcome(change.key, FAILED, str(failure))

    # =========================================================================
    # Push
    # =========================================================================

    async def push(
        self,
        entity_type: EntityType,
        write_log: bool = True,
        record_ids: Optional[List[str]] = None,
    ) -> ExecuteResult:
        """Push local records to AutoCount with create -> update fallback.

        Args:
            entity_type: Entity class to push
            write_log: Write the aggregate sync log entry
            record_ids: Only push these local ids (default: every record)

        Raises:
            AuthenticationFailure: Login rejected; one failed entry is logged
            FetchFailure: Local records could not be read; one failed entry is logged
        """
        spec = get_entity_spec(entity_type)
        async with self._run_lock(spec.entity_type):
            with with_correlation(sync_run_id=str(uuid.uuid4()), entity_type=spec.entity_type.value, mode="push"):
                started = time.time()
                log_run_start(spec.entity_type.value, "push")
                self.metrics.record_run_started(spec.entity_type.value, "push")
                try:
                    async with self._connected() as erp:
                        local, _ = self._fetch_local(spec)
                        if record_ids is not None:
                            wanted = set(record_ids)
                            local = [r for r in local if r["id"] in wanted]
                        outcomes = await self._fan_out([
                            (lambda r=record: self._apply_push(erp, spec, r)) for record in local
                        ])
                except (AuthenticationFailure, FetchFailure) as e:
                    self._fail_run(spec, SyncDirection.PUSH, e, write_log)
                    raise
                return self._finish_run(spec, SyncDirection.PUSH, outcomes, write_log, started)

    async def _apply_push(self, erp: ERPConnector, spec: EntitySpec, record: Dict[str, Any]) -> RecordOutcome:
        fallback_key = spec.mapper.local_key(record) or record.get("id", "<unknown>")
        try:
            pushed = await push_record(erp, spec, self.store, record)
        except PersistenceFailure as e:
            logger.error(
                f"{spec.label} {e.key} is in AutoCount but not marked locally: {e}",
                extra_fields={"payload": e.payload},
            )
            return RecordOutcome(e.key, FAILED, str(e), needs_reconcile=True)
        except MappingFailure as e:
            return RecordOutcome(e.key, FAILED, str(e))
        except RemoteOperationFailure as e:
            return RecordOutcome(fallback_key, FAILED, str(e))

        return RecordOutcome(
            pushed.key,
            CREATED if pushed.action == SyncAction.CREATE else UPDATED,
        )

    # =========================================================================
    # Connection test
    # =========================================================================

    async def test_connection(self) -> Dict[str, Any]:
        """Log in and call the gateway's connection check."""
        try:
            async with self._connected() as erp:
                ok = await erp.test_connection()
        except AuthenticationFailure as e:
            return {"connected": False, "message": str(e)}
        return {
            "connected": ok,
            "message": "Connected to AutoCount" if ok else "AutoCount connection check failed",
        }
