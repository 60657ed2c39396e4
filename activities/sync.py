"""AutoCount sync activities.

Temporal activities wrapping the sync engine:
- preview_entity: read-only diff report for one entity class
- execute_entity: apply AutoCount's records locally (pull)
- push_entity: push local records to AutoCount
- retry_sync: replay one logged sync attempt
- valuate_item / build_valuation_report: FIFO valuation

Authentication and fetch failures of an execute/push run are raised as
non-retryable ApplicationErrors: the run has already written its failed log
entry, and a Temporal-level retry would write another one. Retrying such a
run is the retry dispatcher's job.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.models.records import EntityType, SyncAction
from core.observability.logging import with_correlation
from reconciliation.errors import AuthenticationFailure, FetchFailure, SyncLogNotFound, UnknownSyncTypeError
from reconciliation.runtime import get_runtime


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class EntitySyncInput:
    """Input for preview/execute/push activities.

    Attributes:
        entity_type: item, supplier or purchase_order
        record_ids: Push only these local ids (push only; default all)
    """
    entity_type: str
    record_ids: Optional[List[str]] = None


@dataclass
class PreviewOutput:
    """Output from preview_entity activity."""
    entity_type: str
    to_create: int
    to_update: int
    no_change: int
    skipped: int
    changes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_work(self) -> bool:
        return self.to_create > 0 or self.to_update > 0


@dataclass
class ExecuteOutput:
    """Output from execute_entity and push_entity activities."""
    entity_type: str
    direction: str
    status: str
    created: int
    updated: int
    unchanged: int
    failed: int
    errors: List[str] = field(default_factory=list)
    needs_reconcile: List[str] = field(default_factory=list)
    sync_log_id: Optional[str] = None


@dataclass
class RetrySyncInput:
    """Input for retry_sync activity.

    Attributes:
        ref: Sync log entry id, or the reference id it was logged under
    """
    ref: str


@dataclass
class ValuationInput:
    """Input for valuate_item activity."""
    item_id: str


def _run_failure(e: Exception) -> ApplicationError:
    return ApplicationError(str(e), type=type(e).__name__, non_retryable=True)


def _execute_output(result) -> ExecuteOutput:
    return ExecuteOutput(
        entity_type=result.entity_type.value,
        direction=result.direction.value,
        status="success" if result.succeeded else "partial",
        created=result.created,
        updated=result.updated,
        unchanged=result.unchanged,
        failed=result.failed,
        errors=list(result.errors),
        needs_reconcile=list(result.needs_reconcile),
        sync_log_id=result.sync_log_id,
    )


# =============================================================================
# Activity Definitions
# =============================================================================

@activity.defn
async def preview_entity(input: EntitySyncInput) -> PreviewOutput:
    """Diff AutoCount against the local store without changing either."""
    entity_type = EntityType(input.entity_type)
    activity.logger.info(f"Previewing {entity_type.value} sync")

    with with_correlation(activity_name="preview_entity", workflow_id=activity.info().workflow_id):
        try:
            report = await get_runtime().orchestrator.preview(entity_type)
        except (AuthenticationFailure, FetchFailure) as e:
            raise _run_failure(e)

    summary = report.summary
    activity.logger.info(
        f"Preview {entity_type.value}: {summary.to_create} create, {summary.to_update} update, "
        f"{summary.no_change} unchanged, {summary.skipped} skipped"
    )
    return PreviewOutput(
        entity_type=entity_type.value,
        to_create=summary.to_create,
        to_update=summary.to_update,
        no_change=summary.no_change,
        skipped=summary.skipped,
        changes=[
            c.model_dump(by_alias=True, mode="json")
            for c in report.changes
            if c.action != SyncAction.NONE
        ],
    )


@activity.defn
async def execute_entity(input: EntitySyncInput) -> ExecuteOutput:
    """Apply AutoCount's records for one entity class to the local store."""
    entity_type = EntityType(input.entity_type)
    activity.logger.info(f"Executing {entity_type.value} sync")

    with with_correlation(activity_name="execute_entity", workflow_id=activity.info().workflow_id):
        try:
            result = await get_runtime().orchestrator.execute(entity_type)
        except (AuthenticationFailure, FetchFailure) as e:
            activity.logger.error(f"{entity_type.value} sync failed: {e}")
            raise _run_failure(e)

    output = _execute_output(result)
    if output.failed:
        activity.logger.warning(
            f"{entity_type.value} sync partial: {output.created} created, {output.updated} updated, "
            f"{output.failed} failed"
        )
    else:
        activity.logger.info(f"{entity_type.value} sync: {output.created} created, {output.updated} updated")
    return output


@activity.defn
async def push_entity(input: EntitySyncInput) -> ExecuteOutput:
    """Push local records for one entity class to AutoCount."""
    entity_type = EntityType(input.entity_type)
    activity.logger.info(f"Pushing {entity_type.value} records to AutoCount")

    with with_correlation(activity_name="push_entity", workflow_id=activity.info().workflow_id):
        try:
            result = await get_runtime().orchestrator.push(entity_type, record_ids=input.record_ids)
        except (AuthenticationFailure, FetchFailure) as e:
            activity.logger.error(f"{entity_type.value} push failed: {e}")
            raise _run_failure(e)

    return _execute_output(result)


@activity.defn
async def retry_sync(input: RetrySyncInput) -> Dict[str, Any]:
    """Replay one logged sync attempt."""
    activity.logger.info(f"Retrying sync {input.ref}")

    with with_correlation(activity_name="retry_sync", workflow_id=activity.info().workflow_id):
        try:
            result = await get_runtime().dispatcher.retry(input.ref)
        except (SyncLogNotFound, UnknownSyncTypeError) as e:
            raise _run_failure(e)

    return result.model_dump(by_alias=True, mode="json")


@activity.defn
async def valuate_item(input: ValuationInput) -> Optional[Dict[str, Any]]:
    """FIFO valuation of one item (None when the item does not exist)."""
    valuation = get_runtime().valuation.valuate(input.item_id)
    if valuation is None:
        activity.logger.warning(f"Item {input.item_id} not found")
        return None
    return valuation.model_dump(by_alias=True, mode="json")


@activity.defn
async def build_valuation_report() -> Dict[str, Any]:
    """FIFO valuation of every item with stock on hand."""
    report = get_runtime().valuation.valuation_report()
    activity.logger.info(
        f"Valuation report: {len(report.items)} valued, {len(report.unvalued)} unvalued, "
        f"total {report.grand_total}"
    )
    return report.model_dump(by_alias=True, mode="json")
