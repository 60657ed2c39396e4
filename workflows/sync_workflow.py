"""AutoCount sync workflows.

EntitySyncWorkflow runs the preview -> execute cycle for one entity class
(or a push). FullSyncWorkflow pulls every entity class in dependency order:
purchase orders resolve their supplier and item codes against local records,
so suppliers and items go first.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.sync import (
        preview_entity,
        execute_entity,
        push_entity,
        EntitySyncInput,
    )


TASK_QUEUE_SYNC = "autocount-sync"

# Login/fetch problems are surfaced as non-retryable errors by the activities
ACTIVITY_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=5),
    maximum_attempts=3,
)

# suppliers and items must exist locally before purchase orders can link to them
PULL_ORDER = ["supplier", "item", "purchase_order"]


@dataclass
class EntitySyncWorkflowInput:
    """Input for EntitySyncWorkflow.

    Attributes:
        entity_type: item, supplier or purchase_order
        direction: "pull" (AutoCount -> local) or "push" (local -> AutoCount)
        preview_only: Stop after the preview report
        record_ids: Push only these local ids
    """
    entity_type: str
    direction: str = "pull"
    preview_only: bool = False
    record_ids: Optional[List[str]] = None


@dataclass
class FullSyncInput:
    """Input for FullSyncWorkflow."""
    entity_types: List[str] = field(default_factory=lambda: list(PULL_ORDER))


@workflow.defn
class EntitySyncWorkflow:
    """Sync one entity class.

    Pull: preview, then execute only when the preview found something to
    create or update. Push: push directly (there is no remote preview).
    """

    @workflow.run
    async def run(self, input: EntitySyncWorkflowInput) -> dict:
        workflow.logger.info(f"Starting {input.direction} sync for {input.entity_type}")

        if input.direction == "push":
            result = await workflow.execute_activity(
                push_entity,
                EntitySyncInput(entity_type=input.entity_type, record_ids=input.record_ids),
                start_to_close_timeout=timedelta(minutes=10),
                retry_policy=ACTIVITY_RETRY,
            )
            workflow.logger.info(
                f"Push {input.entity_type}: {result.created} created, {result.updated} updated, "
                f"{result.failed} failed"
            )
            return {"entity_type": input.entity_type, "direction": "push", "result": result}

        preview = await workflow.execute_activity(
            preview_entity,
            EntitySyncInput(entity_type=input.entity_type),
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=ACTIVITY_RETRY,
        )
        workflow.logger.info(
            f"Preview {input.entity_type}: {preview.to_create} to create, {preview.to_update} to update"
        )

        if input.preview_only or not preview.has_work:
            return {"entity_type": input.entity_type, "direction": "pull", "preview": preview, "result": None}

        result = await workflow.execute_activity(
            execute_entity,
            EntitySyncInput(entity_type=input.entity_type),
            start_to_close_timeout=timedelta(minutes=10),
            retry_policy=ACTIVITY_RETRY,
        )
        workflow.logger.info(
            f"Execute {input.entity_type}: {result.created} created, {result.updated} updated, "
            f"{result.failed} failed"
        )
        return {"entity_type": input.entity_type, "direction": "pull", "preview": preview, "result": result}


@workflow.defn
class FullSyncWorkflow:
    """Pull every entity class, one child workflow per class, in order."""

    @workflow.run
    async def run(self, input: FullSyncInput) -> dict:
        ordered = [e for e in PULL_ORDER if e in input.entity_types]
        results = {}
        for entity_type in ordered:
            results[entity_type] = await workflow.execute_child_workflow(
                EntitySyncWorkflow.run,
                EntitySyncWorkflowInput(entity_type=entity_type),
                id=f"{workflow.info().workflow_id}-{entity_type}",
            )
        return results
