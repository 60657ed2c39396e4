"""Workflow definitions module."""

from workflows.sync_workflow import (
    EntitySyncWorkflow,
    EntitySyncWorkflowInput,
    FullSyncWorkflow,
    FullSyncInput,
)

__all__ = ["EntitySyncWorkflow", "EntitySyncWorkflowInput", "FullSyncWorkflow", "FullSyncInput"]
