"""AutoCount sync endpoints.

Preview/execute/push per entity class, retry by sync log reference, and the
sync log itself.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from core.models.records import EntityType, ExecuteResult, PreviewReport
from core.models.sync_log import SyncLogEntry, SyncStatus
from reconciliation.errors import (
    AuthenticationFailure,
    FetchFailure,
    SyncLogNotFound,
    UnknownSyncTypeError,
)
from reconciliation.retry import RetryResult, RetryStatus
from reconciliation.runtime import get_runtime


router = APIRouter()


class PushRequest(BaseModel):
    """Request to push local records."""
    record_ids: Optional[List[str]] = Field(
        default=None,
        description="Local ids to push; all records of the class when omitted",
    )


class RetryRequest(BaseModel):
    """Request to retry a logged sync."""
    ref: str = Field(..., description="Sync log id or the reference id it was logged under")


class ConnectionTestResult(BaseModel):
    """Result of an AutoCount connection test."""
    connected: bool
    message: str


def _run_error(e: Exception) -> HTTPException:
    # AutoCount is the upstream here; its failures are gateway errors
    return HTTPException(status_code=502, detail=str(e))


@router.get("/test-connection", response_model=ConnectionTestResult)
async def test_connection() -> ConnectionTestResult:
    """Log in to AutoCount and call its connection check."""
    status = await get_runtime().orchestrator.test_connection()
    return ConnectionTestResult(**status)


@router.get("/log", response_model=List[SyncLogEntry])
async def list_sync_log(
    status: Optional[SyncStatus] = Query(None, description="Filter by sync status"),
    reference_type: Optional[str] = Query(None, description="inventory, supplier, purchase_order, stock_movement"),
    sync_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
) -> List[SyncLogEntry]:
    """Sync log entries, newest first."""
    return get_runtime().sync_log.query(
        sync_status=status,
        reference_type=reference_type,
        sync_type=sync_type,
        limit=limit,
    )


@router.post("/retry", response_model=RetryResult)
async def retry_sync(request: RetryRequest) -> RetryResult:
    """Retry one failed or partial sync.

    Returns 409 when the entry already succeeded or another retry holds it.
    """
    try:
        result = await get_runtime().dispatcher.retry(request.ref)
    except SyncLogNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnknownSyncTypeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if result.status in (RetryStatus.NOTHING_TO_RETRY, RetryStatus.IN_PROGRESS):
        raise HTTPException(status_code=409, detail=result.model_dump(by_alias=True, mode="json"))
    return result


@router.get("/{entity_type}/preview", response_model=PreviewReport)
async def preview(entity_type: EntityType) -> PreviewReport:
    """Diff AutoCount against the local store. Changes nothing."""
    try:
        return await get_runtime().orchestrator.preview(entity_type)
    except (AuthenticationFailure, FetchFailure) as e:
        raise _run_error(e)


@router.post("/{entity_type}/execute", response_model=ExecuteResult)
async def execute(entity_type: EntityType) -> ExecuteResult:
    """Apply AutoCount's records to the local store.

    Per-record failures do not fail the request; they are counted in
    ``failed`` and listed in ``errors``.
    """
    try:
        return await get_runtime().orchestrator.execute(entity_type)
    except (AuthenticationFailure, FetchFailure) as e:
        raise _run_error(e)


@router.post("/{entity_type}/push", response_model=ExecuteResult)
async def push(entity_type: EntityType, request: Optional[PushRequest] = None) -> ExecuteResult:
    """Push local records to AutoCount (create, falling back to update)."""
    try:
        return await get_runtime().orchestrator.push(
            entity_type,
            record_ids=request.record_ids if request else None,
        )
    except (AuthenticationFailure, FetchFailure) as e:
        raise _run_error(e)
