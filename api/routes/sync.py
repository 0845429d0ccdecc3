"""Sync endpoints.

Manual trigger, run history and period discovery for the DTE registry sync.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from connectors.errors import SyncAlreadyRunningError
from reconciliation.engine import ReconcileMode
from sync.models import RunPage, SyncRun, TriggerSource
from sync.service import DEFAULT_PAGE_SIZE, SyncService


router = APIRouter()


def get_sync_service(request: Request) -> SyncService:
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Sync is not configured")
    return service


class SyncRunRequest(BaseModel):
    """Request to run a sync now."""
    periods: List[str] = Field(..., description="YYYYMM periods to sync")
    doc_types: Optional[List[str]] = Field(None, description="sales and/or purchases (default: both)")
    mode: ReconcileMode = ReconcileMode.INSERT_OR_UPDATE
    trigger_user_id: Optional[str] = None


class PeriodsResponse(BaseModel):
    doc_type: str
    periods: List[str]


@router.post("/runs", response_model=SyncRun)
async def trigger_sync(
    body: SyncRunRequest,
    service: SyncService = Depends(get_sync_service),
) -> SyncRun:
    """Run a sync over the requested scope and return the finished run."""
    trigger = TriggerSource.USER if body.trigger_user_id else TriggerSource.MANUAL
    try:
        return await service.run_sync(
            body.periods,
            body.doc_types,
            trigger=trigger,
            trigger_user_id=body.trigger_user_id,
            mode=body.mode,
        )
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/runs", response_model=RunPage)
async def list_runs(
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    service: SyncService = Depends(get_sync_service),
) -> RunPage:
    """Run history, newest first. Out-of-range limits are clamped."""
    return service.list_runs(limit=limit, offset=offset)


@router.get("/runs/{run_id}", response_model=SyncRun)
async def get_run(run_id: str, service: SyncService = Depends(get_sync_service)) -> SyncRun:
    run = service.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run


@router.get("/periods/{doc_type}", response_model=PeriodsResponse)
async def available_periods(doc_type: str, service: SyncService = Depends(get_sync_service)) -> PeriodsResponse:
    """Periods with at least one document in the registry."""
    try:
        periods = await service.available_periods(doc_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PeriodsResponse(doc_type=doc_type, periods=periods)
