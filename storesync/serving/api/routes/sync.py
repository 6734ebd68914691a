"""
Sync Endpoints

Manual sync trigger and run history per tenant.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from storesync.database.models import RunTrigger
from storesync.serving.api.dependencies import get_sync_engine
from storesync.sync.engine import SyncEngine
from storesync.sync.errors import TenantNotFoundError

router = APIRouter()


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class TriggerResponse(BaseModel):
    """Manual trigger acknowledgement"""
    tenant_id: str
    status: str


class SyncRunSummary(BaseModel):
    """One recorded sync run"""
    model_config = ConfigDict(from_attributes=True)

    run_id: UUID
    tenant_id: str
    trigger: str
    status: str
    kind_stats: Dict[str, Dict[str, int]]
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class SyncRunListResponse(BaseModel):
    """Recent runs for one tenant"""
    tenant_id: str
    running: bool
    items: List[SyncRunSummary]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/{tenant_id}", response_model=TriggerResponse, status_code=202)
async def trigger_sync(
    tenant_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
) -> TriggerResponse:
    """
    Start a full sync for one tenant in the background.

    Returns "accepted", or "already_running" when a run is in flight.
    Manual triggers run for deactivated tenants too.
    """
    try:
        await engine.tenants.get(tenant_id)
    except TenantNotFoundError:
        raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")

    started = engine.orchestrator.dispatch(tenant_id, RunTrigger.MANUAL)
    return TriggerResponse(tenant_id=tenant_id, status="accepted" if started else "already_running")


@router.get("/{tenant_id}/runs", response_model=SyncRunListResponse)
async def list_runs(
    tenant_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    engine: SyncEngine = Depends(get_sync_engine),
) -> SyncRunListResponse:
    """Recent sync runs for a tenant, newest first."""
    try:
        await engine.tenants.get(tenant_id)
    except TenantNotFoundError:
        raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")

    runs = await engine.history.recent(tenant_id, limit or engine.history_limit)
    return SyncRunListResponse(
        tenant_id=tenant_id,
        running=engine.orchestrator.is_running(tenant_id),
        items=[SyncRunSummary.model_validate(run) for run in runs],
    )
