from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.apps.api.deps import get_db, get_sync_engine, require_admin
from rmmsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rmmsync.apps.api.response import SuccessEnvelope, success_response
from rmmsync.persistence.repos import sync_runs as sync_runs_repo
from rmmsync.services import reporting
from rmmsync.services import tenants as tenant_service
from rmmsync.services.sync import ReconciliationEngine, select_due_tenants, sync_all_due
from rmmsync.services.sync.queue import enqueue_tenant_sync


router = APIRouter(tags=["sync"], responses=DEFAULT_ERROR_RESPONSES, dependencies=[Depends(require_admin)])


class SyncRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    sync_type: str
    status: str
    items_processed: int
    items_created: int
    items_updated: int
    items_deactivated: int
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None
    duration_seconds: float | None


class DueTenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    last_sync: datetime | None
    sync_interval_minutes: int


@router.post("/tenants/{tenant_id}/sync", response_model=SuccessEnvelope[dict[str, Any]])
async def trigger_sync(
    request: Request,
    tenant_id: int,
    entity_type: Literal["devices", "sites", "alerts"] | None = None,
    background: bool = False,
    engine: ReconciliationEngine = Depends(get_sync_engine),
    db: AsyncSession = Depends(get_db),
) -> Any:
    if background:
        await tenant_service.require_tenant(db, tenant_id)
        job_id = await enqueue_tenant_sync(tenant_id, entity_type)
        return JSONResponse(
            status_code=202,
            content=success_response(request=request, data={"job_id": job_id, "queued": True}),
        )
    # Inline runs map remote and lock errors to 502/409 through the domain handlers.
    if entity_type is None:
        result = await engine.reconcile_tenant(tenant_id)
        return success_response(request=request, data={"sync_type": "full", **result.as_dict()})
    counts = await engine.reconcile(tenant_id, entity_type)
    return success_response(request=request, data={"sync_type": entity_type, **counts.as_dict()})


@router.get("/tenants/{tenant_id}/sync/runs", response_model=SuccessEnvelope[list[SyncRunResponse]])
async def list_sync_runs(
    request: Request,
    tenant_id: int,
    sync_type: Literal["devices", "sites", "alerts", "full"] | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await tenant_service.require_tenant(db, tenant_id)
    runs = await sync_runs_repo.list_runs(db, tenant_id, sync_type=sync_type, limit=limit)
    return success_response(request=request, data=[SyncRunResponse.model_validate(run) for run in runs])


@router.get("/sync/runs/stats", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def sync_run_stats(
    request: Request,
    tenant_id: int | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(request=request, data=await reporting.get_sync_stats(db, tenant_id))


@router.get("/sync/data-status", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def data_status(
    request: Request,
    tenant_id: int | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(request=request, data=await reporting.get_data_status(db, tenant_id))


@router.get("/sync/due", response_model=SuccessEnvelope[list[DueTenantResponse]])
async def list_due_tenants(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    tenants = await select_due_tenants(db)
    return success_response(request=request, data=[DueTenantResponse.model_validate(t) for t in tenants])


@router.post("/sync/due", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def run_due_sync(
    request: Request,
    engine: ReconciliationEngine = Depends(get_sync_engine),
) -> dict:
    outcomes = await sync_all_due(engine.session_factory, engine)
    return success_response(request=request, data=[outcome.as_dict() for outcome in outcomes])
