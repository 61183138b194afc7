from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.apps.api.deps import Page, get_db, require_admin
from rmmsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rmmsync.apps.api.response import SuccessEnvelope, page_response, success_response
from rmmsync.domain.models import Tenant
from rmmsync.services import reporting
from rmmsync.services import tenants as tenant_service


router = APIRouter(
    prefix="/tenants",
    tags=["tenants"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uid: str
    name: str
    slug: str
    description: str | None
    rmm_api_url: str | None
    rmm_platform: str | None
    status: str
    is_active: bool
    sync_enabled: bool
    sync_interval_minutes: int
    sync_devices: bool
    sync_sites: bool
    sync_alerts: bool
    max_devices: int
    max_sites: int
    max_alerts_history: int
    contact_name: str | None
    contact_email: str | None
    contact_phone: str | None
    metadata_json: dict[str, Any] | None
    last_sync: datetime | None
    created_at: datetime | None
    updated_at: datetime | None
    # Credentials are write-only; responses only say whether they are set.
    has_credentials: bool = False


class TenantCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=100, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: str | None = None
    rmm_api_url: str | None = None
    rmm_api_key: str | None = None
    rmm_api_secret: str | None = None
    rmm_platform: str | None = None
    status: str | None = Field(default=None, pattern=r"^(active|inactive|suspended)$")
    sync_enabled: bool | None = None
    sync_interval_minutes: int | None = Field(default=None, ge=1)
    sync_devices: bool | None = None
    sync_sites: bool | None = None
    sync_alerts: bool | None = None
    max_devices: int | None = Field(default=None, ge=0)
    max_sites: int | None = Field(default=None, ge=0)
    max_alerts_history: int | None = Field(default=None, ge=0)
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    metadata_json: dict[str, Any] | None = None


class TenantPatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=100, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: str | None = None
    rmm_api_url: str | None = None
    rmm_api_key: str | None = None
    rmm_api_secret: str | None = None
    rmm_platform: str | None = None
    status: str | None = Field(default=None, pattern=r"^(active|inactive|suspended)$")
    is_active: bool | None = None
    sync_enabled: bool | None = None
    sync_interval_minutes: int | None = Field(default=None, ge=1)
    sync_devices: bool | None = None
    sync_sites: bool | None = None
    sync_alerts: bool | None = None
    max_devices: int | None = Field(default=None, ge=0)
    max_sites: int | None = Field(default=None, ge=0)
    max_alerts_history: int | None = Field(default=None, ge=0)
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    metadata_json: dict[str, Any] | None = None


class SyncConfigRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sync_enabled: bool | None = None
    sync_interval_minutes: int | None = Field(default=None, ge=1)
    sync_devices: bool | None = None
    sync_sites: bool | None = None
    sync_alerts: bool | None = None
    rmm_api_url: str | None = None
    rmm_api_key: str | None = None
    rmm_api_secret: str | None = None
    rmm_platform: str | None = None


class SyncConfigResponse(BaseModel):
    sync_enabled: bool
    sync_interval_minutes: int
    sync_devices: bool
    sync_sites: bool
    sync_alerts: bool
    rmm_api_url: str | None
    rmm_platform: str | None
    has_credentials: bool
    last_sync: datetime | None


class LimitStatus(BaseModel):
    current: int
    limit: int
    percentage: int
    exceeded: bool


class LimitsResponse(BaseModel):
    devices: LimitStatus
    sites: LimitStatus
    alerts_history: LimitStatus


def _to_response(tenant: Tenant) -> TenantResponse:
    response = TenantResponse.model_validate(tenant)
    response.has_credentials = bool(tenant.rmm_api_key and tenant.rmm_api_secret)
    return response


def _sync_config_response(config: dict[str, Any]) -> SyncConfigResponse:
    return SyncConfigResponse(
        **{key: value for key, value in config.items() if key not in {"rmm_api_key", "rmm_api_secret"}},
        has_credentials=bool(config.get("rmm_api_key") and config.get("rmm_api_secret")),
    )


def _not_found(tenant_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "TENANT_NOT_FOUND", "message": f"Tenant {tenant_id} not found"},
    )


@router.get("", response_model=SuccessEnvelope[list[TenantResponse]])
async def list_tenants(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    is_active: bool | None = None,
    sync_enabled: bool | None = None,
    search: str | None = Query(default=None, max_length=200),
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
) -> dict:
    tenants = await tenant_service.list_tenants(
        db,
        status=status_filter,
        is_active=is_active,
        sync_enabled=sync_enabled,
        search=search,
        limit=page.limit,
        offset=page.offset,
    )
    return page_response(
        request=request, data=[_to_response(t) for t in tenants], limit=page.limit, offset=page.offset
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[TenantResponse])
async def create_tenant(
    request: Request, payload: TenantCreateRequest, db: AsyncSession = Depends(get_db)
) -> dict:
    fields = payload.model_dump(exclude_none=True)
    tenant = await tenant_service.create_tenant(db, **fields)
    return success_response(request=request, data=_to_response(tenant))


@router.get("/stats/global", response_model=SuccessEnvelope[dict[str, int]])
async def global_stats(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    return success_response(request=request, data=await tenant_service.get_global_stats(db))


@router.get("/{tenant_id}", response_model=SuccessEnvelope[TenantResponse])
async def get_tenant(request: Request, tenant_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    tenant = await tenant_service.get_tenant(db, tenant_id)
    if tenant is None:
        raise _not_found(tenant_id)
    return success_response(request=request, data=_to_response(tenant))


@router.patch("/{tenant_id}", response_model=SuccessEnvelope[TenantResponse])
async def patch_tenant(
    request: Request, tenant_id: int, payload: TenantPatchRequest, db: AsyncSession = Depends(get_db)
) -> dict:
    tenant = await tenant_service.update_tenant(db, tenant_id, payload.model_dump(exclude_none=True))
    return success_response(request=request, data=_to_response(tenant))


@router.post("/{tenant_id}/deactivate", response_model=SuccessEnvelope[TenantResponse])
async def deactivate_tenant(request: Request, tenant_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    tenant = await tenant_service.deactivate_tenant(db, tenant_id)
    return success_response(request=request, data=_to_response(tenant))


@router.delete("/{tenant_id}", response_model=SuccessEnvelope[dict[str, bool]])
async def delete_tenant(request: Request, tenant_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    if not await tenant_service.delete_tenant(db, tenant_id):
        raise _not_found(tenant_id)
    return success_response(request=request, data={"deleted": True})


@router.get("/{tenant_id}/sync-config", response_model=SuccessEnvelope[SyncConfigResponse])
async def get_sync_config(request: Request, tenant_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    config = await tenant_service.get_sync_config(db, tenant_id)
    if config is None:
        raise _not_found(tenant_id)
    return success_response(request=request, data=_sync_config_response(config))


@router.put("/{tenant_id}/sync-config", response_model=SuccessEnvelope[SyncConfigResponse])
async def put_sync_config(
    request: Request, tenant_id: int, payload: SyncConfigRequest, db: AsyncSession = Depends(get_db)
) -> dict:
    config = await tenant_service.update_sync_config(db, tenant_id, payload.model_dump(exclude_none=True))
    return success_response(request=request, data=_sync_config_response(config))


@router.get("/{tenant_id}/limits", response_model=SuccessEnvelope[LimitsResponse])
async def get_limits(request: Request, tenant_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    limits = await tenant_service.check_limits(db, tenant_id)
    if limits is None:
        raise _not_found(tenant_id)
    return success_response(request=request, data=limits)


@router.get("/{tenant_id}/stats", response_model=SuccessEnvelope[dict[str, Any]])
async def get_stats(request: Request, tenant_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    stats = await tenant_service.get_tenant_stats(db, tenant_id)
    if stats is None:
        raise _not_found(tenant_id)
    data = {
        "tenant": stats,
        "inventory": await reporting.get_general_stats(db, tenant_id),
        "sites": await reporting.get_stats_by_site(db, tenant_id),
    }
    return success_response(request=request, data=data)
