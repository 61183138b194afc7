from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.apps.api.deps import Page, get_db, require_admin
from rmmsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rmmsync.apps.api.response import SuccessEnvelope, page_response, success_response
from rmmsync.services import reporting
from rmmsync.services import tenants as tenant_service


router = APIRouter(
    prefix="/tenants/{tenant_id}",
    tags=["inventory"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)

EntityType = Literal["devices", "sites", "alerts"]


class _EntityBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uid: str
    remote_id: str | None
    status: str
    is_active: bool
    metadata_json: dict[str, Any] | None
    last_synced_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None


class DeviceResponse(_EntityBase):
    name: str | None
    device_type: str | None
    os: str | None
    os_version: str | None
    ip_address: str | None
    mac_address: str | None
    hostname: str | None
    last_seen_remote: datetime | None
    site_uid: str | None
    site_name: str | None


class SiteResponse(_EntityBase):
    name: str | None
    description: str | None
    address: str | None
    contact_name: str | None
    contact_email: str | None
    contact_phone: str | None
    device_count: int
    online_devices: int
    offline_devices: int


class AlertResponse(_EntityBase):
    title: str | None
    message: str | None
    severity: str | None
    category: str | None
    source: str | None
    acknowledged: bool
    resolved: bool
    acknowledged_at: datetime | None
    resolved_at: datetime | None
    device_uid: str | None
    device_name: str | None
    site_uid: str | None
    site_name: str | None


class DeviceDetailResponse(DeviceResponse):
    alerts: list[AlertResponse]


class SiteDetailResponse(SiteResponse):
    devices: list[DeviceResponse]
    alerts: list[AlertResponse]


class HistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_uid: str
    action: str
    old_status: str | None
    new_status: str | None
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    changed_fields: dict[str, Any]
    created_at: datetime | None


class SearchResponse(BaseModel):
    devices: list[DeviceResponse]
    sites: list[SiteResponse]
    alerts: list[AlertResponse]
    total: int


async def _require_tenant(db: AsyncSession, tenant_id: int) -> None:
    # Unknown tenants surface as 404 instead of an empty listing.
    await tenant_service.require_tenant(db, tenant_id)


def _entity_not_found(entity: str, uid: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "NOT_FOUND", "message": f"{entity} {uid} not found"},
    )


@router.get("/devices", response_model=SuccessEnvelope[list[DeviceResponse]])
async def list_devices(
    request: Request,
    tenant_id: int,
    status_filter: str | None = Query(default=None, alias="status"),
    device_type: str | None = None,
    is_active: bool | None = None,
    site_uid: str | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort: str | None = None,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_tenant(db, tenant_id)
    filters = reporting.DeviceFilters(
        status=status_filter,
        device_type=device_type,
        is_active=is_active,
        site_uid=site_uid,
        search=search,
        sort=sort,
        limit=page.limit,
        offset=page.offset,
    )
    devices = await reporting.list_devices(db, tenant_id, filters)
    data = [DeviceResponse.model_validate(device) for device in devices]
    return page_response(request=request, data=data, limit=page.limit, offset=page.offset)


@router.get("/devices/{uid}", response_model=SuccessEnvelope[DeviceDetailResponse])
async def get_device(request: Request, tenant_id: int, uid: str, db: AsyncSession = Depends(get_db)) -> dict:
    await _require_tenant(db, tenant_id)
    detail = await reporting.get_device_with_alerts(db, tenant_id, uid)
    if detail is None:
        raise _entity_not_found("Device", uid)
    data = DeviceDetailResponse(
        **DeviceResponse.model_validate(detail["device"]).model_dump(),
        alerts=[AlertResponse.model_validate(alert) for alert in detail["alerts"]],
    )
    return success_response(request=request, data=data)


@router.get("/sites", response_model=SuccessEnvelope[list[SiteResponse]])
async def list_sites(
    request: Request,
    tenant_id: int,
    status_filter: str | None = Query(default=None, alias="status"),
    is_active: bool | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort: str | None = None,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_tenant(db, tenant_id)
    filters = reporting.SiteFilters(
        status=status_filter,
        is_active=is_active,
        search=search,
        sort=sort,
        limit=page.limit,
        offset=page.offset,
    )
    sites = await reporting.list_sites(db, tenant_id, filters)
    data = [SiteResponse.model_validate(site) for site in sites]
    return page_response(request=request, data=data, limit=page.limit, offset=page.offset)


@router.get("/sites/{uid}", response_model=SuccessEnvelope[SiteDetailResponse])
async def get_site(request: Request, tenant_id: int, uid: str, db: AsyncSession = Depends(get_db)) -> dict:
    await _require_tenant(db, tenant_id)
    detail = await reporting.get_site_with_details(db, tenant_id, uid)
    if detail is None:
        raise _entity_not_found("Site", uid)
    data = SiteDetailResponse(
        **SiteResponse.model_validate(detail["site"]).model_dump(),
        devices=[DeviceResponse.model_validate(device) for device in detail["devices"]],
        alerts=[AlertResponse.model_validate(alert) for alert in detail["alerts"]],
    )
    return success_response(request=request, data=data)


@router.get("/alerts", response_model=SuccessEnvelope[list[AlertResponse]])
async def list_alerts(
    request: Request,
    tenant_id: int,
    severity: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    acknowledged: bool | None = None,
    resolved: bool | None = None,
    is_active: bool | None = None,
    device_uid: str | None = None,
    site_uid: str | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort: str | None = None,
    page: Page = Depends(),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_tenant(db, tenant_id)
    filters = reporting.AlertFilters(
        severity=severity,
        status=status_filter,
        acknowledged=acknowledged,
        resolved=resolved,
        is_active=is_active,
        device_uid=device_uid,
        site_uid=site_uid,
        search=search,
        sort=sort,
        limit=page.limit,
        offset=page.offset,
    )
    alerts = await reporting.list_alerts(db, tenant_id, filters)
    data = [AlertResponse.model_validate(alert) for alert in alerts]
    return page_response(request=request, data=data, limit=page.limit, offset=page.offset)


@router.get("/alerts/{uid}", response_model=SuccessEnvelope[AlertResponse])
async def get_alert(request: Request, tenant_id: int, uid: str, db: AsyncSession = Depends(get_db)) -> dict:
    await _require_tenant(db, tenant_id)
    alert = await reporting.get_alert(db, tenant_id, uid)
    if alert is None:
        raise _entity_not_found("Alert", uid)
    return success_response(request=request, data=AlertResponse.model_validate(alert))


@router.get("/{entity_type}/{uid}/history", response_model=SuccessEnvelope[list[HistoryResponse]])
async def get_history(
    request: Request,
    tenant_id: int,
    entity_type: EntityType,
    uid: str,
    action: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_tenant(db, tenant_id)
    rows = await reporting.get_entity_history(db, tenant_id, entity_type, uid, action=action, limit=limit)
    return success_response(request=request, data=[HistoryResponse.model_validate(row) for row in rows])


@router.get("/search", response_model=SuccessEnvelope[SearchResponse])
async def search(
    request: Request,
    tenant_id: int,
    q: str = Query(min_length=1, max_length=200),
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_tenant(db, tenant_id)
    results = await reporting.global_search(db, tenant_id, q, limit=limit)
    data = SearchResponse(
        devices=[DeviceResponse.model_validate(device) for device in results["devices"]],
        sites=[SiteResponse.model_validate(site) for site in results["sites"]],
        alerts=[AlertResponse.model_validate(alert) for alert in results["alerts"]],
        total=results["total"],
    )
    return success_response(request=request, data=data)
