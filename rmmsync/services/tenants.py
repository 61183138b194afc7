from __future__ import annotations

import logging
import re
import secrets
import time
import unicodedata
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.core.errors import TenantNotFoundError, TenantSlugConflictError
from rmmsync.domain.models import (
    Alert,
    AlertHistory,
    Device,
    DeviceHistory,
    Site,
    SiteHistory,
    SyncRun,
    Tenant,
)
from rmmsync.persistence.repos import entities as entities_repo
from rmmsync.persistence.repos import tenants as tenants_repo


logger = logging.getLogger(__name__)

TENANT_DEFAULTS: dict[str, Any] = {
    "status": "active",
    "is_active": True,
    "sync_enabled": True,
    "sync_interval_minutes": 60,
    "sync_devices": True,
    "sync_sites": True,
    "sync_alerts": True,
    "max_devices": 1000,
    "max_sites": 100,
    "max_alerts_history": 10000,
}

TENANT_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "slug",
        "description",
        "rmm_api_url",
        "rmm_api_key",
        "rmm_api_secret",
        "rmm_platform",
        "status",
        "is_active",
        "sync_enabled",
        "sync_interval_minutes",
        "sync_devices",
        "sync_sites",
        "sync_alerts",
        "max_devices",
        "max_sites",
        "max_alerts_history",
        "contact_name",
        "contact_email",
        "contact_phone",
        "metadata_json",
    }
)

SYNC_CONFIG_FIELDS = (
    "sync_enabled",
    "sync_interval_minutes",
    "sync_devices",
    "sync_sites",
    "sync_alerts",
    "rmm_api_url",
    "rmm_api_key",
    "rmm_api_secret",
    "rmm_platform",
)

# Child tables removed before the tenant row itself.
_TENANT_SCOPED_MODELS = (DeviceHistory, SiteHistory, AlertHistory, SyncRun, Alert, Device, Site)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_uid() -> str:
    # Millisecond timestamp plus random suffix; unique enough without a DB round-trip.
    return f"tenant_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def generate_slug(name: str) -> str:
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9\s-]", "", folded.lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "tenant"


async def is_slug_available(session: AsyncSession, slug: str, exclude_id: int | None = None) -> bool:
    return not await tenants_repo.slug_taken(session, slug, exclude_id)


async def create_tenant(session: AsyncSession, *, name: str, **fields: Any) -> Tenant:
    # Unknown keys are ignored; omitted settings take the registry defaults.
    slug = fields.pop("slug", None) or generate_slug(name)
    if not await is_slug_available(session, slug):
        raise TenantSlugConflictError(f"Slug '{slug}' is already in use")
    values = {**TENANT_DEFAULTS}
    values.update(
        {key: value for key, value in fields.items() if key in TENANT_UPDATABLE_FIELDS and value is not None}
    )
    tenant = Tenant(uid=fields.get("uid") or generate_uid(), name=name, slug=slug, **values)
    if tenant.metadata_json is None:
        tenant.metadata_json = {}
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)
    logger.info("tenant_created tenant_id=%s slug=%s", tenant.id, tenant.slug)
    return tenant


async def get_tenant(session: AsyncSession, tenant_id: int) -> Tenant | None:
    return await tenants_repo.get_by_id(session, tenant_id)


async def get_tenant_by_uid(session: AsyncSession, uid: str) -> Tenant | None:
    return await tenants_repo.get_by_uid(session, uid)


async def get_tenant_by_slug(session: AsyncSession, slug: str) -> Tenant | None:
    return await tenants_repo.get_by_slug(session, slug)


async def require_tenant(session: AsyncSession, tenant_id: int) -> Tenant:
    tenant = await tenants_repo.get_by_id(session, tenant_id)
    if tenant is None:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")
    return tenant


async def list_tenants(
    session: AsyncSession,
    *,
    status: str | None = None,
    is_active: bool | None = None,
    sync_enabled: bool | None = None,
    search: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[Tenant]:
    return await tenants_repo.list_tenants(
        session,
        status=status,
        is_active=is_active,
        sync_enabled=sync_enabled,
        search=search,
        limit=limit,
        offset=offset,
    )


async def list_active_tenants(session: AsyncSession) -> list[Tenant]:
    return await tenants_repo.list_tenants(session, status="active", is_active=True)


async def update_tenant(session: AsyncSession, tenant_id: int, updates: dict[str, Any]) -> Tenant:
    # Only whitelisted fields are applied; an empty update returns the tenant unchanged.
    tenant = await require_tenant(session, tenant_id)
    changes = {key: value for key, value in updates.items() if key in TENANT_UPDATABLE_FIELDS}
    if not changes:
        return tenant
    slug = changes.get("slug")
    if slug is not None and not await is_slug_available(session, slug, exclude_id=tenant_id):
        raise TenantSlugConflictError(f"Slug '{slug}' is already in use")
    for key, value in changes.items():
        setattr(tenant, key, value)
    await session.commit()
    await session.refresh(tenant)
    logger.info("tenant_updated tenant_id=%s fields=%s", tenant_id, sorted(changes))
    return tenant


async def deactivate_tenant(session: AsyncSession, tenant_id: int) -> Tenant:
    # Soft deactivation: synced data stays, the tenant just drops out of scheduling.
    tenant = await require_tenant(session, tenant_id)
    tenant.is_active = False
    tenant.status = "inactive"
    await session.commit()
    await session.refresh(tenant)
    logger.info("tenant_deactivated tenant_id=%s", tenant_id)
    return tenant


async def delete_tenant(session: AsyncSession, tenant_id: int) -> bool:
    # Hard delete of the tenant and every tenant-scoped row, in one transaction.
    tenant = await tenants_repo.get_by_id(session, tenant_id)
    if tenant is None:
        return False
    for model in _TENANT_SCOPED_MODELS:
        await session.execute(delete(model).where(model.tenant_id == tenant_id))
    await session.delete(tenant)
    await session.commit()
    logger.info("tenant_deleted tenant_id=%s", tenant_id)
    return True


def sync_config_of(tenant: Tenant) -> dict[str, Any]:
    config = {key: getattr(tenant, key) for key in SYNC_CONFIG_FIELDS}
    config["last_sync"] = tenant.last_sync
    return config


async def get_sync_config(session: AsyncSession, tenant_id: int) -> dict[str, Any] | None:
    tenant = await tenants_repo.get_by_id(session, tenant_id)
    if tenant is None:
        return None
    return sync_config_of(tenant)


async def update_sync_config(session: AsyncSession, tenant_id: int, config: dict[str, Any]) -> dict[str, Any]:
    # Keys left out (or None) keep their current value.
    changes = {key: config[key] for key in SYNC_CONFIG_FIELDS if config.get(key) is not None}
    tenant = await update_tenant(session, tenant_id, changes)
    return sync_config_of(tenant)


async def update_last_sync(session: AsyncSession, tenant_id: int, synced_at: datetime | None = None) -> None:
    await tenants_repo.set_last_sync(session, tenant_id, synced_at or _utc_now())
    await session.commit()


async def _count_where(session: AsyncSession, model: type, *conditions: Any) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*conditions))
    return int(result.scalar() or 0)


async def get_tenant_stats(session: AsyncSession, tenant_id: int) -> dict[str, Any] | None:
    tenant = await tenants_repo.get_by_id(session, tenant_id)
    if tenant is None:
        return None
    devices = await session.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((Device.is_active.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Device.status == "online", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Device.status == "offline", 1), else_=0)), 0),
        ).where(Device.tenant_id == tenant_id)
    )
    total_devices, active_devices, online_devices, offline_devices = devices.one()
    alerts = await session.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((Alert.is_active.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Alert.severity == "critical", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Alert.severity == "warning", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Alert.severity == "info", 1), else_=0)), 0),
        ).where(Alert.tenant_id == tenant_id)
    )
    total_alerts, active_alerts, critical_alerts, warning_alerts, info_alerts = alerts.one()
    return {
        "id": tenant.id,
        "name": tenant.name,
        "status": tenant.status,
        "is_active": tenant.is_active,
        "sync_enabled": tenant.sync_enabled,
        "last_sync": tenant.last_sync,
        "max_devices": tenant.max_devices,
        "max_sites": tenant.max_sites,
        "max_alerts_history": tenant.max_alerts_history,
        "total_devices": int(total_devices),
        "active_devices": int(active_devices),
        "online_devices": int(online_devices),
        "offline_devices": int(offline_devices),
        "total_sites": await entities_repo.count_entities(session, Site, tenant_id),
        "active_sites": await entities_repo.count_entities(session, Site, tenant_id, active_only=True),
        "total_alerts": int(total_alerts),
        "active_alerts": int(active_alerts),
        "critical_alerts": int(critical_alerts),
        "warning_alerts": int(warning_alerts),
        "info_alerts": int(info_alerts),
    }


def _limit_status(current: int, limit: int) -> dict[str, Any]:
    # A zero limit is always exhausted.
    percentage = round(current / limit * 100) if limit > 0 else 100
    return {"current": current, "limit": limit, "percentage": percentage, "exceeded": current >= limit}


async def check_limits(session: AsyncSession, tenant_id: int) -> dict[str, Any] | None:
    stats = await get_tenant_stats(session, tenant_id)
    if stats is None:
        return None
    return {
        "devices": _limit_status(stats["total_devices"], stats["max_devices"]),
        "sites": _limit_status(stats["total_sites"], stats["max_sites"]),
        "alerts_history": _limit_status(stats["total_alerts"], stats["max_alerts_history"]),
    }


async def get_global_stats(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((Tenant.is_active.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Tenant.sync_enabled.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Tenant.status == "active", 1), else_=0)), 0),
        ).select_from(Tenant)
    )
    total, active, sync_enabled, active_status = result.one()
    return {
        "total_tenants": int(total),
        "active_tenants": int(active),
        "sync_enabled_tenants": int(sync_enabled),
        "active_status_tenants": int(active_status),
        "total_devices": await _count_where(session, Device),
        "total_sites": await _count_where(session, Site),
        "total_alerts": await _count_where(session, Alert),
    }
