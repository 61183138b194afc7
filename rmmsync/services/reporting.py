"""Read-only, tenant-scoped listings and aggregates over synchronized data.

Filters are typed dataclasses and sorting is restricted to per-listing
whitelists, so no query text is ever assembled from caller input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import case, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.domain.models import Alert, Device, Site, SyncRun
from rmmsync.persistence.repos import entities as entities_repo
from rmmsync.persistence.repos import history as history_repo
from rmmsync.services.query import SortField, SortSpec, order_by_clauses, parse_sort
from rmmsync.services.sync.specs import get_spec


DEVICE_SORTS = {
    "name": SortSpec(Device.name),
    "status": SortSpec(Device.status),
    "device_type": SortSpec(Device.device_type),
    "site_name": SortSpec(Device.site_name),
    "last_seen_remote": SortSpec(Device.last_seen_remote),
    "last_synced_at": SortSpec(Device.last_synced_at),
    "created_at": SortSpec(Device.created_at),
}
SITE_SORTS = {
    "name": SortSpec(Site.name),
    "status": SortSpec(Site.status),
    "device_count": SortSpec(Site.device_count),
    "created_at": SortSpec(Site.created_at),
}
ALERT_SORTS = {
    "created_at": SortSpec(Alert.created_at),
    "severity": SortSpec(Alert.severity),
    "status": SortSpec(Alert.status),
    "title": SortSpec(Alert.title),
    "device_name": SortSpec(Alert.device_name),
    "site_name": SortSpec(Alert.site_name),
}

_DEFAULT_DEVICE_SORT = [SortField("name", DEVICE_SORTS["name"], "asc")]
_DEFAULT_SITE_SORT = [SortField("name", SITE_SORTS["name"], "asc")]
_DEFAULT_ALERT_SORT = [SortField("created_at", ALERT_SORTS["created_at"], "desc")]


@dataclass(frozen=True)
class DeviceFilters:
    status: str | None = None
    device_type: str | None = None
    is_active: bool | None = None
    site_uid: str | None = None
    search: str | None = None
    sort: str | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True)
class SiteFilters:
    status: str | None = None
    is_active: bool | None = None
    search: str | None = None
    sort: str | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True)
class AlertFilters:
    severity: str | None = None
    status: str | None = None
    acknowledged: bool | None = None
    resolved: bool | None = None
    is_active: bool | None = None
    device_uid: str | None = None
    site_uid: str | None = None
    search: str | None = None
    sort: str | None = None
    limit: int | None = None
    offset: int | None = None


def _paginate(stmt: Any, limit: int | None, offset: int | None) -> Any:
    if limit:
        stmt = stmt.limit(limit)
    if offset:
        stmt = stmt.offset(offset)
    return stmt


async def list_devices(
    session: AsyncSession, tenant_id: int, filters: DeviceFilters | None = None
) -> list[Device]:
    filters = filters or DeviceFilters()
    stmt = select(Device).where(Device.tenant_id == tenant_id)
    if filters.status:
        stmt = stmt.where(Device.status == filters.status)
    if filters.device_type:
        stmt = stmt.where(Device.device_type == filters.device_type)
    if filters.is_active is not None:
        stmt = stmt.where(Device.is_active.is_(filters.is_active))
    if filters.site_uid:
        stmt = stmt.where(Device.site_uid == filters.site_uid)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(Device.name.ilike(pattern), Device.hostname.ilike(pattern), Device.ip_address.ilike(pattern))
        )
    sort_fields = parse_sort(sort=filters.sort, allowed=DEVICE_SORTS, default=_DEFAULT_DEVICE_SORT)
    stmt = _paginate(stmt.order_by(*order_by_clauses(sort_fields, Device.id)), filters.limit, filters.offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_sites(session: AsyncSession, tenant_id: int, filters: SiteFilters | None = None) -> list[Site]:
    filters = filters or SiteFilters()
    stmt = select(Site).where(Site.tenant_id == tenant_id)
    if filters.status:
        stmt = stmt.where(Site.status == filters.status)
    if filters.is_active is not None:
        stmt = stmt.where(Site.is_active.is_(filters.is_active))
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(Site.name.ilike(pattern), Site.description.ilike(pattern)))
    sort_fields = parse_sort(sort=filters.sort, allowed=SITE_SORTS, default=_DEFAULT_SITE_SORT)
    stmt = _paginate(stmt.order_by(*order_by_clauses(sort_fields, Site.id)), filters.limit, filters.offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_alerts(
    session: AsyncSession, tenant_id: int, filters: AlertFilters | None = None
) -> list[Alert]:
    filters = filters or AlertFilters()
    stmt = select(Alert).where(Alert.tenant_id == tenant_id)
    if filters.severity:
        stmt = stmt.where(Alert.severity == filters.severity)
    if filters.status:
        stmt = stmt.where(Alert.status == filters.status)
    if filters.acknowledged is not None:
        stmt = stmt.where(Alert.acknowledged.is_(filters.acknowledged))
    if filters.resolved is not None:
        stmt = stmt.where(Alert.resolved.is_(filters.resolved))
    if filters.is_active is not None:
        stmt = stmt.where(Alert.is_active.is_(filters.is_active))
    if filters.device_uid:
        stmt = stmt.where(Alert.device_uid == filters.device_uid)
    if filters.site_uid:
        stmt = stmt.where(Alert.site_uid == filters.site_uid)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(Alert.title.ilike(pattern), Alert.message.ilike(pattern)))
    sort_fields = parse_sort(sort=filters.sort, allowed=ALERT_SORTS, default=_DEFAULT_ALERT_SORT)
    stmt = _paginate(stmt.order_by(*order_by_clauses(sort_fields, Alert.id)), filters.limit, filters.offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_device(session: AsyncSession, tenant_id: int, uid: str) -> Device | None:
    return await entities_repo.get_by_uid(session, Device, tenant_id, uid)


async def get_site(session: AsyncSession, tenant_id: int, uid: str) -> Site | None:
    return await entities_repo.get_by_uid(session, Site, tenant_id, uid)


async def get_alert(session: AsyncSession, tenant_id: int, uid: str) -> Alert | None:
    return await entities_repo.get_by_uid(session, Alert, tenant_id, uid)


async def get_entity_history(
    session: AsyncSession,
    tenant_id: int,
    entity_type: str,
    uid: str,
    *,
    action: str | None = None,
    limit: int | None = None,
) -> list[Any]:
    spec = get_spec(entity_type)
    return await history_repo.list_history(
        session, spec.history_model, tenant_id, uid, action=action, limit=limit
    )


def _count_if(condition: Any) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


async def get_general_stats(session: AsyncSession, tenant_id: int) -> dict[str, int]:
    devices = (
        await session.execute(
            select(
                func.count(),
                _count_if((Device.status == "online") & Device.is_active.is_(True)),
                _count_if((Device.status == "offline") & Device.is_active.is_(True)),
                _count_if((Device.status == "inactive") | Device.is_active.is_(False)),
            ).where(Device.tenant_id == tenant_id)
        )
    ).one()
    sites = (
        await session.execute(
            select(
                func.count(),
                _count_if((Site.status == "active") & Site.is_active.is_(True)),
                _count_if((Site.status == "inactive") | Site.is_active.is_(False)),
            ).where(Site.tenant_id == tenant_id)
        )
    ).one()
    active_alert = Alert.is_active.is_(True)
    alerts = (
        await session.execute(
            select(
                func.count(),
                _count_if((Alert.severity == "critical") & active_alert),
                _count_if((Alert.severity == "warning") & active_alert),
                _count_if((Alert.severity == "info") & active_alert),
                _count_if((Alert.status == "active") & active_alert),
                _count_if((Alert.status == "resolved") & active_alert),
                _count_if(Alert.acknowledged.is_(False) & active_alert),
            ).where(Alert.tenant_id == tenant_id)
        )
    ).one()
    return {
        "total_devices": int(devices[0]),
        "online_devices": int(devices[1]),
        "offline_devices": int(devices[2]),
        "inactive_devices": int(devices[3]),
        "total_sites": int(sites[0]),
        "active_sites": int(sites[1]),
        "inactive_sites": int(sites[2]),
        "total_alerts": int(alerts[0]),
        "critical_alerts": int(alerts[1]),
        "warning_alerts": int(alerts[2]),
        "info_alerts": int(alerts[3]),
        "active_alerts": int(alerts[4]),
        "resolved_alerts": int(alerts[5]),
        "unacknowledged_alerts": int(alerts[6]),
    }


async def get_stats_by_site(session: AsyncSession, tenant_id: int) -> list[dict[str, Any]]:
    # Device and alert aggregates are grouped separately so they never multiply each other.
    device_rows = await session.execute(
        select(
            Device.site_uid,
            func.count(),
            _count_if(Device.status == "online"),
            _count_if(Device.status == "offline"),
        )
        .where(Device.tenant_id == tenant_id, Device.site_uid.is_not(None))
        .group_by(Device.site_uid)
    )
    device_counts = {row[0]: row[1:] for row in device_rows.all()}
    alert_rows = await session.execute(
        select(
            Alert.site_uid,
            func.count(),
            _count_if(Alert.severity == "critical"),
            _count_if(Alert.severity == "warning"),
            _count_if(Alert.severity == "info"),
        )
        .where(Alert.tenant_id == tenant_id, Alert.site_uid.is_not(None))
        .group_by(Alert.site_uid)
    )
    alert_counts = {row[0]: row[1:] for row in alert_rows.all()}

    sites = await list_sites(session, tenant_id)
    stats: list[dict[str, Any]] = []
    for site in sites:
        actual, online, offline = device_counts.get(site.uid, (0, 0, 0))
        total_alerts, critical, warning, info = alert_counts.get(site.uid, (0, 0, 0, 0))
        stats.append(
            {
                "uid": site.uid,
                "name": site.name,
                "site_status": site.status,
                "device_count": site.device_count,
                "online_devices": site.online_devices,
                "offline_devices": site.offline_devices,
                "actual_devices": int(actual),
                "actual_online": int(online),
                "actual_offline": int(offline),
                "total_alerts": int(total_alerts),
                "critical_alerts": int(critical),
                "warning_alerts": int(warning),
                "info_alerts": int(info),
            }
        )
    return stats


async def get_sync_stats(session: AsyncSession, tenant_id: int | None = None) -> list[dict[str, Any]]:
    last_started = func.max(SyncRun.started_at)
    stmt = select(
        SyncRun.tenant_id,
        SyncRun.sync_type,
        SyncRun.status,
        func.count(),
        func.avg(SyncRun.duration_seconds),
        last_started,
        func.coalesce(func.sum(SyncRun.items_processed), 0),
        func.coalesce(func.sum(SyncRun.items_created), 0),
        func.coalesce(func.sum(SyncRun.items_updated), 0),
        func.coalesce(func.sum(SyncRun.items_deactivated), 0),
    )
    if tenant_id is not None:
        stmt = stmt.where(SyncRun.tenant_id == tenant_id)
    stmt = stmt.group_by(SyncRun.tenant_id, SyncRun.sync_type, SyncRun.status).order_by(
        SyncRun.tenant_id, SyncRun.sync_type, last_started.desc()
    )
    result = await session.execute(stmt)
    return [
        {
            "tenant_id": row[0],
            "sync_type": row[1],
            "status": row[2],
            "count": int(row[3]),
            "avg_duration": float(row[4]) if row[4] is not None else None,
            "last_sync": row[5],
            "total_processed": int(row[6]),
            "total_created": int(row[7]),
            "total_updated": int(row[8]),
            "total_deactivated": int(row[9]),
        }
        for row in result.all()
    ]


async def get_data_status(session: AsyncSession, tenant_id: int | None = None) -> list[dict[str, Any]]:
    # Per-tenant, per-table totals; "online" means active for sites, and sites have no "offline".
    specs = (
        ("devices", Device, Device.status == "online", Device.status == "offline"),
        ("sites", Site, Site.status == "active", None),
        ("alerts", Alert, Alert.status == "active", None),
    )
    rows: list[dict[str, Any]] = []
    for table_name, model, online_condition, offline_condition in specs:
        stmt = select(
            model.tenant_id,
            func.count(),
            _count_if(model.is_active.is_(True)),
            _count_if(online_condition),
            _count_if(offline_condition) if offline_condition is not None else literal(0),
            _count_if(model.status == "inactive"),
        )
        if tenant_id is not None:
            stmt = stmt.where(model.tenant_id == tenant_id)
        stmt = stmt.group_by(model.tenant_id).order_by(model.tenant_id)
        result = await session.execute(stmt)
        for row in result.all():
            rows.append(
                {
                    "tenant_id": row[0],
                    "table_name": table_name,
                    "total": int(row[1]),
                    "active": int(row[2]),
                    "online": int(row[3]),
                    "offline": int(row[4]),
                    "inactive": int(row[5]),
                }
            )
    return rows


async def get_device_with_alerts(session: AsyncSession, tenant_id: int, uid: str) -> dict[str, Any] | None:
    device = await get_device(session, tenant_id, uid)
    if device is None:
        return None
    alerts = await list_alerts(session, tenant_id, AlertFilters(device_uid=uid))
    return {"device": device, "alerts": alerts}


async def get_site_with_details(session: AsyncSession, tenant_id: int, uid: str) -> dict[str, Any] | None:
    site = await get_site(session, tenant_id, uid)
    if site is None:
        return None
    devices = await list_devices(session, tenant_id, DeviceFilters(site_uid=uid))
    alerts = await list_alerts(session, tenant_id, AlertFilters(site_uid=uid))
    return {"site": site, "devices": devices, "alerts": alerts}


async def global_search(
    session: AsyncSession, tenant_id: int, term: str, *, limit: int | None = 50
) -> dict[str, Any]:
    devices = await list_devices(session, tenant_id, DeviceFilters(search=term, limit=limit))
    sites = await list_sites(session, tenant_id, SiteFilters(search=term, limit=limit))
    alerts = await list_alerts(session, tenant_id, AlertFilters(search=term, limit=limit))
    return {
        "devices": devices,
        "sites": sites,
        "alerts": alerts,
        "total": len(devices) + len(sites) + len(alerts),
    }
