from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.domain.models import Tenant


async def get_by_id(session: AsyncSession, tenant_id: int) -> Tenant | None:
    return await session.get(Tenant, tenant_id)


async def get_by_uid(session: AsyncSession, uid: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.uid == uid))
    return result.scalar_one_or_none()


async def get_by_slug(session: AsyncSession, slug: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.slug == slug))
    return result.scalar_one_or_none()


async def slug_taken(session: AsyncSession, slug: str, exclude_id: int | None = None) -> bool:
    stmt = select(func.count()).select_from(Tenant).where(Tenant.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(Tenant.id != exclude_id)
    result = await session.execute(stmt)
    return int(result.scalar() or 0) > 0


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
    stmt = select(Tenant)
    if status:
        stmt = stmt.where(Tenant.status == status)
    if is_active is not None:
        stmt = stmt.where(Tenant.is_active.is_(is_active))
    if sync_enabled is not None:
        stmt = stmt.where(Tenant.sync_enabled.is_(sync_enabled))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(Tenant.name.ilike(pattern), Tenant.slug.ilike(pattern), Tenant.description.ilike(pattern))
        )
    stmt = stmt.order_by(Tenant.name, Tenant.id)
    if limit:
        stmt = stmt.limit(limit)
    if offset:
        stmt = stmt.offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_sync_candidates(session: AsyncSession) -> list[Tenant]:
    # Static eligibility only; the per-tenant interval check happens in the scheduler.
    result = await session.execute(
        select(Tenant).where(
            Tenant.is_active.is_(True),
            Tenant.sync_enabled.is_(True),
            Tenant.status == "active",
        )
    )
    return list(result.scalars().all())


async def set_last_sync(session: AsyncSession, tenant_id: int, synced_at: datetime) -> None:
    await session.execute(update(Tenant).where(Tenant.id == tenant_id).values(last_sync=synced_at))
