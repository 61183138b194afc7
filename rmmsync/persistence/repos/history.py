from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.domain.models import AlertHistory, DeviceHistory, SiteHistory


HistoryModel = TypeVar("HistoryModel", DeviceHistory, SiteHistory, AlertHistory)


async def append_history(
    session: AsyncSession,
    model: type[HistoryModel],
    *,
    tenant_id: int,
    entity_uid: str,
    action: str,
    old_status: str | None,
    new_status: str | None,
    old_data: dict[str, Any] | None,
    new_data: dict[str, Any] | None,
    changed_fields: dict[str, Any],
) -> HistoryModel:
    # Insert-only: history rows are never mutated after this call.
    row = model(
        tenant_id=tenant_id,
        entity_uid=entity_uid,
        action=action,
        old_status=old_status,
        new_status=new_status,
        old_data=old_data,
        new_data=new_data,
        changed_fields=changed_fields,
    )
    session.add(row)
    await session.flush()
    return row


async def list_history(
    session: AsyncSession,
    model: type[HistoryModel],
    tenant_id: int,
    entity_uid: str | None = None,
    *,
    action: str | None = None,
    limit: int | None = None,
) -> list[HistoryModel]:
    stmt = select(model).where(model.tenant_id == tenant_id)
    if entity_uid is not None:
        stmt = stmt.where(model.entity_uid == entity_uid)
    if action:
        stmt = stmt.where(model.action == action)
    # Newest first; id breaks ties inside one second.
    stmt = stmt.order_by(model.created_at.desc(), model.id.desc())
    if limit:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
