from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.domain.models import Alert, Device, Site


# Shared access for the three remote-sourced entity tables; all share tenant_id/uid/is_active.
EntityModel = TypeVar("EntityModel", Device, Site, Alert)


async def list_uid_activity(
    session: AsyncSession, model: type[EntityModel], tenant_id: int
) -> list[tuple[str, bool]]:
    # Local snapshot projected to (uid, is_active) for the reconciliation diff.
    result = await session.execute(
        select(model.uid, model.is_active).where(model.tenant_id == tenant_id).order_by(model.id)
    )
    return [(uid, bool(is_active)) for uid, is_active in result.all()]


async def get_by_uid(
    session: AsyncSession, model: type[EntityModel], tenant_id: int, uid: str
) -> EntityModel | None:
    result = await session.execute(
        select(model).where(model.tenant_id == tenant_id, model.uid == uid)
    )
    return result.scalar_one_or_none()


async def insert_entity(
    session: AsyncSession, model: type[EntityModel], values: dict[str, Any]
) -> EntityModel:
    row = model(**values)
    session.add(row)
    await session.flush()
    return row


async def load_name_cache(
    session: AsyncSession, model: type[EntityModel], tenant_id: int, name_column: str = "name"
) -> dict[str, str]:
    # uid -> display name map used to denormalize back-references during a pass.
    column = getattr(model, name_column)
    result = await session.execute(
        select(model.uid, column).where(model.tenant_id == tenant_id, column.is_not(None))
    )
    return {uid: name for uid, name in result.all()}


async def count_entities(
    session: AsyncSession,
    model: type[EntityModel],
    tenant_id: int,
    *,
    active_only: bool = False,
) -> int:
    stmt = select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
    if active_only:
        stmt = stmt.where(model.is_active.is_(True))
    result = await session.execute(stmt)
    return int(result.scalar() or 0)
