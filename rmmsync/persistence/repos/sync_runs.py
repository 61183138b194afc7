from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.domain.models import SyncRun


async def start_run(
    session: AsyncSession, *, tenant_id: int, sync_type: str, started_at: datetime
) -> SyncRun:
    run = SyncRun(
        tenant_id=tenant_id,
        sync_type=sync_type,
        status="running",
        started_at=started_at,
    )
    session.add(run)
    await session.flush()
    return run


async def finish_run(
    session: AsyncSession,
    run_id: int,
    *,
    status: str,
    started_at: datetime,
    completed_at: datetime,
    processed: int = 0,
    created: int = 0,
    updated: int = 0,
    deactivated: int = 0,
    error_message: str | None = None,
) -> SyncRun | None:
    # Finalize exactly once; duration uses the start timestamp captured at start_run.
    run = await session.get(SyncRun, run_id)
    if run is None:
        return None
    run.status = status
    run.items_processed = processed
    run.items_created = created
    run.items_updated = updated
    run.items_deactivated = deactivated
    run.error_message = error_message
    run.completed_at = completed_at
    run.duration_seconds = max(0.0, (completed_at - started_at).total_seconds())
    await session.flush()
    return run


async def list_runs(
    session: AsyncSession,
    tenant_id: int,
    *,
    sync_type: str | None = None,
    limit: int | None = None,
) -> list[SyncRun]:
    stmt = select(SyncRun).where(SyncRun.tenant_id == tenant_id)
    if sync_type:
        stmt = stmt.where(SyncRun.sync_type == sync_type)
    stmt = stmt.order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
    if limit:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
