from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from rmmsync.core.config import get_settings
from rmmsync.core.logging import configure_logging
from rmmsync.persistence.db import SessionLocal, engine as db_engine
from rmmsync.services.sync import ReconciliationEngine, sync_all_due
from rmmsync.services.sync.locks import build_tenant_locks


logger = logging.getLogger(__name__)


def _engine(ctx: dict[str, Any]) -> ReconciliationEngine:
    sync_engine = ctx.get("sync_engine")
    if sync_engine is None:
        sync_engine = ReconciliationEngine(SessionLocal, locks=build_tenant_locks())
        ctx["sync_engine"] = sync_engine
    return sync_engine


async def sync_tenant(ctx: dict[str, Any], tenant_id: int, entity_type: str | None = None) -> dict[str, Any]:
    # Failures propagate so arq records the job as failed; the sync run row keeps the message.
    sync_engine = _engine(ctx)
    if entity_type is None:
        result = await sync_engine.reconcile_tenant(tenant_id)
        return {"sync_type": "full", **result.as_dict()}
    counts = await sync_engine.reconcile(tenant_id, entity_type)
    return {"sync_type": entity_type, **counts.as_dict()}


async def sync_due(ctx: dict[str, Any]) -> dict[str, int]:
    outcomes = await sync_all_due(SessionLocal, _engine(ctx))
    failed = sum(1 for outcome in outcomes if not outcome.success)
    return {"tenants": len(outcomes), "succeeded": len(outcomes) - failed, "failed": failed}


async def _startup(ctx: dict[str, Any]) -> None:
    configure_logging()
    _engine(ctx)
    logger.info("sync_worker_started")


async def _shutdown(ctx: dict[str, Any]) -> None:
    await db_engine.dispose()


def _cron_minutes() -> set[int]:
    step = max(1, min(60, get_settings().sync_cron_minutes))
    return set(range(0, 60, step))


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.sync_queue_name
    functions = [sync_tenant]
    # Due-tenant scans never overlap: arq skips a cron tick while the previous one runs.
    cron_jobs = [cron(sync_due, minute=_cron_minutes(), unique=True, run_at_startup=True)]
    job_timeout = max(300, int(settings.sync_lock_timeout_s) * 4)
    max_tries = 1
    on_startup = _startup
    on_shutdown = _shutdown
