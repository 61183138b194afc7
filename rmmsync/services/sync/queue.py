from __future__ import annotations

import asyncio
import logging

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from rmmsync.core.config import get_settings


logger = logging.getLogger(__name__)

SYNC_TENANT_JOB = "sync_tenant"

_redis_pool: ArqRedis | None = None
_redis_pool_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_redis_pool() -> ArqRedis:
    # Cache the arq pool per event loop; loop-bound pools cannot be reused across loops.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.sync_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


def sync_job_id(tenant_id: int, entity_type: str | None = None) -> str:
    # One queued job per tenant and sync type; arq ignores duplicates while it is pending.
    return f"sync:{tenant_id}:{entity_type or 'full'}"


async def enqueue_tenant_sync(tenant_id: int, entity_type: str | None = None) -> str:
    settings = get_settings()
    job_id = sync_job_id(tenant_id, entity_type)
    redis = await get_redis_pool()
    job = await redis.enqueue_job(
        SYNC_TENANT_JOB,
        tenant_id,
        entity_type,
        _job_id=job_id,
        _queue_name=settings.sync_queue_name,
    )
    if job is None:
        logger.info("sync_job_already_queued tenant_id=%s job_id=%s", tenant_id, job_id)
    return job_id
