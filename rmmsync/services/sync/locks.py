from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

from redis.asyncio import Redis

from rmmsync.core.config import Settings, get_settings
from rmmsync.core.errors import SyncInProgressError


logger = logging.getLogger(__name__)


class TenantLockRegistry(Protocol):
    def hold(self, tenant_id: int) -> Any:
        ...


class LocalTenantLocks:
    """In-process mutual exclusion per tenant; enough for a single worker process."""

    def __init__(self, *, timeout_s: float | None = None) -> None:
        self._timeout_s = timeout_s if timeout_s is not None else get_settings().sync_lock_timeout_s
        self._locks: dict[int, asyncio.Lock] = {}

    def is_locked(self, tenant_id: int) -> bool:
        lock = self._locks.get(tenant_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, tenant_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout_s)
        except TimeoutError:
            logger.warning("sync_lock_timeout tenant_id=%s backend=local", tenant_id)
            raise SyncInProgressError(f"Sync already in progress for tenant {tenant_id}") from None
        try:
            yield
        finally:
            lock.release()


class RedisTenantLocks:
    """Cross-process tenant lock built on ``SET NX PX`` with token-checked release.

    The lease is renewed in the background while the holder runs, so a pass
    longer than the TTL keeps its exclusion. The TTL only matters when the
    holder dies without releasing.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        prefix: str,
        ttl_s: float,
        timeout_s: float,
        poll_interval_s: float = 0.5,
        refresh_interval_s: float | None = None,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._ttl_ms = max(1, int(ttl_s * 1000))
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._refresh_interval_s = refresh_interval_s if refresh_interval_s is not None else ttl_s / 3

    def _key(self, tenant_id: int) -> str:
        return f"{self._prefix}:{tenant_id}"

    async def _owns(self, key: str, token: str) -> bool:
        current = await self._redis.get(key)
        value = current.decode() if isinstance(current, bytes) else current
        return value == token

    async def _keep_alive(self, key: str, token: str) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval_s)
            if not await self._owns(key, token):
                logger.warning("sync_lock_lost key=%s", key)
                return
            await self._redis.pexpire(key, self._ttl_ms)

    @asynccontextmanager
    async def hold(self, tenant_id: int) -> AsyncIterator[None]:
        key = self._key(tenant_id)
        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_s
        while not await self._redis.set(key, token, nx=True, px=self._ttl_ms):
            if loop.time() >= deadline:
                logger.warning("sync_lock_timeout tenant_id=%s backend=redis", tenant_id)
                raise SyncInProgressError(f"Sync already in progress for tenant {tenant_id}")
            await asyncio.sleep(self._poll_interval_s)
        refresher = asyncio.create_task(self._keep_alive(key, token))
        try:
            yield
        finally:
            refresher.cancel()
            # Release only if this holder still owns the token.
            if await self._owns(key, token):
                await self._redis.delete(key)


def build_tenant_locks(settings: Settings | None = None) -> TenantLockRegistry:
    settings = settings or get_settings()
    if settings.sync_lock_backend == "redis":
        return RedisTenantLocks(
            Redis.from_url(settings.redis_url),
            prefix=settings.sync_lock_redis_prefix,
            ttl_s=settings.sync_lock_ttl_s,
            timeout_s=settings.sync_lock_timeout_s,
        )
    return LocalTenantLocks(timeout_s=settings.sync_lock_timeout_s)
