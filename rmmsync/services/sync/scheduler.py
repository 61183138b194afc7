from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rmmsync.domain.models import Tenant
from rmmsync.persistence.repos import tenants as tenants_repo
from rmmsync.services.sync.diff import as_utc
from rmmsync.services.sync.engine import FullSyncResult, ReconciliationEngine


logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TenantSyncOutcome:
    tenant_id: int
    tenant_name: str
    success: bool
    result: FullSyncResult | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tenant_name": self.tenant_name,
            "success": self.success,
            "result": self.result.as_dict() if self.result is not None else None,
            "error": self.error,
        }


def is_due(tenant: Tenant, now: datetime) -> bool:
    last_sync = as_utc(tenant.last_sync)
    if last_sync is None:
        return True
    return last_sync < now - timedelta(minutes=tenant.sync_interval_minutes)


async def select_due_tenants(session: AsyncSession, now: datetime | None = None) -> list[Tenant]:
    """Active, sync-enabled tenants whose interval has elapsed.

    Never-synced tenants come first, then the oldest ``last_sync``.
    """
    now = as_utc(now) or _utc_now()
    candidates = await tenants_repo.list_sync_candidates(session)
    due = [tenant for tenant in candidates if is_due(tenant, now)]
    due.sort(key=lambda tenant: (tenant.last_sync is not None, as_utc(tenant.last_sync) or _NEVER, tenant.id))
    return due


async def sync_all_due(
    session_factory: async_sessionmaker[AsyncSession],
    engine: ReconciliationEngine,
    *,
    now: datetime | None = None,
) -> list[TenantSyncOutcome]:
    async with session_factory() as session:
        due = [(tenant.id, tenant.name) for tenant in await select_due_tenants(session, now)]
    logger.info("sync_batch_start tenants=%s", len(due))

    outcomes: list[TenantSyncOutcome] = []
    # Sequential on purpose: one tenant at a time bounds load on the remote API and the pool.
    for tenant_id, tenant_name in due:
        try:
            result = await engine.reconcile_tenant(tenant_id)
        except Exception as exc:  # noqa: BLE001 - one tenant's failure never aborts the batch
            error = str(exc) or type(exc).__name__
            logger.error("sync_batch_tenant_failed tenant_id=%s error=%s", tenant_id, error)
            outcomes.append(
                TenantSyncOutcome(tenant_id=tenant_id, tenant_name=tenant_name, success=False, error=error)
            )
            continue
        outcomes.append(
            TenantSyncOutcome(tenant_id=tenant_id, tenant_name=tenant_name, success=True, result=result)
        )

    failed = sum(1 for outcome in outcomes if not outcome.success)
    logger.info("sync_batch_complete tenants=%s failed=%s", len(outcomes), failed)
    return outcomes
