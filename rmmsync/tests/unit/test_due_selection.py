from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from rmmsync.core.errors import RemoteAuthError
from rmmsync.domain.models import SyncRun, Tenant
from rmmsync.persistence.db import SessionLocal
from rmmsync.providers.rmm.fake import FakeRemoteSource
from rmmsync.services import tenants as tenant_service
from rmmsync.services.sync import ReconciliationEngine, select_due_tenants, sync_all_due
from rmmsync.services.sync.locks import LocalTenantLocks
from rmmsync.services.sync.scheduler import is_due
from rmmsync.tests.utils.records import create_test_tenant, device_record, engine_for


NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


async def _set_last_sync(tenant_id: int, value: datetime) -> None:
    async with SessionLocal() as session:
        await tenant_service.update_last_sync(session, tenant_id, value)


def test_is_due_respects_interval() -> None:
    tenant = Tenant(sync_interval_minutes=60, last_sync=None)
    assert is_due(tenant, NOW)
    tenant.last_sync = NOW - timedelta(minutes=30)
    assert not is_due(tenant, NOW)
    tenant.last_sync = NOW - timedelta(minutes=61)
    assert is_due(tenant, NOW)
    # Naive timestamps (SQLite) are read as UTC.
    tenant.last_sync = (NOW - timedelta(minutes=61)).replace(tzinfo=None)
    assert is_due(tenant, NOW)


@pytest.mark.asyncio
async def test_select_due_tenants_filters_and_orders() -> None:
    never = await create_test_tenant("Never synced")
    stale = await create_test_tenant("Stale", sync_interval_minutes=60)
    staler = await create_test_tenant("Staler", sync_interval_minutes=60)
    fresh = await create_test_tenant("Fresh", sync_interval_minutes=60)
    await create_test_tenant("Disabled", sync_enabled=False)
    await create_test_tenant("Suspended", status="suspended")
    inactive = await create_test_tenant("Inactive")
    async with SessionLocal() as session:
        await tenant_service.deactivate_tenant(session, inactive.id)

    await _set_last_sync(stale.id, NOW - timedelta(hours=2))
    await _set_last_sync(staler.id, NOW - timedelta(hours=5))
    await _set_last_sync(fresh.id, NOW - timedelta(minutes=10))

    async with SessionLocal() as session:
        due = await select_due_tenants(session, NOW)

    assert [tenant.id for tenant in due] == [never.id, staler.id, stale.id]


@pytest.mark.asyncio
async def test_sync_all_due_isolates_tenant_failures() -> None:
    broken = await create_test_tenant("Broken")
    healthy = await create_test_tenant("Healthy")
    source = FakeRemoteSource(devices=[device_record("d1")])

    def _factory(tenant: Tenant) -> FakeRemoteSource:
        if tenant.name == "Broken":
            raise RemoteAuthError("No RMM API credentials configured")
        return source

    engine = ReconciliationEngine(SessionLocal, _factory, locks=LocalTenantLocks(timeout_s=1.0))
    outcomes = await sync_all_due(SessionLocal, engine, now=NOW)

    by_id = {outcome.tenant_id: outcome for outcome in outcomes}
    assert set(by_id) == {broken.id, healthy.id}
    assert by_id[broken.id].success is False
    assert "credentials" in by_id[broken.id].error
    assert by_id[healthy.id].success is True
    assert by_id[healthy.id].result.counts["devices"].created == 1
    assert by_id[healthy.id].as_dict()["result"]["totals"]["created"] == 1

    async with SessionLocal() as session:
        refreshed_broken = await session.get(Tenant, broken.id)
        refreshed_healthy = await session.get(Tenant, healthy.id)
        broken_runs = (
            await session.execute(select(SyncRun).where(SyncRun.tenant_id == broken.id))
        ).scalars().all()
    assert refreshed_broken.last_sync is None
    assert refreshed_healthy.last_sync is not None
    assert [(run.sync_type, run.status) for run in broken_runs] == [("full", "error")]


@pytest.mark.asyncio
async def test_successful_sync_removes_tenant_from_due_list() -> None:
    tenant = await create_test_tenant("Once", sync_interval_minutes=60)
    await engine_for(FakeRemoteSource()).reconcile_tenant(tenant.id)

    async with SessionLocal() as session:
        due = await select_due_tenants(session)

    assert tenant.id not in [t.id for t in due]
