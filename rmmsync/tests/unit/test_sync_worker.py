from __future__ import annotations

import pytest

from rmmsync.core.config import get_settings
from rmmsync.providers.rmm.fake import FakeRemoteSource
from rmmsync.services.sync.queue import SYNC_TENANT_JOB, sync_job_id
from rmmsync.tests.utils.records import create_test_tenant, device_record, engine_for
from rmmsync.workers import sync_worker


def test_job_ids_are_stable_per_tenant_and_type() -> None:
    assert sync_job_id(4) == "sync:4:full"
    assert sync_job_id(4, "alerts") == "sync:4:alerts"


def test_worker_settings_register_sync_jobs() -> None:
    settings = sync_worker.WorkerSettings
    assert settings.queue_name == get_settings().sync_queue_name
    assert [fn.__name__ for fn in settings.functions] == [SYNC_TENANT_JOB]
    assert settings.max_tries == 1
    assert len(settings.cron_jobs) == 1


@pytest.mark.asyncio
async def test_sync_tenant_job_runs_full_and_single_passes() -> None:
    tenant = await create_test_tenant()
    ctx = {"sync_engine": engine_for(FakeRemoteSource(devices=[device_record("d1")]))}

    full = await sync_worker.sync_tenant(ctx, tenant.id)
    single = await sync_worker.sync_tenant(ctx, tenant.id, "devices")

    assert full["sync_type"] == "full"
    assert full["devices"]["created"] == 1
    assert single == {"sync_type": "devices", "created": 0, "updated": 1, "deactivated": 0, "total": 1}


@pytest.mark.asyncio
async def test_sync_due_job_reports_counts() -> None:
    await create_test_tenant("One")
    await create_test_tenant("Two")
    ctx = {"sync_engine": engine_for(FakeRemoteSource())}

    assert await sync_worker.sync_due(ctx) == {"tenants": 2, "succeeded": 2, "failed": 0}
    assert await sync_worker.sync_due(ctx) == {"tenants": 0, "succeeded": 0, "failed": 0}
