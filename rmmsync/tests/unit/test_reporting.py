from __future__ import annotations

import pytest

from rmmsync.persistence.db import SessionLocal
from rmmsync.providers.rmm.fake import FakeRemoteSource
from rmmsync.services import reporting
from rmmsync.services.query import InvalidSortError
from rmmsync.tests.utils.records import alert_record, create_test_tenant, device_record, engine_for, site_record


async def _seed() -> int:
    tenant = await create_test_tenant("Acme")
    source = FakeRemoteSource(
        sites=[
            site_record("s1", name="Head Office", deviceCount=2),
            site_record("s2", name="Branch", deviceCount=0),
        ],
        devices=[
            device_record("d1", name="alpha-ws", siteUid="s1", hostname="alpha.local"),
            device_record("d2", name="bravo-srv", siteUid="s1", status="offline", type="Server"),
            device_record("d3", name="charlie-ws", siteUid="s2"),
        ],
        alerts=[
            alert_record("a1", title="Disk full", deviceUid="d1", siteUid="s1", severity="critical"),
            alert_record("a2", title="CPU high", deviceUid="d1", siteUid="s1"),
            alert_record("a3", title="Patch missing", deviceUid="d2", siteUid="s1", severity="info"),
        ],
    )
    engine = engine_for(source)
    await engine.reconcile_tenant(tenant.id)
    # Drop charlie so one device is inactive.
    source.devices = source.devices[:2]
    await engine.reconcile(tenant.id, "devices")
    return tenant.id


@pytest.mark.asyncio
async def test_list_devices_filters_and_sorts() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        default = await reporting.list_devices(session, tenant_id)
        active = await reporting.list_devices(session, tenant_id, reporting.DeviceFilters(is_active=True))
        servers = await reporting.list_devices(session, tenant_id, reporting.DeviceFilters(device_type="Server"))
        by_host = await reporting.list_devices(session, tenant_id, reporting.DeviceFilters(search="alpha.loc"))
        desc = await reporting.list_devices(session, tenant_id, reporting.DeviceFilters(sort="-name"))
        paged = await reporting.list_devices(session, tenant_id, reporting.DeviceFilters(limit=1, offset=1))
        other_tenant = await reporting.list_devices(session, tenant_id + 1000)

    assert [d.uid for d in default] == ["d1", "d2", "d3"]
    assert [d.uid for d in active] == ["d1", "d2"]
    assert [d.uid for d in servers] == ["d2"]
    assert [d.uid for d in by_host] == ["d1"]
    assert [d.uid for d in desc] == ["d3", "d2", "d1"]
    assert [d.uid for d in paged] == ["d2"]
    assert other_tenant == []


@pytest.mark.asyncio
async def test_list_rejects_unknown_sort_fields() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        with pytest.raises(InvalidSortError):
            await reporting.list_alerts(session, tenant_id, reporting.AlertFilters(sort="password"))


@pytest.mark.asyncio
async def test_list_alerts_filters() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        critical = await reporting.list_alerts(session, tenant_id, reporting.AlertFilters(severity="critical"))
        for_device = await reporting.list_alerts(session, tenant_id, reporting.AlertFilters(device_uid="d1"))
        by_title = await reporting.list_alerts(
            session, tenant_id, reporting.AlertFilters(search="patch", sort="title")
        )
    assert [a.uid for a in critical] == ["a1"]
    assert sorted(a.uid for a in for_device) == ["a1", "a2"]
    assert [a.uid for a in by_title] == ["a3"]


@pytest.mark.asyncio
async def test_general_stats() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        stats = await reporting.get_general_stats(session, tenant_id)
    assert stats["total_devices"] == 3
    assert stats["online_devices"] == 1
    assert stats["offline_devices"] == 1
    assert stats["inactive_devices"] == 1
    assert stats["total_sites"] == 2
    assert stats["active_sites"] == 2
    assert stats["critical_alerts"] == 1
    assert stats["warning_alerts"] == 1
    assert stats["info_alerts"] == 1
    assert stats["unacknowledged_alerts"] == 3


@pytest.mark.asyncio
async def test_stats_by_site_counts_devices_and_alerts_independently() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        stats = {row["uid"]: row for row in await reporting.get_stats_by_site(session, tenant_id)}

    head = stats["s1"]
    assert head["device_count"] == 2
    assert head["actual_devices"] == 2
    assert head["actual_online"] == 1
    assert head["actual_offline"] == 1
    assert head["total_alerts"] == 3
    assert head["critical_alerts"] == 1
    branch = stats["s2"]
    assert branch["actual_devices"] == 1
    assert branch["total_alerts"] == 0


@pytest.mark.asyncio
async def test_sync_stats_and_data_status() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        sync_stats = await reporting.get_sync_stats(session, tenant_id)
        data_status = await reporting.get_data_status(session, tenant_id)

    devices_success = next(
        row for row in sync_stats if row["sync_type"] == "devices" and row["status"] == "success"
    )
    assert devices_success["count"] == 2
    assert devices_success["total_created"] == 3
    assert devices_success["total_deactivated"] == 1
    full = next(row for row in sync_stats if row["sync_type"] == "full")
    assert full["count"] == 1

    tables = {row["table_name"]: row for row in data_status}
    assert tables["devices"] == {
        "tenant_id": tenant_id,
        "table_name": "devices",
        "total": 3,
        "active": 2,
        "online": 1,
        "offline": 1,
        "inactive": 1,
    }
    assert tables["sites"]["offline"] == 0
    assert tables["alerts"]["total"] == 3


@pytest.mark.asyncio
async def test_detail_reads_and_history() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        device = await reporting.get_device_with_alerts(session, tenant_id, "d1")
        site = await reporting.get_site_with_details(session, tenant_id, "s1")
        missing = await reporting.get_device_with_alerts(session, tenant_id, "nope")
        history = await reporting.get_entity_history(session, tenant_id, "devices", "d3")
        created_only = await reporting.get_entity_history(
            session, tenant_id, "devices", "d3", action="created"
        )

    assert device["device"].name == "alpha-ws"
    assert sorted(a.uid for a in device["alerts"]) == ["a1", "a2"]
    assert [d.uid for d in site["devices"]] == ["d1", "d2"]
    assert len(site["alerts"]) == 3
    assert missing is None
    assert [row.action for row in history] == ["deactivated", "created"]
    assert [row.action for row in created_only] == ["created"]


@pytest.mark.asyncio
async def test_global_search_spans_entity_types() -> None:
    tenant_id = await _seed()
    async with SessionLocal() as session:
        results = await reporting.global_search(session, tenant_id, "head")
        nothing = await reporting.global_search(session, tenant_id, "zzz")
    assert [s.uid for s in results["sites"]] == ["s1"]
    assert results["total"] == 1
    assert nothing["total"] == 0
