from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from rmmsync.apps.api.deps import get_sync_engine
from rmmsync.apps.api.main import create_app
from rmmsync.core.errors import RemoteApiError
from rmmsync.providers.rmm.fake import FakeRemoteSource
from rmmsync.tests.utils.records import alert_record, device_record, engine_for, site_record


AUTH = {"Authorization": "Bearer test-admin-token"}


def _app(source: FakeRemoteSource | None = None):
    app = create_app()
    engine = engine_for(source or FakeRemoteSource())
    app.dependency_overrides[get_sync_engine] = lambda: engine
    return app


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _create_tenant(client: AsyncClient, **fields) -> dict:
    payload = {"name": "Acme", "rmm_api_key": "key", "rmm_api_secret": "secret", **fields}
    response = await client.post("/v1/tenants", json=payload, headers=AUTH)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health_versioned_and_unversioned() -> None:
    async with _client(_app()) as client:
        bare = await client.get("/health")
        versioned = await client.get("/v1/health")
    assert bare.status_code == 200
    assert bare.json() == {"status": "ok", "database": "ok"}
    body = versioned.json()
    assert body["data"] == {"status": "ok", "database": "ok"}
    assert body["meta"]["api_version"] == "v1"
    assert versioned.headers["X-Request-Id"] == body["meta"]["request_id"]


@pytest.mark.asyncio
async def test_admin_token_is_required() -> None:
    async with _client(_app()) as client:
        missing = await client.get("/v1/tenants")
        wrong = await client.get("/v1/tenants", headers={"Authorization": "Bearer nope"})
        malformed = await client.get("/v1/tenants", headers={"Authorization": "Token test-admin-token"})
        ok = await client.get("/v1/tenants", headers=AUTH)
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert wrong.status_code == 401
    assert malformed.status_code == 401
    assert ok.status_code == 200


@pytest.mark.asyncio
async def test_tenant_crud_never_returns_secrets() -> None:
    async with _client(_app()) as client:
        created = await _create_tenant(client, name="Acme Corp")
        tenant_id = created["id"]
        fetched = await client.get(f"/v1/tenants/{tenant_id}", headers=AUTH)
        patched = await client.patch(
            f"/v1/tenants/{tenant_id}", json={"sync_interval_minutes": 15}, headers=AUTH
        )
        conflict = await client.post("/v1/tenants", json={"name": "Acme Corp"}, headers=AUTH)
        listing = await client.get("/v1/tenants?limit=10", headers=AUTH)
        deactivated = await client.post(f"/v1/tenants/{tenant_id}/deactivate", headers=AUTH)
        deleted = await client.delete(f"/v1/tenants/{tenant_id}", headers=AUTH)
        gone = await client.get(f"/v1/tenants/{tenant_id}", headers=AUTH)

    assert created["slug"] == "acme-corp"
    assert created["has_credentials"] is True
    assert "rmm_api_key" not in created
    assert "rmm_api_secret" not in created
    assert fetched.json()["data"]["id"] == tenant_id
    assert patched.json()["data"]["sync_interval_minutes"] == 15
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "TENANT_SLUG_CONFLICT"
    assert listing.json()["meta"]["count"] == 1
    assert listing.json()["meta"]["limit"] == 10
    assert deactivated.json()["data"]["is_active"] is False
    assert deleted.json()["data"] == {"deleted": True}
    assert gone.status_code == 404
    assert gone.json()["error"]["code"] == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_create_tenant_validates_payload() -> None:
    async with _client(_app()) as client:
        response = await client.post("/v1/tenants", json={"name": "", "bogus": 1}, headers=AUTH)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_sync_config_round_trip() -> None:
    async with _client(_app()) as client:
        tenant = await _create_tenant(client)
        updated = await client.put(
            f"/v1/tenants/{tenant['id']}/sync-config",
            json={"sync_alerts": False, "rmm_api_secret": "rotated"},
            headers=AUTH,
        )
        fetched = await client.get(f"/v1/tenants/{tenant['id']}/sync-config", headers=AUTH)
    data = updated.json()["data"]
    assert data["sync_alerts"] is False
    assert data["sync_devices"] is True
    assert data["has_credentials"] is True
    assert "rmm_api_secret" not in data
    assert fetched.json()["data"] == data


@pytest.mark.asyncio
async def test_inline_sync_then_inventory_reads() -> None:
    source = FakeRemoteSource(
        sites=[site_record("s1", name="Head Office")],
        devices=[device_record("d1", siteUid="s1"), device_record("d2", siteUid="s1", status="offline")],
        alerts=[alert_record("a1", deviceUid="d1", siteUid="s1", severity="critical")],
    )
    async with _client(_app(source)) as client:
        tenant = await _create_tenant(client)
        base = f"/v1/tenants/{tenant['id']}"
        full = await client.post(f"{base}/sync", headers=AUTH)
        devices = await client.get(f"{base}/devices?sort=-name", headers=AUTH)
        offline = await client.get(f"{base}/devices?status=offline", headers=AUTH)
        device = await client.get(f"{base}/devices/d1", headers=AUTH)
        site = await client.get(f"{base}/sites/s1", headers=AUTH)
        alerts = await client.get(f"{base}/alerts?severity=critical", headers=AUTH)
        history = await client.get(f"{base}/devices/d1/history", headers=AUTH)
        search = await client.get(f"{base}/search?q=head", headers=AUTH)
        runs = await client.get(f"{base}/sync/runs", headers=AUTH)
        stats = await client.get(f"{base}/stats", headers=AUTH)
        limits = await client.get(f"{base}/limits", headers=AUTH)
        missing_device = await client.get(f"{base}/devices/nope", headers=AUTH)
        bad_sort = await client.get(f"{base}/devices?sort=secret", headers=AUTH)

    assert full.status_code == 200
    result = full.json()["data"]
    assert result["sync_type"] == "full"
    assert result["totals"] == {"created": 4, "updated": 0, "deactivated": 0, "total": 4}
    assert [d["uid"] for d in devices.json()["data"]] == ["d2", "d1"]
    assert [d["uid"] for d in offline.json()["data"]] == ["d2"]
    assert device.json()["data"]["site_name"] == "Head Office"
    assert [a["uid"] for a in device.json()["data"]["alerts"]] == ["a1"]
    assert len(site.json()["data"]["devices"]) == 2
    assert [a["uid"] for a in alerts.json()["data"]] == ["a1"]
    assert [h["action"] for h in history.json()["data"]] == ["created"]
    assert search.json()["data"]["total"] == 1
    assert [r["sync_type"] for r in runs.json()["data"]][0] in {"full", "alerts"}
    assert len(runs.json()["data"]) == 4
    assert stats.json()["data"]["inventory"]["total_devices"] == 2
    assert limits.json()["data"]["devices"]["current"] == 2
    assert missing_device.status_code == 404
    assert bad_sort.status_code == 422
    assert bad_sort.json()["error"]["code"] == "INVALID_SORT"


@pytest.mark.asyncio
async def test_single_type_sync_and_errors() -> None:
    source = FakeRemoteSource(
        devices=[device_record("d1")],
        errors={"alerts": RemoteApiError("API Error 500: boom", status_code=500)},
    )
    async with _client(_app(source)) as client:
        tenant = await _create_tenant(client)
        base = f"/v1/tenants/{tenant['id']}"
        devices = await client.post(f"{base}/sync?entity_type=devices", headers=AUTH)
        alerts = await client.post(f"{base}/sync?entity_type=alerts", headers=AUTH)
        bad_type = await client.post(f"{base}/sync?entity_type=printers", headers=AUTH)
        unknown = await client.post("/v1/tenants/9999/sync", headers=AUTH)

    assert devices.json()["data"] == {
        "sync_type": "devices",
        "created": 1,
        "updated": 0,
        "deactivated": 0,
        "total": 1,
    }
    assert alerts.status_code == 502
    assert alerts.json()["error"]["code"] == "REMOTE_API_ERROR"
    assert alerts.json()["error"]["details"] == {"remote_status": 500}
    assert bad_type.status_code == 422
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_inactive_tenant_sync_conflict() -> None:
    async with _client(_app()) as client:
        tenant = await _create_tenant(client)
        await client.post(f"/v1/tenants/{tenant['id']}/deactivate", headers=AUTH)
        response = await client.post(f"/v1/tenants/{tenant['id']}/sync", headers=AUTH)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "TENANT_INACTIVE"


@pytest.mark.asyncio
async def test_due_listing_and_batch_run() -> None:
    source = FakeRemoteSource(devices=[device_record("d1")])
    async with _client(_app(source)) as client:
        first = await _create_tenant(client, name="First")
        await _create_tenant(client, name="Second", sync_enabled=False)
        due = await client.get("/v1/sync/due", headers=AUTH)
        batch = await client.post("/v1/sync/due", headers=AUTH)
        due_after = await client.get("/v1/sync/due", headers=AUTH)
        run_stats = await client.get(f"/v1/sync/runs/stats?tenant_id={first['id']}", headers=AUTH)
        data_status = await client.get("/v1/sync/data-status", headers=AUTH)

    assert [t["id"] for t in due.json()["data"]] == [first["id"]]
    outcomes = batch.json()["data"]
    assert len(outcomes) == 1
    assert outcomes[0]["success"] is True
    assert outcomes[0]["result"]["devices"]["created"] == 1
    assert due_after.json()["data"] == []
    assert {row["sync_type"] for row in run_stats.json()["data"]} == {"full", "sites", "devices", "alerts"}
    assert any(row["table_name"] == "devices" for row in data_status.json()["data"])


@pytest.mark.asyncio
async def test_global_stats_route() -> None:
    async with _client(_app()) as client:
        await _create_tenant(client)
        response = await client.get("/v1/tenants/stats/global", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["data"]["total_tenants"] == 1
