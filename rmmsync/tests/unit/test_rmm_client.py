from __future__ import annotations

import httpx
import pytest

from rmmsync.core.config import get_settings
from rmmsync.core.errors import RemoteApiError, RemoteAuthError
from rmmsync.domain.models import Tenant
from rmmsync.providers.rmm.base import RmmCredentials
from rmmsync.providers.rmm.client import RmmApiClient
from rmmsync.providers.rmm.factory import credentials_for_tenant


BASE_URL = "https://rmm.test"
CREDENTIALS = RmmCredentials(base_url=BASE_URL, api_key="key", api_secret="secret")


class _RemoteStub:
    # Records requests and serves canned responses per path.
    def __init__(self, routes: dict[str, list[httpx.Response]]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/auth/oauth/token":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": f"tok-{self.token_requests}", "expires_in": 3600})
        key = f"{BASE_URL}{request.url.path}"
        if "page" in request.url.params:
            key = f"{key}?page={request.url.params['page']}"
        responses = self.routes[key]
        return responses.pop(0) if len(responses) > 1 else responses[0]


def _client(stub: _RemoteStub, **kwargs) -> RmmApiClient:
    return RmmApiClient(CREDENTIALS, client=httpx.AsyncClient(transport=httpx.MockTransport(stub)), **kwargs)


@pytest.mark.asyncio
async def test_list_follows_next_page_links_with_one_token() -> None:
    page_two = f"{BASE_URL}/api/v2/device?page=2"
    stub = _RemoteStub(
        {
            f"{BASE_URL}/api/v2/device": [
                httpx.Response(200, json={"devices": [{"uid": "d1"}], "pageDetails": {"nextPageUrl": page_two}})
            ],
            page_two: [httpx.Response(200, json={"devices": [{"uid": "d2"}], "pageDetails": {}})],
        }
    )
    client = _client(stub)

    devices = await client.list_devices()

    assert [d["uid"] for d in devices] == ["d1", "d2"]
    assert stub.token_requests == 1
    api_requests = [r for r in stub.requests if r.url.path.startswith("/api/v2")]
    assert all(r.headers["Authorization"] == "Bearer tok-1" for r in api_requests)
    assert api_requests[0].url.params["limit"] == str(get_settings().rmm_page_size)
    token_request = stub.requests[0]
    assert b"grant_type=client_credentials" in token_request.content
    await client.aclose()


@pytest.mark.asyncio
async def test_list_pages_bare_arrays_by_offset() -> None:
    stub = _RemoteStub(
        {
            f"{BASE_URL}/api/v2/site": [
                httpx.Response(200, json=[{"uid": "s1"}, {"uid": "s2"}]),
                httpx.Response(200, json=[{"uid": "s3"}]),
            ]
        }
    )
    client = _client(stub, page_size=2)

    sites = await client.list_sites()

    assert [s["uid"] for s in sites] == ["s1", "s2", "s3"]
    offsets = [r.url.params["offset"] for r in stub.requests if r.url.path == "/api/v2/site"]
    assert offsets == ["0", "2"]


@pytest.mark.asyncio
async def test_endless_pagination_raises_instead_of_truncating(monkeypatch) -> None:
    monkeypatch.setattr("rmmsync.providers.rmm.client.MAX_PAGES", 2)
    served = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal served
        if request.url.path == "/auth/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        served += 1
        return httpx.Response(
            200,
            json={
                "devices": [{"uid": f"d{served}"}],
                "pageDetails": {"nextPageUrl": f"{BASE_URL}/api/v2/device?page={served + 1}"},
            },
        )

    client = RmmApiClient(CREDENTIALS, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(RemoteApiError) as excinfo:
        await client.list_devices()

    assert "exceeded 2 pages" in str(excinfo.value)
    assert served == 2


@pytest.mark.asyncio
async def test_unauthorized_response_invalidates_token() -> None:
    stub = _RemoteStub(
        {
            f"{BASE_URL}/api/v2/alert": [
                httpx.Response(401, json={"message": "expired"}),
                httpx.Response(200, json={"alerts": []}),
            ]
        }
    )
    client = _client(stub)

    with pytest.raises(RemoteAuthError):
        await client.list_alerts()
    assert await client.list_alerts() == []
    assert stub.token_requests == 2


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_raised() -> None:
    stub = _RemoteStub({f"{BASE_URL}/api/v2/device": [httpx.Response(503, json={"message": "maintenance"})]})
    client = _client(stub)

    with pytest.raises(RemoteApiError) as excinfo:
        await client.list_devices()

    assert excinfo.value.status_code == 503
    assert "maintenance" in str(excinfo.value)
    api_calls = [r for r in stub.requests if r.url.path == "/api/v2/device"]
    assert len(api_calls) == get_settings().ext_retry_max_attempts


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    stub = _RemoteStub({f"{BASE_URL}/api/v2/site": [httpx.Response(404, json={"message": "gone"})]})
    client = _client(stub)

    with pytest.raises(RemoteApiError) as excinfo:
        await client.list_sites()

    assert excinfo.value.status_code == 404
    assert len([r for r in stub.requests if r.url.path == "/api/v2/site"]) == 1


@pytest.mark.asyncio
async def test_rejected_credentials_raise_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_client"})

    client = RmmApiClient(CREDENTIALS, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(RemoteAuthError) as excinfo:
        await client.list_devices()
    assert "invalid_client" in str(excinfo.value)
    assert await client.test_connection() is False


def test_credentials_prefer_tenant_values() -> None:
    tenant = Tenant(id=1, rmm_api_url="https://tenant.rmm", rmm_api_key="k", rmm_api_secret="s")
    credentials = credentials_for_tenant(tenant)
    assert credentials.base_url == "https://tenant.rmm"
    assert credentials.api_key == "k"

    fallback = credentials_for_tenant(Tenant(id=2, rmm_api_key="k", rmm_api_secret="s"))
    assert fallback.base_url == get_settings().rmm_api_url


def test_missing_credentials_are_rejected() -> None:
    with pytest.raises(RemoteAuthError):
        credentials_for_tenant(Tenant(id=3))


@pytest.mark.asyncio
async def test_single_entity_reads_use_entity_paths() -> None:
    stub = _RemoteStub(
        {
            f"{BASE_URL}/api/v2/device/d1": [httpx.Response(200, json={"uid": "d1", "hostname": "ws-01"})],
            f"{BASE_URL}/api/v2/site/s1/device": [httpx.Response(200, json={"devices": [{"uid": "d1"}]})],
            f"{BASE_URL}/api/v2/account": [httpx.Response(200, json={"uid": "acct", "name": "MSP"})],
        }
    )
    async with _client(stub) as client:
        device = await client.get_device("d1")
        site_devices = await client.list_site_devices("s1")
        connected = await client.test_connection()

    assert device["hostname"] == "ws-01"
    assert [d["uid"] for d in site_devices] == ["d1"]
    assert connected is True
