from __future__ import annotations

import logging
from typing import Any

import httpx

from rmmsync.core.config import get_settings
from rmmsync.core.errors import RemoteApiError, RemoteAuthError
from rmmsync.providers.rmm.auth import OAuthTokenCache
from rmmsync.providers.rmm.base import RemoteRecord, RmmCredentials
from rmmsync.services.resilience import retry_async


logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2"
# Hard stop for runaway pagination (a remote that keeps returning nextPageUrl).
MAX_PAGES = 1000


class RmmApiClient:
    """Read-only client for the RMM REST API (v2), bound to one tenant's credentials.

    Every ``list_*`` call returns the complete current snapshot, walking
    ``pageDetails.nextPageUrl`` links or limit/offset pages until exhausted.
    """

    def __init__(
        self,
        credentials: RmmCredentials,
        *,
        client: httpx.AsyncClient | None = None,
        page_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._credentials = credentials
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.rmm_request_timeout_ms / 1000.0,
            headers={"User-Agent": settings.rmm_user_agent},
        )
        self._page_size = page_size or settings.rmm_page_size
        self._tokens = OAuthTokenCache(credentials, self._client)

    @property
    def credentials(self) -> RmmCredentials:
        return self._credentials

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RmmApiClient":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        full_path = path if path.startswith(API_PREFIX) else f"{API_PREFIX}{path}"
        return f"{self._credentials.base_url.rstrip('/')}{full_path}"

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = self._url(path)

        async def _call() -> Any:
            token = await self._tokens.get_token()
            response = await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
            if response.status_code == 401:
                # Expired or revoked token: drop it so the next pass re-authenticates.
                self._tokens.invalidate()
                raise RemoteAuthError(f"Access token rejected for {path}")
            if response.status_code >= 400:
                raise RemoteApiError(
                    f"API Error {response.status_code}: {_message(response)}",
                    status_code=response.status_code,
                )
            return response.json()

        try:
            return await retry_async(_call)
        except (RemoteAuthError, RemoteApiError):
            raise
        except httpx.HTTPError as exc:
            logger.warning("rmm_request_failed path=%s", path, exc_info=exc)
            raise RemoteApiError(f"Network Error: {exc}") from exc
        except TimeoutError as exc:
            raise RemoteApiError(f"Network Error: request to {path} timed out") from exc

    async def _list_all(self, path: str, collection_key: str) -> list[RemoteRecord]:
        records: list[RemoteRecord] = []
        next_url: str | None = path
        offset = 0
        pages = 0
        while next_url is not None and pages < MAX_PAGES:
            params = None if next_url.startswith("http") else {"limit": self._page_size, "offset": offset}
            payload = await self.get(next_url, params)
            pages += 1
            page, next_link = _split_page(payload, collection_key)
            records.extend(page)
            if next_link:
                next_url = next_link
            elif isinstance(payload, list) and len(page) >= self._page_size:
                offset += self._page_size
                next_url = path
            else:
                next_url = None
        if next_url is not None:
            # A truncated listing would read as deletions downstream.
            raise RemoteApiError(f"Pagination for {path} exceeded {MAX_PAGES} pages")
        logger.debug("rmm_list_complete path=%s records=%s pages=%s", path, len(records), pages)
        return records

    async def list_devices(self) -> list[RemoteRecord]:
        return await self._list_all("/device", "devices")

    async def list_sites(self) -> list[RemoteRecord]:
        return await self._list_all("/site", "sites")

    async def list_alerts(self) -> list[RemoteRecord]:
        return await self._list_all("/alert", "alerts")

    async def list_site_devices(self, site_uid: str) -> list[RemoteRecord]:
        return await self._list_all(f"/site/{site_uid}/device", "devices")

    async def get_account(self) -> dict[str, Any]:
        return await self.get("/account")

    async def get_device(self, device_uid: str) -> dict[str, Any]:
        return await self.get(f"/device/{device_uid}")

    async def get_site(self, site_uid: str) -> dict[str, Any]:
        return await self.get(f"/site/{site_uid}")

    async def get_alert(self, alert_uid: str) -> dict[str, Any]:
        return await self.get(f"/alert/{alert_uid}")

    async def test_connection(self) -> bool:
        # Connectivity probe for operators; failures are logged, not raised.
        try:
            await self.get_account()
        except (RemoteAuthError, RemoteApiError) as exc:
            logger.warning("rmm_connection_test_failed base_url=%s error=%s", self._credentials.base_url, exc)
            return False
        return True


def _split_page(payload: Any, collection_key: str) -> tuple[list[RemoteRecord], str | None]:
    # Accept a bare list, {"<collection>": [...]} and {"data": {...}} envelopes.
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)], None
    if not isinstance(payload, dict):
        return [], None
    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    items = body.get(collection_key)
    if items is None and isinstance(payload.get("data"), list):
        items = payload["data"]
    page_details = body.get("pageDetails") or payload.get("pageDetails") or {}
    next_link = page_details.get("nextPageUrl") if isinstance(page_details, dict) else None
    return [item for item in (items or []) if isinstance(item, dict)], next_link or None


def _message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or response.reason_phrase)
    return response.reason_phrase
