from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx

from rmmsync.core.config import get_settings
from rmmsync.core.errors import RemoteAuthError
from rmmsync.providers.rmm.base import RmmCredentials


logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/oauth/token"


class OAuthTokenCache:
    """OAuth2 client-credentials token holder for one set of RMM credentials.

    Tokens are cached until their advertised expiry (or the configured default
    TTL) minus a refresh skew. Concurrent callers share a single in-flight
    token request.
    """

    def __init__(
        self,
        credentials: RmmCredentials,
        client: httpx.AsyncClient,
        *,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._credentials = credentials
        self._client = client
        self._time = time_source or time.monotonic
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        # Drop the cached token after a 401 so the next call re-authenticates.
        self._token = None
        self._expires_at = 0.0

    def _valid(self) -> bool:
        return self._token is not None and self._time() < self._expires_at

    async def get_token(self) -> str:
        if self._valid():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if self._valid():
                return self._token  # type: ignore[return-value]
            await self._fetch()
            return self._token  # type: ignore[return-value]

    async def _fetch(self) -> None:
        settings = get_settings()
        url = f"{self._credentials.base_url.rstrip('/')}{TOKEN_PATH}"
        data = {
            "grant_type": "client_credentials",
            "client_id": self._credentials.api_key,
            "client_secret": self._credentials.api_secret,
        }
        try:
            response = await self._client.post(
                url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            raise RemoteAuthError(f"OAuth token request failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteAuthError(
                f"OAuth token request rejected with status {response.status_code}: {_error_text(response)}"
            )
        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise RemoteAuthError("OAuth token response did not include access_token")
        ttl_s = int(payload.get("expires_in") or settings.rmm_token_ttl_s)
        skew_s = min(settings.rmm_token_refresh_skew_s, ttl_s // 2)
        self._token = str(token)
        self._expires_at = self._time() + ttl_s - skew_s
        logger.info("rmm_token_acquired base_url=%s ttl_s=%s", self._credentials.base_url, ttl_s)


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("error") or body.get("message") or body)
    return str(body)[:200]
