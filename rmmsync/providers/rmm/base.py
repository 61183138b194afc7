from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


RemoteRecord = dict[str, Any]


@dataclass(frozen=True)
class RmmCredentials:
    # Immutable per-tenant connection config; adapters never mutate shared client state.
    base_url: str
    api_key: str
    api_secret: str
    platform: str | None = None


class RemoteSource(Protocol):
    async def list_devices(self) -> list[RemoteRecord]:
        ...

    async def list_sites(self) -> list[RemoteRecord]:
        ...

    async def list_alerts(self) -> list[RemoteRecord]:
        ...

    async def aclose(self) -> None:
        ...
