from __future__ import annotations

import copy
from collections import Counter

from rmmsync.providers.rmm.base import RemoteRecord


class FakeRemoteSource:
    def __init__(
        self,
        *,
        devices: list[RemoteRecord] | None = None,
        sites: list[RemoteRecord] | None = None,
        alerts: list[RemoteRecord] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        # Deterministic snapshots keep reconciliation tests free of network calls.
        self.devices = list(devices or [])
        self.sites = list(sites or [])
        self.alerts = list(alerts or [])
        # Map of "devices"/"sites"/"alerts" -> exception raised by the matching list call.
        self.errors = dict(errors or {})
        self.calls: Counter[str] = Counter()
        self.closed = False

    def _snapshot(self, kind: str, records: list[RemoteRecord]) -> list[RemoteRecord]:
        self.calls[kind] += 1
        error = self.errors.get(kind)
        if error is not None:
            raise error
        # Hand out copies so callers cannot mutate the stored snapshot.
        return copy.deepcopy(records)

    async def list_devices(self) -> list[RemoteRecord]:
        return self._snapshot("devices", self.devices)

    async def list_sites(self) -> list[RemoteRecord]:
        return self._snapshot("sites", self.sites)

    async def list_alerts(self) -> list[RemoteRecord]:
        return self._snapshot("alerts", self.alerts)

    async def aclose(self) -> None:
        self.closed = True
