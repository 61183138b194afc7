from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from rmmsync.domain.models import Alert, AlertHistory, Device, DeviceHistory, Site, SiteHistory
from rmmsync.providers.rmm.base import RemoteRecord, RemoteSource


INACTIVE_STATUS = "inactive"


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        # Remote enums occasionally arrive as {"category": ..., "type": ...}.
        value = value.get("category") or value.get("type") or value.get("name")
        if value is None:
            return None
    return str(value)


def _int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _datetime(value: Any) -> datetime | None:
    # ISO-8601 strings or epoch milliseconds, as the remote API mixes both.
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class FieldMap:
    column: str
    # Candidate remote keys, tried in order; the first present, non-null one wins.
    remote_keys: tuple[str, ...]
    convert: Callable[[Any], Any] = _text


@dataclass(frozen=True)
class NameFallback:
    # Fill ``column`` from the named cache keyed by the row's ``uid_column``.
    column: str
    uid_column: str
    cache: str


def _default_action(_changed: dict[str, Any]) -> str:
    return "updated"


def _alert_action(changed: dict[str, Any]) -> str:
    # Reappearing after deactivation is an update, whatever state it comes back in.
    if changed.get("is_active", {}).get("new") is True:
        return "updated"
    if changed.get("resolved", {}).get("new") is True:
        return "resolved"
    if changed.get("acknowledged", {}).get("new") is True:
        return "acknowledged"
    return "updated"


@dataclass(frozen=True)
class EntitySpec:
    """Per-entity-type wiring for one reconciliation pass."""

    entity_type: str
    model: type
    history_model: type
    fetch: Callable[[RemoteSource], Awaitable[list[RemoteRecord]]]
    fields: tuple[FieldMap, ...]
    default_status: str
    toggle: str
    fallbacks: tuple[NameFallback, ...] = ()
    update_action: Callable[[dict[str, Any]], str] = _default_action
    caches: tuple[str, ...] = field(default=())

    def extract(self, record: RemoteRecord) -> dict[str, Any]:
        # Only keys present with a non-null value overwrite local columns.
        values: dict[str, Any] = {}
        for mapping in self.fields:
            for key in mapping.remote_keys:
                raw = record.get(key)
                if raw is None:
                    continue
                converted = mapping.convert(raw)
                if converted is not None:
                    values[mapping.column] = converted
                    break
        return values


def _remote_id(*keys: str) -> FieldMap:
    return FieldMap("remote_id", keys or ("id",))


SITE_SPEC = EntitySpec(
    entity_type="sites",
    model=Site,
    history_model=SiteHistory,
    fetch=lambda source: source.list_sites(),
    fields=(
        _remote_id("id"),
        FieldMap("name", ("name",)),
        FieldMap("description", ("description",)),
        FieldMap("status", ("status",)),
        FieldMap("address", ("address",)),
        FieldMap("contact_name", ("contactName",)),
        FieldMap("contact_email", ("contactEmail",)),
        FieldMap("contact_phone", ("contactPhone",)),
        FieldMap("device_count", ("deviceCount", "numberOfDevices"), _int),
        FieldMap("online_devices", ("onlineDevices", "numberOfOnlineDevices"), _int),
        FieldMap("offline_devices", ("offlineDevices", "numberOfOfflineDevices"), _int),
    ),
    default_status=INACTIVE_STATUS,
    toggle="sync_sites",
)

DEVICE_SPEC = EntitySpec(
    entity_type="devices",
    model=Device,
    history_model=DeviceHistory,
    fetch=lambda source: source.list_devices(),
    fields=(
        _remote_id("id"),
        FieldMap("name", ("name",)),
        FieldMap("device_type", ("type", "deviceType")),
        FieldMap("status", ("status",)),
        FieldMap("last_seen_remote", ("lastSeen",), _datetime),
        FieldMap("os", ("os", "operatingSystem")),
        FieldMap("os_version", ("osVersion",)),
        FieldMap("ip_address", ("ip", "intIpAddress")),
        FieldMap("mac_address", ("macAddress",)),
        FieldMap("hostname", ("hostname",)),
        FieldMap("site_uid", ("siteUid",)),
        FieldMap("site_name", ("siteName",)),
    ),
    default_status=INACTIVE_STATUS,
    toggle="sync_devices",
    fallbacks=(NameFallback("site_name", "site_uid", "sites"),),
    caches=("sites",),
)

ALERT_SPEC = EntitySpec(
    entity_type="alerts",
    model=Alert,
    history_model=AlertHistory,
    fetch=lambda source: source.list_alerts(),
    fields=(
        _remote_id("id", "alertUid"),
        FieldMap("title", ("title", "message")),
        FieldMap("message", ("message",)),
        FieldMap("severity", ("severity", "priority")),
        FieldMap("category", ("category",)),
        FieldMap("source", ("source",)),
        FieldMap("status", ("status",)),
        FieldMap("acknowledged", ("acknowledged",), _bool),
        FieldMap("resolved", ("resolved",), _bool),
        FieldMap("acknowledged_at", ("acknowledgedAt",), _datetime),
        FieldMap("resolved_at", ("resolvedAt",), _datetime),
        FieldMap("device_uid", ("deviceUid",)),
        FieldMap("device_name", ("deviceName",)),
        FieldMap("site_uid", ("siteUid",)),
        FieldMap("site_name", ("siteName",)),
    ),
    default_status="active",
    toggle="sync_alerts",
    fallbacks=(
        NameFallback("device_name", "device_uid", "devices"),
        NameFallback("site_name", "site_uid", "sites"),
    ),
    update_action=_alert_action,
    caches=("devices", "sites"),
)

ENTITY_SPECS: dict[str, EntitySpec] = {
    spec.entity_type: spec for spec in (SITE_SPEC, DEVICE_SPEC, ALERT_SPEC)
}
# Sites first so devices can denormalize site names; alerts last for both.
FULL_SYNC_ORDER: tuple[EntitySpec, ...] = (SITE_SPEC, DEVICE_SPEC, ALERT_SPEC)
CACHE_MODELS: dict[str, type] = {"sites": Site, "devices": Device}


def get_spec(entity_type: str) -> EntitySpec:
    try:
        return ENTITY_SPECS[entity_type]
    except KeyError:
        raise ValueError(f"Unsupported entity type: {entity_type}") from None
