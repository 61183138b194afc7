from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rmmsync.services.sync.specs import (
    ALERT_SPEC,
    DEVICE_SPEC,
    FULL_SYNC_ORDER,
    SITE_SPEC,
    get_spec,
)


def test_extract_skips_missing_and_null_keys() -> None:
    values = DEVICE_SPEC.extract({"uid": "d1", "name": "ws-01", "osVersion": None, "hostname": "ws-01.local"})
    assert values == {"name": "ws-01", "hostname": "ws-01.local"}


def test_extract_tries_alternate_remote_keys() -> None:
    values = DEVICE_SPEC.extract({"deviceType": {"category": "Desktop"}, "intIpAddress": "10.0.0.5"})
    assert values == {"device_type": "Desktop", "ip_address": "10.0.0.5"}


def test_extract_converts_types() -> None:
    site = SITE_SPEC.extract({"numberOfDevices": "12", "onlineDevices": 7, "offlineDevices": True})
    assert site == {"device_count": 12, "online_devices": 7}

    alert = ALERT_SPEC.extract({"resolved": "true", "acknowledged": 0, "resolvedAt": 1767225600000})
    assert alert["resolved"] is True
    assert alert["acknowledged"] is False
    assert alert["resolved_at"] == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_extract_drops_unparseable_timestamps() -> None:
    assert "last_seen_remote" not in DEVICE_SPEC.extract({"lastSeen": "not a date"})


def test_alert_update_actions() -> None:
    assert ALERT_SPEC.update_action({"resolved": {"old": False, "new": True}}) == "resolved"
    assert ALERT_SPEC.update_action({"acknowledged": {"old": False, "new": True}}) == "acknowledged"
    assert ALERT_SPEC.update_action({"severity": {"old": "info", "new": "critical"}}) == "updated"
    reappeared = {"is_active": {"old": False, "new": True}, "resolved": {"old": False, "new": True}}
    assert ALERT_SPEC.update_action(reappeared) == "updated"
    assert DEVICE_SPEC.update_action({"resolved": {"old": False, "new": True}}) == "updated"


def test_full_sync_order_and_lookup() -> None:
    assert [spec.entity_type for spec in FULL_SYNC_ORDER] == ["sites", "devices", "alerts"]
    assert get_spec("alerts") is ALERT_SPEC
    with pytest.raises(ValueError):
        get_spec("tickets")
