from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from rmmsync.domain.models import Device
from rmmsync.services.sync.diff import compute_changed_fields, to_json_value, tracked_snapshot


def test_changed_fields_only_lists_differences() -> None:
    old = {"status": "online", "name": "ws-01", "os_version": "10.0"}
    new = {"status": "offline", "name": "ws-01", "os_version": "10.0"}
    assert compute_changed_fields(old, new) == {"status": {"old": "online", "new": "offline"}}


def test_changed_fields_against_empty_record_lists_everything() -> None:
    new = {"status": "online", "hostname": None}
    assert compute_changed_fields(None, new) == {
        "status": {"old": None, "new": "online"},
        "hostname": {"old": None, "new": None},
    }


def test_changed_fields_normalizes_datetimes() -> None:
    aware = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    naive = aware.replace(tzinfo=None)
    assert compute_changed_fields({"last_seen_remote": naive}, {"last_seen_remote": aware}) == {}


def test_to_json_value_handles_nested_values() -> None:
    value = {
        "when": datetime(2026, 1, 1, 8, 0),
        "amount": Decimal("1.5"),
        "items": (1, "two"),
        3: None,
    }
    assert to_json_value(value) == {
        "when": "2026-01-01T08:00:00+00:00",
        "amount": 1.5,
        "items": [1, "two"],
        "3": None,
    }


def test_tracked_snapshot_excludes_bookkeeping_columns() -> None:
    device = Device(
        id=5,
        tenant_id=1,
        uid="d1",
        name="ws-01",
        status="online",
        is_active=True,
        last_synced_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    snapshot = tracked_snapshot(device)
    assert snapshot["name"] == "ws-01"
    assert snapshot["status"] == "online"
    for column in ("id", "tenant_id", "uid", "last_synced_at", "created_at", "updated_at"):
        assert column not in snapshot
