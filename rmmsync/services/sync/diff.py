from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect


# Columns that change on every pass or are identity; excluded from update diffs so an
# unchanged remote payload produces no history row.
BOOKKEEPING_COLUMNS = frozenset({"id", "tenant_id", "uid", "created_at", "updated_at", "last_synced_at"})


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; treat them as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    return value


def row_snapshot(row: Any) -> dict[str, Any]:
    # Full column snapshot of an ORM row in JSON-safe form.
    # Expired server-side columns are skipped rather than lazily loaded under asyncio.
    state = inspect(row)
    unloaded = state.unloaded
    return {
        attr.key: to_json_value(getattr(row, attr.key))
        for attr in state.mapper.column_attrs
        if attr.key not in unloaded
    }


def tracked_snapshot(row: Any) -> dict[str, Any]:
    return {key: value for key, value in row_snapshot(row).items() if key not in BOOKKEEPING_COLUMNS}


def compute_changed_fields(old: dict[str, Any] | None, new: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Field-level diff keyed by every field of ``new`` whose value differs from ``old``.

    A missing ``old`` is treated as an empty record, so every key of ``new``
    (including newly introduced ones) shows up with ``old=None``.
    """
    old = old or {}
    changes: dict[str, dict[str, Any]] = {}
    for key, new_value in new.items():
        old_value = to_json_value(old.get(key))
        new_value = to_json_value(new_value)
        if old_value != new_value or key not in old:
            changes[key] = {"old": old_value, "new": new_value}
    return changes
