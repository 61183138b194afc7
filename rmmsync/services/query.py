from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.sql import ColumnElement


class InvalidSortError(ValueError):
    # Raise for sort fields outside a listing's whitelist.
    pass


@dataclass(frozen=True)
class SortSpec:
    # Sortable column exposed under a public field name.
    column: ColumnElement[Any]


@dataclass(frozen=True)
class SortField:
    name: str
    spec: SortSpec
    direction: str


def parse_sort(
    *,
    sort: str | None,
    allowed: dict[str, SortSpec],
    default: list[SortField],
) -> list[SortField]:
    # Parse comma-delimited sort strings ("-name,status") into whitelisted fields.
    if not sort:
        return default
    fields: list[SortField] = []
    seen = set()
    for raw in sort.split(","):
        raw = raw.strip()
        if not raw:
            continue
        direction = "desc" if raw.startswith("-") else "asc"
        name = raw[1:] if raw.startswith("-") else raw
        if name in seen:
            continue
        spec = allowed.get(name)
        if spec is None:
            raise InvalidSortError(f"Unsupported sort field: {name}")
        fields.append(SortField(name=name, spec=spec, direction=direction))
        seen.add(name)
    if not fields:
        return default
    return fields


def order_by_clauses(sort_fields: list[SortField], id_column: ColumnElement[Any]) -> list[Any]:
    # The id tiebreaker keeps limit/offset pages stable.
    clauses = [
        field.spec.column.desc() if field.direction == "desc" else field.spec.column.asc()
        for field in sort_fields
    ]
    clauses.append(id_column.asc())
    return clauses
