"""
core/query.py -- Paginated listing and case-insensitive "like" filtering.

Shared by auth/store.py (admin user listing) and workouts/store.py (workout
listing). Both stores hand in their Table, the WHERE clauses they built, a
row mapper, and the whitelist of sortable columns.

sort_by format: comma-separated "field:asc|desc" pairs, e.g.
"name:asc,createdAt:desc". Unknown fields are ignored rather than rejected
so a stale client sort key degrades to the default order instead of a 500.
Column names never come from raw input -- only whitelisted Column objects
reach ORDER BY.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Column, Table, func, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnElement

DEFAULT_LIMIT = 10
DEFAULT_PAGE = 1


@dataclass
class Page:
    """One page of results plus the counters a client needs to page on."""

    results: list[Any] = field(default_factory=list)
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    total_pages: int = 0
    total_results: int = 0


def like_filters(columns: Mapping[str, Column], values: Mapping[str, Any]) -> list[ColumnElement]:
    """Build case-insensitive substring clauses for every key present in `values`.

    LIKE wildcards in the user's text are escaped, so "10%" matches the
    literal string rather than everything starting with "10".
    """
    clauses: list[ColumnElement] = []
    for key, column in columns.items():
        value = values.get(key)
        if value is None or value == "":
            continue
        clauses.append(func.lower(column).contains(str(value).lower(), autoescape=True))
    return clauses


def _order_by(sort_by: str | None, sortable: Mapping[str, Column], default: Column) -> list[ColumnElement]:
    order: list[ColumnElement] = []
    for part in (sort_by or "").split(","):
        name, _, direction = part.strip().partition(":")
        column = sortable.get(name)
        if column is None:
            continue
        order.append(column.desc() if direction.lower() == "desc" else column.asc())
    if not order:
        order.append(default.asc())
    return order


def paginate(
    conn: Connection,
    table: Table,
    where: Sequence[ColumnElement],
    mapper: Callable[[Any], Any],
    *,
    sortable: Mapping[str, Column],
    default_sort: Column,
    sort_by: str | None = None,
    limit: int | None = None,
    page: int | None = None,
) -> Page:
    """Run a COUNT and a windowed SELECT over `table` filtered by `where`."""
    limit = limit if limit and limit > 0 else DEFAULT_LIMIT
    page = page if page and page > 0 else DEFAULT_PAGE

    count_stmt = select(func.count()).select_from(table)
    stmt = table.select()
    for clause in where:
        count_stmt = count_stmt.where(clause)
        stmt = stmt.where(clause)

    total = conn.execute(count_stmt).scalar() or 0
    # Primary key as the final tie-breaker keeps page boundaries stable.
    order = _order_by(sort_by, sortable, default_sort) + [table.c.id.asc()]
    rows = conn.execute(stmt.order_by(*order).limit(limit).offset((page - 1) * limit)).fetchall()

    return Page(
        results=[mapper(r) for r in rows],
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
        total_results=total,
    )
