"""In-memory filter, sort and pagination for sources without pushdown.

Used by file, REST and SaaS adapters whose backends cannot evaluate the
abstract query. Input rows are never mutated; every function returns new
row dicts.
"""

from __future__ import annotations

import functools
import locale
from collections.abc import Callable, Sequence
from datetime import date, datetime
from typing import Any

from gameinsights.adapters.datasource.errors import QueryError
from gameinsights.adapters.datasource.types import (
    DataQuery,
    FilterOperator,
    OrderBy,
    QueryFilter,
)

Row = dict[str, Any]


def _kind(value: Any) -> str | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    if isinstance(value, str):
        return "string"
    return None


def _comparable(left: Any, right: Any) -> bool:
    kind = _kind(left)
    return kind is not None and kind != "bool" and kind == _kind(right)


def _compare(left: Any, right: Any, check: Callable[[Any, Any], bool]) -> bool:
    if not _comparable(left, right):
        return False
    try:
        return check(left, right)
    except TypeError:
        # naive vs aware datetimes
        return False


def _contains(cell: Any, needle: Any) -> bool:
    if cell is None or needle is None:
        return False
    return str(needle).casefold() in str(cell).casefold()


def _in(cell: Any, options: Any) -> bool:
    if not isinstance(options, list | tuple | set | frozenset):
        return False
    return cell in options


PREDICATES: dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.EQ: lambda cell, value: cell == value,
    FilterOperator.NEQ: lambda cell, value: cell != value,
    FilterOperator.GT: lambda cell, value: _compare(cell, value, lambda a, b: a > b),
    FilterOperator.LT: lambda cell, value: _compare(cell, value, lambda a, b: a < b),
    FilterOperator.GTE: lambda cell, value: _compare(cell, value, lambda a, b: a >= b),
    FilterOperator.LTE: lambda cell, value: _compare(cell, value, lambda a, b: a <= b),
    FilterOperator.CONTAINS: _contains,
    FilterOperator.IN: _in,
}


def _predicate(operator: Any) -> Callable[[Any, Any], bool]:
    try:
        return PREDICATES[FilterOperator(operator)]
    except (KeyError, ValueError) as e:
        raise QueryError(f"Unsupported filter operator: {operator!r}") from e


def apply_filters(rows: Sequence[Row], filters: Sequence[QueryFilter] | None) -> list[Row]:
    """Keep rows matching every filter (AND conjunction).

    Raises:
        QueryError: If a filter uses an operator outside ``FilterOperator``.
    """
    if not filters:
        return [dict(row) for row in rows]
    checks = [(f.column, _predicate(f.operator), f.value) for f in filters]
    return [
        dict(row)
        for row in rows
        if all(check(row.get(column), value) for column, check, value in checks)
    ]


def _sort_key_compare(left: Any, right: Any) -> int:
    if _comparable(left, right) and _kind(left) != "string":
        try:
            return (left > right) - (left < right)
        except TypeError:
            pass
    a = locale.strxfrm(str(left if left is not None else "").casefold())
    b = locale.strxfrm(str(right if right is not None else "").casefold())
    return (a > b) - (a < b)


def apply_ordering(rows: Sequence[Row], order_by: OrderBy | None) -> list[Row]:
    """Stable single-column sort.

    Numbers and dates use their natural order, everything else a
    locale-aware, case-insensitive string comparison. ``None`` sorts as the
    empty string.
    """
    copied = [dict(row) for row in rows]
    if order_by is None:
        return copied
    column = order_by.column
    sign = -1 if order_by.direction == "desc" else 1

    def comparator(a: Row, b: Row) -> int:
        return sign * _sort_key_compare(a.get(column), b.get(column))

    return sorted(copied, key=functools.cmp_to_key(comparator))


def apply_pagination(rows: Sequence[Row], offset: int | None, limit: int | None) -> list[Row]:
    """Slice ``offset`` then ``limit``. Negative values are treated as 0."""
    start = max(0, offset or 0)
    if limit is None:
        return [dict(row) for row in rows[start:]]
    return [dict(row) for row in rows[start : start + max(0, limit)]]


def select_columns(rows: Sequence[Row], columns: Sequence[str] | None) -> list[Row]:
    """Project rows onto ``columns``. Missing keys become ``None``."""
    if not columns:
        return [dict(row) for row in rows]
    return [{column: row.get(column) for column in columns} for row in rows]


def apply_query(rows: Sequence[Row], query: DataQuery | None) -> list[Row]:
    """Filter, sort, paginate and project a row set."""
    if query is None:
        return [dict(row) for row in rows]
    result = apply_filters(rows, query.filters)
    if query.order_by is not None:
        result = apply_ordering(result, query.order_by)
    if query.offset is not None or query.limit is not None:
        result = apply_pagination(result, query.offset, query.limit)
    return select_columns(result, query.columns)
