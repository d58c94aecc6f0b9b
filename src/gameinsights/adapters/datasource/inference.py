"""Schema inference from loosely-typed row data.

Column types are decided by the first non-null sampled value. This is a
first-sample vote, not a full-column scan: a column whose first value is a
number but later holds strings is still reported as ``number``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from gameinsights.adapters.datasource.types import ColumnInfo, ColumnType, SchemaInfo

DEFAULT_SAMPLE_SIZE = 10
SAMPLE_ROWS = 10

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%d-%m-%Y",
    "%m-%d-%Y",
    "%d-%b-%Y",
    "%Y-%b-%d",
)

# Native database type name fragments, checked in order.
_NATIVE_TYPE_FRAGMENTS: tuple[tuple[tuple[str, ...], ColumnType], ...] = (
    # Geometric and PostGIS types, ahead of "int" which "point" contains.
    (
        ("point", "polygon", "line", "lseg", "box", "path", "circle", "geometry", "geography"),
        ColumnType.UNKNOWN,
    ),
    (("bool",), ColumnType.BOOLEAN),
    (("timestamp", "date", "time", "interval"), ColumnType.DATE),
    (
        ("int", "serial", "numeric", "decimal", "real", "double", "float", "money"),
        ColumnType.NUMBER,
    ),
    (("char", "text", "uuid", "json", "citext", "name", "enum"), ColumnType.STRING),
)


def parse_date(text: str) -> datetime | None:
    """Parse a date-like string, returning ``None`` when it is not one."""
    candidate = text.strip()
    if not candidate:
        return None
    iso = candidate[:-1] + "+00:00" if candidate.endswith("Z") else candidate
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


def looks_like_date(text: str) -> bool:
    """True for strings that parse as dates and contain a ``-`` separator."""
    return "-" in text and parse_date(text) is not None


def infer_value_type(value: Any) -> ColumnType:
    """Classify a single non-null value."""
    # bool is an int subclass, so it must be checked first.
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, int | float):
        return ColumnType.NUMBER
    if isinstance(value, datetime | date):
        return ColumnType.DATE
    if isinstance(value, str):
        return ColumnType.DATE if looks_like_date(value) else ColumnType.STRING
    return ColumnType.UNKNOWN


def infer_column_type(values: Iterable[Any]) -> ColumnType:
    """Infer a column type from sampled values.

    Args:
        values: Sampled values, possibly containing ``None``.

    Returns:
        The type of the first non-null value, or ``unknown`` if every value
        is null or the sample is empty.
    """
    for value in values:
        if value is not None:
            return infer_value_type(value)
    return ColumnType.UNKNOWN


def is_nullable(values: Iterable[Any]) -> bool:
    """True iff any sampled value is ``None``."""
    return any(value is None for value in values)


def map_native_type(native_type: str | None) -> ColumnType:
    """Map a database type name (``integer``, ``timestamp with time zone``...)."""
    if not native_type:
        return ColumnType.UNKNOWN
    lowered = native_type.lower()
    for fragments, column_type in _NATIVE_TYPE_FRAGMENTS:
        if any(fragment in lowered for fragment in fragments):
            return column_type
    return ColumnType.UNKNOWN


def column_names(rows: Sequence[Mapping[str, Any]], key_scan: int | None = None) -> list[str]:
    """Column names from the first row, or the key union of the first rows.

    Args:
        rows: The row set.
        key_scan: When set, union the keys of up to this many rows in first
            seen order. Used for event streams whose rows differ in shape.
    """
    if not rows:
        return []
    if not key_scan:
        return list(rows[0].keys())
    names: dict[str, None] = {}
    for row in rows[:key_scan]:
        for key in row:
            names.setdefault(key, None)
    return list(names)


def build_schema(
    rows: Sequence[Mapping[str, Any]],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    key_scan: int | None = None,
    native_types: Mapping[str, str] | None = None,
    nullable_hints: Mapping[str, bool] | None = None,
) -> SchemaInfo:
    """Build a ``SchemaInfo`` from a row set.

    Args:
        rows: Rows to describe.
        sample_size: Number of leading rows sampled per column.
        key_scan: See ``column_names``.
        native_types: Optional database type names that override inference.
        nullable_hints: Optional declared nullability, OR-ed with the sample.

    Returns:
        Schema with columns, total row count and up to ten sample rows.
    """
    sample = rows[:sample_size]
    columns: list[ColumnInfo] = []
    for name in column_names(rows, key_scan):
        values = [row.get(name) for row in sample]
        column_type = infer_column_type(values)
        if native_types and name in native_types:
            native = map_native_type(native_types[name])
            if native is not ColumnType.UNKNOWN:
                column_type = native
        nullable = is_nullable(values)
        if nullable_hints and nullable_hints.get(name):
            nullable = True
        columns.append(
            ColumnInfo(
                name=name,
                type=column_type,
                nullable=nullable,
                sample_values=[v for v in values if v is not None][:5],
            )
        )

    return SchemaInfo(
        columns=columns,
        row_count=len(rows),
        sample_data=[dict(row) for row in rows[:SAMPLE_ROWS]],
    )
