"""Query translation for backends that accept pushed-down predicates.

``SQLQueryBuilder`` renders a ``DataQuery`` as a PostgreSQL ``SELECT``;
``PostgRESTQueryBuilder`` renders it as PostgREST query parameters. Both
validate every identifier before emitting any text, so a bad identifier
never yields a partial query.
"""

from __future__ import annotations

from typing import Any

import structlog

from gameinsights.adapters.datasource.errors import QueryError
from gameinsights.adapters.datasource.types import DataQuery, FilterOperator, QueryFilter
from gameinsights.safety.validator import (
    clamp_row_count,
    escape_like_pattern,
    escape_postgrest_pattern,
    format_sql_value,
    sanitize_identifier,
)

logger = structlog.get_logger()

SQL_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.NEQ: "!=",
    FilterOperator.GT: ">",
    FilterOperator.LT: "<",
    FilterOperator.GTE: ">=",
    FilterOperator.LTE: "<=",
}

POSTGREST_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.EQ: "eq",
    FilterOperator.NEQ: "neq",
    FilterOperator.GT: "gt",
    FilterOperator.LT: "lt",
    FilterOperator.GTE: "gte",
    FilterOperator.LTE: "lte",
    FilterOperator.CONTAINS: "ilike",
    FilterOperator.IN: "in",
}


def quote_identifier(name: str) -> str:
    """Double-quote an already validated identifier."""
    return f'"{name}"'


def _operator(flt: QueryFilter) -> FilterOperator:
    try:
        return FilterOperator(flt.operator)
    except ValueError as e:
        raise QueryError(f"Unsupported filter operator: {flt.operator!r}") from e


def _in_values(flt: QueryFilter) -> list[Any]:
    if not isinstance(flt.value, list | tuple | set | frozenset):
        raise QueryError(f"Filter on {flt.column!r} with 'in' requires a list value")
    return list(flt.value)


class SQLQueryBuilder:
    """Build read-only PostgreSQL text from a ``DataQuery``.

    Attributes:
        table: Table name, validated on construction.
        schema: Optional schema name, validated on construction.
        max_rows: Upper bound for LIMIT and OFFSET.
    """

    def __init__(self, table: str, schema: str | None = None, max_rows: int = 100000) -> None:
        """Initialize the builder.

        Raises:
            InvalidIdentifierError: If the table or schema name is invalid.
        """
        self.table = sanitize_identifier(table, "table")
        self.schema = sanitize_identifier(schema, "schema") if schema else None
        self.max_rows = max_rows

    @property
    def qualified_table(self) -> str:
        """``"schema"."table"`` or ``"table"``."""
        if self.schema:
            return f"{quote_identifier(self.schema)}.{quote_identifier(self.table)}"
        return quote_identifier(self.table)

    def _validate_columns(self, query: DataQuery) -> None:
        for column in query.columns or []:
            sanitize_identifier(column, "column")
        for flt in query.filters or []:
            sanitize_identifier(flt.column, "column")
            if _operator(flt) is FilterOperator.IN:
                _in_values(flt)
        if query.order_by is not None:
            sanitize_identifier(query.order_by.column, "column")

    def _condition(self, flt: QueryFilter) -> str:
        column = quote_identifier(flt.column)
        operator = _operator(flt)
        if operator is FilterOperator.CONTAINS:
            return f"{column} ILIKE '%{escape_like_pattern(flt.value)}%' ESCAPE '\\'"
        if operator is FilterOperator.IN:
            values = _in_values(flt)
            if not values:
                return "FALSE"
            return f"{column} IN ({', '.join(format_sql_value(v) for v in values)})"
        if flt.value is None and operator in (FilterOperator.EQ, FilterOperator.NEQ):
            return f"{column} IS {'NOT ' if operator is FilterOperator.NEQ else ''}NULL"
        return f"{column} {SQL_OPERATORS[operator]} {format_sql_value(flt.value)}"

    def build(self, query: DataQuery | None = None) -> str:
        """Render the query.

        Args:
            query: Abstract query. ``None`` selects every column with the
                default row cap.

        Returns:
            SQL text beginning with ``SELECT``.

        Raises:
            InvalidIdentifierError: If any referenced column is invalid.
            QueryError: If an operator is unknown or a limit is non-numeric.
        """
        query = query or DataQuery()
        self._validate_columns(query)
        limit = clamp_row_count(
            query.limit if query.limit is not None else self.max_rows, self.max_rows
        )
        offset = clamp_row_count(query.offset, self.max_rows) if query.offset is not None else 0

        select_list = (
            ", ".join(quote_identifier(c) for c in query.columns) if query.columns else "*"
        )
        parts = [f"SELECT {select_list} FROM {self.qualified_table}"]
        if query.filters:
            parts.append("WHERE " + " AND ".join(self._condition(f) for f in query.filters))
        if query.order_by is not None:
            direction = "DESC" if query.order_by.direction == "desc" else "ASC"
            parts.append(f"ORDER BY {quote_identifier(query.order_by.column)} {direction}")
        parts.append(f"LIMIT {limit}")
        if offset:
            parts.append(f"OFFSET {offset}")

        sql = " ".join(parts)
        logger.debug("query_translated", dialect="postgres", table=self.table)
        return sql


def _postgrest_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _postgrest_list_item(value: Any) -> str:
    text = _postgrest_value(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


class PostgRESTQueryBuilder:
    """Build PostgREST query parameters from a ``DataQuery``."""

    def __init__(self, table: str, max_rows: int = 100000) -> None:
        self.table = sanitize_identifier(table, "table")
        self.max_rows = max_rows

    def _validate_columns(self, query: DataQuery, select: list[str] | None) -> None:
        for column in select or []:
            sanitize_identifier(column, "column")
        for column in query.columns or []:
            sanitize_identifier(column, "column")
        for flt in query.filters or []:
            sanitize_identifier(flt.column, "column")
            if _operator(flt) is FilterOperator.IN:
                _in_values(flt)
        if query.order_by is not None:
            sanitize_identifier(query.order_by.column, "column")

    def _param(self, flt: QueryFilter) -> tuple[str, str]:
        operator = _operator(flt)
        token = POSTGREST_OPERATORS[operator]
        if operator is FilterOperator.CONTAINS:
            return flt.column, f"{token}.*{escape_postgrest_pattern(flt.value)}*"
        if operator is FilterOperator.IN:
            items = ",".join(_postgrest_list_item(v) for v in _in_values(flt))
            return flt.column, f"{token}.({items})"
        if flt.value is None and operator in (FilterOperator.EQ, FilterOperator.NEQ):
            return flt.column, "is.null" if operator is FilterOperator.EQ else "not.is.null"
        return flt.column, f"{token}.{_postgrest_value(flt.value)}"

    def build(
        self,
        query: DataQuery | None = None,
        select: list[str] | None = None,
    ) -> list[tuple[str, str]]:
        """Render the query as ordered ``(name, value)`` parameter pairs.

        Args:
            query: Abstract query.
            select: Default projection when the query names no columns.

        Raises:
            InvalidIdentifierError: If any referenced column is invalid.
            QueryError: If an operator is unknown or a limit is non-numeric.
        """
        query = query or DataQuery()
        self._validate_columns(query, select)
        limit = clamp_row_count(
            query.limit if query.limit is not None else self.max_rows, self.max_rows
        )
        offset = clamp_row_count(query.offset, self.max_rows) if query.offset is not None else 0

        columns = query.columns or select
        params: list[tuple[str, str]] = [("select", ",".join(columns) if columns else "*")]
        params.extend(self._param(f) for f in query.filters or [])
        if query.order_by is not None:
            params.append(("order", f"{query.order_by.column}.{query.order_by.direction}"))
        params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))

        logger.debug("query_translated", dialect="postgrest", table=self.table)
        return params
