"""Identifier and literal sanitizer plus the read-only SQL guard.

Everything that ends up string-interpolated into generated SQL or PostgREST
parameters passes through this module first.

SAFETY IS NON-NEGOTIABLE:
- Identifiers must match ``^[A-Za-z_][A-Za-z0-9_]*$`` or are rejected
- Identifiers are never silently coerced or truncated
- Caller-supplied raw SQL must be a single read-only statement
- Forbidden keywords are checked even in subqueries
"""

from __future__ import annotations

import math
import re
from typing import Any

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError

from gameinsights.adapters.datasource.errors import (
    InvalidIdentifierError,
    QueryError,
    UnsupportedOperationError,
)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Forbidden statement types - these are never allowed
FORBIDDEN_STATEMENTS: set[type[exp.Expression]] = {
    exp.Delete,
    exp.Drop,
    exp.TruncateTable,
    exp.Update,
    exp.Insert,
    exp.Create,
    exp.Alter,
    exp.Grant,
    exp.Merge,
    exp.Command,
}

# Forbidden keywords even in comments or subqueries
# These are checked as a secondary safety layer
FORBIDDEN_KEYWORDS: set[str] = {
    "DROP",
    "DELETE",
    "TRUNCATE",
    "UPDATE",
    "INSERT",
    "CREATE",
    "ALTER",
    "GRANT",
    "REVOKE",
    "MERGE",
    "COPY",
    "EXECUTE",
    "EXEC",
}

READ_ONLY_PREFIX = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


def is_valid_identifier(name: Any) -> bool:
    """Check a table, schema or column name against the allow-list."""
    return isinstance(name, str) and IDENTIFIER_PATTERN.match(name) is not None


def sanitize_identifier(name: str, field: str = "identifier") -> str:
    """Validate an identifier destined for query text.

    Args:
        name: The identifier to check.
        field: What the identifier names (``table``, ``column``...), used in
            the error.

    Returns:
        The identifier, unmodified.

    Raises:
        InvalidIdentifierError: If the identifier fails the allow-list.

    Examples:
        >>> sanitize_identifier("orders", "table")
        'orders'
        >>> sanitize_identifier("orders; --", "table")  # Raises
    """
    if not is_valid_identifier(name):
        raise InvalidIdentifierError(field=field, value=str(name))
    return name


def escape_literal(value: Any) -> str:
    """Double every single quote so the result can sit between ``'...'``."""
    return str(value).replace("'", "''")


def escape_like_pattern(value: Any) -> str:
    r"""Escape a value for use inside a LIKE/ILIKE pattern.

    Backslash, ``%`` and ``_`` are escaped with a backslash and single quotes
    are doubled. Callers must emit ``ESCAPE '\'`` with the pattern.
    """
    text = str(value)
    text = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escape_literal(text)


def escape_postgrest_pattern(value: Any) -> str:
    r"""Escape a value for use inside a PostgREST ``ilike`` pattern.

    Backslash, ``%``, ``_`` and ``*`` (PostgREST's wildcard alias) are
    escaped with a backslash, PostgreSQL's default LIKE escape character.
    Quotes are left alone since the pattern travels as a URL parameter.
    """
    text = str(value).replace("\\", "\\\\")
    for wildcard in ("%", "_", "*"):
        text = text.replace(wildcard, "\\" + wildcard)
    return text


def format_sql_value(value: Any) -> str:
    """Render a Python value as a SQL literal.

    Raises:
        QueryError: If a float is NaN or infinite.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise QueryError(f"Non-finite numeric literal: {value!r}")
        return repr(value)
    return f"'{escape_literal(value)}'"


def clamp_row_count(value: Any, maximum: int) -> int:
    """Truncate a limit/offset to an integer within ``[0, maximum]``.

    Raises:
        QueryError: If the value is not numeric.
    """
    if isinstance(value, bool):
        raise QueryError(f"Row count must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise QueryError(f"Row count must be numeric, got {value!r}") from e
    if math.isnan(number):
        raise QueryError("Row count must be numeric, got NaN")
    if math.isinf(number):
        return 0 if number < 0 else maximum
    return max(0, min(int(number), maximum))


def validate_read_only(sql: str, dialect: str = "postgres") -> None:
    """Validate that caller-supplied SQL is a single read-only query.

    This function performs multiple layers of validation:
    1. The text must start with SELECT or WITH
    2. Parse with sqlglot to get exactly one statement
    3. The root must be a query (SELECT or a set operation)
    4. Walk the AST for forbidden statement types
    5. Check for forbidden keywords as whole words

    Args:
        sql: The SQL text to validate.
        dialect: SQL dialect for parsing (default: postgres).

    Raises:
        UnsupportedOperationError: If the query is not read-only.
    """
    if not sql or not sql.strip():
        raise UnsupportedOperationError("Empty query")

    if not READ_ONLY_PREFIX.match(sql):
        raise UnsupportedOperationError("Only SELECT or WITH queries are allowed", query=sql)

    try:
        statements = [s for s in sqlglot.parse(sql, dialect=dialect) if s is not None]
    except ParseError as e:
        raise UnsupportedOperationError(f"Failed to parse SQL: {e}", query=sql) from e

    if len(statements) != 1:
        raise UnsupportedOperationError("Exactly one statement is allowed", query=sql)

    parsed = statements[0]
    if not isinstance(parsed, exp.Query):
        raise UnsupportedOperationError(
            f"Only read-only queries allowed, got: {type(parsed).__name__}", query=sql
        )

    for node in parsed.walk():
        for forbidden in FORBIDDEN_STATEMENTS:
            if isinstance(node, forbidden):
                raise UnsupportedOperationError(
                    f"Forbidden statement type: {type(node).__name__}", query=sql
                )

    # e.g. "UPDATED_AT" must not trigger "UPDATE"
    sql_upper = sql.upper()
    for keyword in sorted(FORBIDDEN_KEYWORDS):
        if re.search(rf"\b{keyword}\b", sql_upper):
            raise UnsupportedOperationError(f"Forbidden keyword: {keyword}", query=sql)
