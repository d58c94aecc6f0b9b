"""Safety layer - Guardrails that cannot be bypassed.

This module contains the sanitizer used by every query translator:
- Identifier allow-list validation
- Literal and LIKE-pattern escaping
- Row count clamping
- Read-only validation of caller-supplied SQL
"""

from .validator import (
    clamp_row_count,
    escape_like_pattern,
    escape_literal,
    escape_postgrest_pattern,
    format_sql_value,
    is_valid_identifier,
    sanitize_identifier,
    validate_read_only,
)

__all__ = [
    "is_valid_identifier",
    "sanitize_identifier",
    "escape_literal",
    "escape_like_pattern",
    "escape_postgrest_pattern",
    "format_sql_value",
    "clamp_row_count",
    "validate_read_only",
]
