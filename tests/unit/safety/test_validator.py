"""Tests for the identifier sanitizer and read-only SQL guard."""

import math

import pytest

from gameinsights.adapters.datasource.errors import (
    ErrorCode,
    InvalidIdentifierError,
    QueryError,
    UnsupportedOperationError,
)
from gameinsights.safety.validator import (
    clamp_row_count,
    escape_like_pattern,
    escape_literal,
    escape_postgrest_pattern,
    format_sql_value,
    is_valid_identifier,
    sanitize_identifier,
    validate_read_only,
)


class TestIdentifiers:
    """Tests for identifier validation."""

    @pytest.mark.parametrize("name", ["orders", "_private", "Player_Id2", "a"])
    def test_valid_identifiers(self, name):
        """Plain identifiers pass unmodified."""
        assert is_valid_identifier(name) is True
        assert sanitize_identifier(name, "column") == name

    @pytest.mark.parametrize(
        "name",
        ["", "1st", "name; DROP TABLE x", 'a"b', "a.b", "a b", "über", "a-b"],
    )
    def test_invalid_identifiers_rejected(self, name):
        """Anything outside the allow-list raises."""
        assert is_valid_identifier(name) is False
        with pytest.raises(InvalidIdentifierError) as exc_info:
            sanitize_identifier(name, "column")
        assert exc_info.value.code == ErrorCode.INVALID_IDENTIFIER
        assert exc_info.value.field == "column"

    def test_non_string_is_invalid(self):
        """Non-string input is never an identifier."""
        assert is_valid_identifier(None) is False
        assert is_valid_identifier(42) is False


class TestLiterals:
    """Tests for literal escaping."""

    def test_escape_literal_doubles_quotes(self):
        """Single quotes are doubled."""
        assert escape_literal("o'brien") == "o''brien"

    def test_escape_like_pattern(self):
        """LIKE wildcards and backslashes are escaped."""
        assert escape_like_pattern("50%_off\\") == "50\\%\\_off\\\\"
        assert escape_like_pattern("it's") == "it''s"

    def test_escape_postgrest_pattern(self):
        """PostgREST patterns also escape the asterisk wildcard but keep quotes."""
        assert escape_postgrest_pattern("a*b%c_d\\") == "a\\*b\\%c\\_d\\\\"
        assert escape_postgrest_pattern("it's") == "it's"

    def test_format_sql_value(self):
        """Values render as SQL literals."""
        assert format_sql_value(None) == "NULL"
        assert format_sql_value(True) == "TRUE"
        assert format_sql_value(False) == "FALSE"
        assert format_sql_value(42) == "42"
        assert format_sql_value(1.5) == "1.5"
        assert format_sql_value("o'brien") == "'o''brien'"

    def test_format_sql_value_rejects_non_finite(self):
        """NaN and infinity are not valid SQL literals."""
        with pytest.raises(QueryError):
            format_sql_value(math.nan)
        with pytest.raises(QueryError):
            format_sql_value(math.inf)


class TestClampRowCount:
    """Tests for clamp_row_count."""

    def test_clamps_into_range(self):
        """Values are truncated and clamped to [0, maximum]."""
        assert clamp_row_count(10, 100) == 10
        assert clamp_row_count(10.9, 100) == 10
        assert clamp_row_count(-5, 100) == 0
        assert clamp_row_count(500, 100) == 100
        assert clamp_row_count("20", 100) == 20
        assert clamp_row_count(math.inf, 100) == 100

    @pytest.mark.parametrize("value", ["abc", None, True, math.nan, [1]])
    def test_non_numeric_raises(self, value):
        """Non-numeric input raises QueryError."""
        with pytest.raises(QueryError):
            clamp_row_count(value, 100)


class TestValidateReadOnly:
    """Tests for validate_read_only."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM events",
            "  select id from players where level > 3",
            "WITH t AS (SELECT 1 AS x) SELECT x FROM t",
            "SELECT updated_at, created_by FROM sessions",
            "SELECT a FROM x UNION SELECT a FROM y",
        ],
    )
    def test_read_only_queries_pass(self, sql):
        """Read-only statements are accepted."""
        validate_read_only(sql)

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM events",
            "UPDATE players SET level = 1",
            "DROP TABLE events",
            "INSERT INTO x VALUES (1)",
            "TRUNCATE events",
            "SELECT 1; DROP TABLE events",
            "WITH d AS (DELETE FROM events RETURNING *) SELECT * FROM d",
            "SELECT * FROM events -- DROP",
            "",
            "   ",
        ],
    )
    def test_mutations_rejected(self, sql):
        """Anything that is not a single read-only query raises."""
        with pytest.raises(UnsupportedOperationError) as exc_info:
            validate_read_only(sql)
        assert exc_info.value.code == ErrorCode.UNSUPPORTED_OPERATION
        assert exc_info.value.retryable is False
