"""Tests for the client-side filter, sort and pagination engine."""

import pytest

from gameinsights.adapters.datasource.errors import QueryError
from gameinsights.adapters.datasource.filtering import (
    apply_filters,
    apply_ordering,
    apply_pagination,
    apply_query,
    select_columns,
)
from gameinsights.adapters.datasource.types import (
    DataQuery,
    FilterOperator,
    OrderBy,
    QueryFilter,
)

ROWS = [
    {"player": "Ana", "level": 5, "country": "BR"},
    {"player": "bo", "level": 12, "country": "US"},
    {"player": "Cy", "level": None, "country": "US"},
    {"player": "dee", "level": "7", "country": None},
]


def _filter(column, operator, value):
    return QueryFilter(column=column, operator=operator, value=value)


class TestApplyFilters:
    """Tests for apply_filters."""

    def test_equality(self):
        """= and != compare values directly."""
        assert [r["player"] for r in apply_filters(ROWS, [_filter("country", "=", "US")])] == [
            "bo",
            "Cy",
        ]
        assert len(apply_filters(ROWS, [_filter("country", "!=", "US")])) == 2

    def test_ordering_comparison_needs_same_kind(self):
        """Numbers only compare with numbers; None and strings never match."""
        result = apply_filters(ROWS, [_filter("level", ">", 4)])

        assert [r["player"] for r in result] == ["Ana", "bo"]

    def test_contains_is_case_insensitive(self):
        """contains matches substrings regardless of case."""
        result = apply_filters(ROWS, [_filter("player", "contains", "A")])

        assert [r["player"] for r in result] == ["Ana"]

    def test_contains_never_matches_none(self):
        """A None cell never contains anything."""
        assert apply_filters(ROWS, [_filter("country", "contains", "")]) == [
            {"player": "Ana", "level": 5, "country": "BR"},
            {"player": "bo", "level": 12, "country": "US"},
            {"player": "Cy", "level": None, "country": "US"},
        ]

    def test_in(self):
        """in checks membership in a list."""
        result = apply_filters(ROWS, [_filter("level", "in", [5, 12])])

        assert [r["player"] for r in result] == ["Ana", "bo"]

    def test_filters_are_conjunctive(self):
        """All filters must hold."""
        result = apply_filters(
            ROWS,
            [_filter("country", "=", "US"), _filter("level", ">=", 10)],
        )

        assert [r["player"] for r in result] == ["bo"]

    def test_unknown_operator_rejected_by_model(self):
        """Operators outside the enum never reach the engine."""
        with pytest.raises(ValueError):
            _filter("level", "LIKE", "x")

    def test_unknown_operator_raises_query_error(self):
        """An operator smuggled past the model is a QueryError."""
        bad = QueryFilter.model_construct(column="level", operator="~", value=1)

        with pytest.raises(QueryError):
            apply_filters(ROWS, [bad])

    def test_input_not_mutated(self):
        """Filtering returns copies."""
        rows = [{"a": 1}]
        result = apply_filters(rows, None)
        result[0]["a"] = 2

        assert rows == [{"a": 1}]


class TestApplyOrdering:
    """Tests for apply_ordering."""

    def test_numeric_sort(self):
        """Numbers sort numerically."""
        rows = [{"n": 10}, {"n": 2}, {"n": 33}]

        assert [r["n"] for r in apply_ordering(rows, OrderBy(column="n"))] == [2, 10, 33]

    def test_string_sort_case_insensitive(self):
        """Strings sort case-insensitively."""
        rows = [{"s": "bo"}, {"s": "Ana"}, {"s": "cy"}]

        assert [r["s"] for r in apply_ordering(rows, OrderBy(column="s"))] == ["Ana", "bo", "cy"]

    def test_descending(self):
        """desc reverses the order."""
        rows = [{"n": 1}, {"n": 3}, {"n": 2}]

        result = apply_ordering(rows, OrderBy(column="n", direction="desc"))

        assert [r["n"] for r in result] == [3, 2, 1]

    def test_none_sorts_as_empty_string(self):
        """None sorts before non-empty strings."""
        rows = [{"s": "b"}, {"s": None}, {"s": "a"}]

        assert [r["s"] for r in apply_ordering(rows, OrderBy(column="s"))] == [None, "a", "b"]

    def test_stable(self):
        """Equal keys keep their input order."""
        rows = [{"k": 1, "i": 0}, {"k": 0, "i": 1}, {"k": 1, "i": 2}]

        result = apply_ordering(rows, OrderBy(column="k"))

        assert [r["i"] for r in result] == [1, 0, 2]


class TestPagination:
    """Tests for apply_pagination and select_columns."""

    def test_offset_then_limit(self):
        """Offset 2 and limit 2 over five rows yields rows 2 and 3."""
        rows = [{"i": i} for i in range(5)]

        assert [r["i"] for r in apply_pagination(rows, 2, 2)] == [2, 3]

    def test_limit_only(self):
        """A missing offset starts at zero."""
        rows = [{"i": i} for i in range(5)]

        assert [r["i"] for r in apply_pagination(rows, None, 3)] == [0, 1, 2]
        assert apply_pagination(rows, 10, None) == []

    def test_select_columns(self):
        """Projection keeps only the named columns."""
        assert select_columns([{"a": 1, "b": 2}], ["b", "c"]) == [{"b": 2, "c": None}]


class TestApplyQuery:
    """Tests for apply_query."""

    def test_filter_sort_page_project(self):
        """Pagination is applied after filtering and sorting."""
        query = DataQuery(
            columns=["player"],
            filters=[QueryFilter(column="country", operator=FilterOperator.EQ, value="US")],
            order_by=OrderBy(column="player", direction="desc"),
            offset=1,
            limit=5,
        )

        assert apply_query(ROWS, query) == [{"player": "bo"}]

    def test_no_query_copies_everything(self):
        """A None query returns copies of every row."""
        result = apply_query(ROWS, None)

        assert result == ROWS
        assert result[0] is not ROWS[0]
