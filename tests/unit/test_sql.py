"""Unit tests for SQL literal formatting."""

import pytest

from chronomem.core.exceptions import EmptyPredicateError
from chronomem.core.sql import (
    build_set_clause,
    build_where_clause,
    format_sql_list,
    format_sql_value,
    quote_string,
)


class TestFormatSqlValue:
    """Tests for format_sql_value."""

    def test_null(self):
        assert format_sql_value(None) == "NULL"

    def test_booleans(self):
        """Test that booleans are not formatted as integers."""
        assert format_sql_value(True) == "true"
        assert format_sql_value(False) == "false"

    def test_numbers(self):
        assert format_sql_value(42) == "42"
        assert format_sql_value(0.5) == "0.5"

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            format_sql_value(float("nan"))
        with pytest.raises(ValueError):
            format_sql_value(float("inf"))

    def test_string_quotes_doubled(self):
        """Test that embedded single quotes are escaped."""
        assert format_sql_value("O'Brien") == "'O''Brien'"
        assert quote_string("it's 'x'") == "'it''s ''x'''"

    def test_mapping_cast_to_json(self):
        """Test that dicts become JSON literals."""
        literal = format_sql_value({"name": "O'Brien", "n": 1})
        assert literal == "CAST('{\"name\": \"O''Brien\", \"n\": 1}' AS JSON)"

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            format_sql_value(object())


class TestClauses:
    """Tests for where, set and list clauses."""

    def test_where_joins_with_and(self):
        clause = build_where_clause({"source_id": "User", "label": "likes"})
        assert clause == "WHERE source_id = 'User' AND label = 'likes'"

    def test_where_ignores_none(self):
        assert build_where_clause({"id": "abc", "label": None}) == "WHERE id = 'abc'"

    def test_empty_where_raises(self):
        """Test the guard against unbounded mutations."""
        with pytest.raises(EmptyPredicateError):
            build_where_clause({})
        with pytest.raises(EmptyPredicateError):
            build_where_clause({"id": None})

    def test_unknown_column_rejected(self):
        with pytest.raises(ValueError, match="Unknown fact column"):
            build_where_clause({"id; DROP TABLE facts": "x"})

    def test_set_clause(self):
        clause = build_set_clause({"label": "uses", "properties": {"confidence": 0.9}})
        assert clause.startswith("SET label = 'uses', properties = CAST(")

    def test_empty_set_raises(self):
        with pytest.raises(EmptyPredicateError):
            build_set_clause({"properties": None})

    def test_sql_list(self):
        assert format_sql_list(["a", "b'c"]) == "('a', 'b''c')"

    def test_empty_sql_list_raises(self):
        with pytest.raises(ValueError):
            format_sql_list([])
