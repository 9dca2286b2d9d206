"""SQL literal formatting for the embedded analytical engine.

Every value that ends up in a graph statement goes through
``format_sql_value``; column names only ever come from ``FACT_COLUMNS``.
"""

import json
import math
from collections.abc import Iterable, Mapping
from typing import Any

from chronomem.core.exceptions import EmptyPredicateError
from chronomem.core.types import FACT_COLUMNS


def quote_string(value: str) -> str:
    """Quote a string literal, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def format_sql_value(value: Any) -> str:
    """Format a Python value as a SQL literal.

    Args:
        value: None, bool, int, float, str, or a JSON-serializable dict/list.

    Returns:
        SQL literal text.

    Raises:
        TypeError: If the value has an unsupported type.
        ValueError: If a float is NaN or infinite.

    Example:
        >>> format_sql_value("O'Brien")
        "'O''Brien'"
        >>> format_sql_value(True)
        'true'
    """
    if value is None:
        return "NULL"

    # bool is a subclass of int and must be handled first
    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, int):
        return str(value)

    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot format non-finite number: {value}")
        return repr(value)

    if isinstance(value, str):
        return quote_string(value)

    if isinstance(value, Mapping | list | tuple):
        return f"CAST({quote_string(json.dumps(value))} AS JSON)"

    raise TypeError(f"Unsupported SQL value type: {type(value).__name__}")


def format_sql_list(values: Iterable[Any]) -> str:
    """Format values as a parenthesized list for an ``IN`` clause."""
    items = [format_sql_value(v) for v in values]
    if not items:
        raise ValueError("Cannot format an empty SQL list")
    return f"({', '.join(items)})"


def _checked_entries(mapping: Mapping[str, Any]) -> list[tuple[str, Any]]:
    entries = [(key, value) for key, value in mapping.items() if value is not None]
    for key, _ in entries:
        if key not in FACT_COLUMNS:
            raise ValueError(f"Unknown fact column: {key}")
    return entries


def build_where_clause(where: Mapping[str, Any]) -> str:
    """Build an equality ``WHERE`` clause joined with ``AND``.

    Raises:
        EmptyPredicateError: If no non-None predicate remains.
    """
    entries = _checked_entries(where)
    if not entries:
        raise EmptyPredicateError("Graph operations require at least one where clause")
    clauses = [f"{key} = {format_sql_value(value)}" for key, value in entries]
    return "WHERE " + " AND ".join(clauses)


def build_set_clause(updates: Mapping[str, Any]) -> str:
    """Build a ``SET`` clause for an update.

    Raises:
        EmptyPredicateError: If no non-None field remains.
    """
    entries = _checked_entries(updates)
    if not entries:
        raise EmptyPredicateError("Graph updates require at least one field")
    assignments = [f"{key} = {format_sql_value(value)}" for key, value in entries]
    return "SET " + ", ".join(assignments)
