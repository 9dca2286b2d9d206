"""Utility functions for chronomem core functionality.

This module provides helper functions for deterministic IDs, time
manipulation and JSON handling shared across the services.
"""

import hashlib
import json
import re
from datetime import UTC, datetime
from typing import Any

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_fact_id(subject: str, predicate: str, obj: str) -> str:
    """Build the deterministic ID of a graph fact.

    The ID is a pure function of the triple, so re-inserting the same
    triple always targets the same row.

    Args:
        subject: Fact subject.
        predicate: Fact predicate.
        obj: Fact object.

    Returns:
        Hex SHA-256 digest of ``"subject|predicate|object"``.

    Example:
        >>> build_fact_id("User", "likes", "React") == build_fact_id("User", "likes", "React")
        True
    """
    return hashlib.sha256(f"{subject}|{predicate}|{obj}".encode()).hexdigest()


def utc_now() -> datetime:
    """Get current UTC time with timezone information.

    Returns:
        Current datetime in UTC with timezone info.
    """
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is in UTC timezone.

    Naive datetimes are assumed to be UTC.

    Args:
        dt: A datetime object (may be naive or aware).

    Returns:
        The same datetime converted to UTC, or None if input is None.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ensure_utc(parsed)  # type: ignore[return-value]


def to_epoch_millis(dt: datetime) -> int:
    """Convert a datetime to integer milliseconds since the epoch."""
    return int(ensure_utc(dt).timestamp() * 1000)  # type: ignore[union-attr]


def format_date(dt: datetime) -> str:
    """Format a datetime as a YYYY-MM-DD date prefix (UTC)."""
    return ensure_utc(dt).strftime("%Y-%m-%d")  # type: ignore[union-attr]


def parse_json_with_fallback(text: str) -> Any:
    """Parse JSON emitted by a language model.

    Tries the text as-is, then without Markdown code fences, then the
    outermost ``{...}`` span.

    Args:
        text: Raw model output.

    Returns:
        The decoded JSON value.

    Raises:
        ValueError: If no JSON value can be recovered.
    """
    candidate = text.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    unfenced = _CODE_FENCE.sub("", candidate).strip()
    try:
        return json.loads(unfenced)
    except json.JSONDecodeError:
        pass

    start_idx = unfenced.find("{")
    end_idx = unfenced.rfind("}") + 1
    if start_idx == -1 or end_idx == 0:
        raise ValueError("No JSON object found in response")

    try:
        return json.loads(unfenced[start_idx:end_idx])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in response: {e}") from e
