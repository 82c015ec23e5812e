"""Utility functions for socialsync.

This module provides common helper functions for datetime handling and the
keyed grouping used when merging related rows.
"""

from collections import Counter
from collections.abc import Hashable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]

K = TypeVar("K", bound=Hashable)


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO8601 timestamp string into timezone-aware UTC datetime.

    Args:
        value: ISO8601 timestamp string, datetime object, or None

    Returns:
        Parsed timezone-aware datetime in UTC, or None for None/empty input

    Raises:
        ValueError: If timestamp format is invalid

    Example:
        >>> dt = parse_datetime("2024-01-15T10:30:00+00:00")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    dt = dateutil_parser.isoparse(value)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """Get current UTC timestamp as ISO8601 string with 'Z' suffix.

    Example:
        >>> utc_now_iso().endswith('Z')
        True
    """
    return utc_now().isoformat().replace("+00:00", "Z")


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO8601 string with 'Z' suffix.

    Example:
        >>> format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        '2024-01-15T10:30:00Z'
    """
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def redact_token(token: str | None) -> str:
    """Redact sensitive tokens for safe logging.

    Example:
        >>> redact_token("abcdefghijklmnop")
        'abcdefgh...mnop'
        >>> redact_token("short")
        '***'
    """
    if not token:
        return "None"
    return f"{token[:8]}...{token[-4:]}" if len(token) > 12 else "***"


def unique(values: Iterable[K]) -> list[K]:
    """De-duplicate values keeping first-seen order.

    Example:
        >>> unique(["b", "a", "b"])
        ['b', 'a']
    """
    return list(dict.fromkeys(values))


def count_by(rows: Iterable[Mapping[str, Any]], key: str) -> dict[Any, int]:
    """Count rows per value of ``key``.

    Example:
        >>> count_by([{"post_id": "p1"}, {"post_id": "p1"}, {"post_id": "p2"}], "post_id")
        {'p1': 2, 'p2': 1}
    """
    return dict(Counter(row[key] for row in rows if row.get(key) is not None))


def index_by(rows: Iterable[Any], key: str) -> dict[Any, Any]:
    """Index models or mappings by an attribute/key; later rows win."""
    index: dict[Any, Any] = {}
    for row in rows:
        value = row.get(key) if isinstance(row, Mapping) else getattr(row, key)
        index[value] = row
    return index


def truncate(text: str, length: int) -> str:
    """Cut text to ``length`` characters.

    Example:
        >>> truncate("hello world", 5)
        'hello'
    """
    return text[:length]
