"""Timestamp parsing and formatting for message ordering.

All comparisons in the pipeline use timezone-aware ``datetime`` values, never
the raw ISO strings, so that mixed offsets and precisions order correctly.
"""

from __future__ import annotations

from datetime import UTC, datetime

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Numeric timestamps above this are taken to be milliseconds
_MILLIS_THRESHOLD = 100_000_000_000


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 or numeric epoch timestamp.

    Naive values are assumed to be UTC.  Numeric strings are read as epoch
    seconds, or epoch milliseconds when large enough.

    Args:
        value: The timestamp text as stored.

    Returns:
        An aware UTC ``datetime``, or ``None`` if the value cannot be parsed
        or lies outside the representable UTC range.
    """
    if not value or not value.strip():
        return None
    text = value.strip()

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            return None
        if number > _MILLIS_THRESHOLD:
            number /= 1000
        try:
            return datetime.fromtimestamp(number, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC)
    except (OverflowError, ValueError):
        return None


def format_timestamp(value: datetime) -> str:
    """Render an aware ``datetime`` as a UTC ISO string with millisecond precision."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def day_bucket(value: datetime) -> str:
    """Return the UTC calendar day of *value* as ``YYYY-MM-DD``."""
    return value.astimezone(UTC).date().isoformat()
