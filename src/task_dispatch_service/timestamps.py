"""UTC timestamp helpers.

Timestamps are stored as fixed-width ISO 8601 strings with a ``Z`` suffix,
so lexical order in SQLite matches chronological order.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    """Render a UTC datetime in the stored format."""
    return moment.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def now_iso() -> str:
    """Current time in the stored format."""
    return to_iso(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def start_of_day_iso(moment: datetime) -> str:
    """Midnight UTC of the given moment's day, in the stored format."""
    midnight = moment.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return to_iso(midnight)
