"""Date helpers for permit validity periods."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Callable

Clock = Callable[[], datetime]


def at_noon(value: date | datetime) -> datetime:
    """
    Pin a date to 12:00 local time.

    Validity dates are day-granular. Comparing them at noon keeps a
    truncated time component or a DST shift from moving a date across a
    day boundary.
    """
    if isinstance(value, datetime):
        value = value.replace(tzinfo=None).date()
    return datetime.combine(value, time(12, 0))


def parse_date(value: str) -> datetime:
    """Parse ISO-8601 (``2026-10-19``, ``2026-10-19T08:00``) or ``dd/mm/yyyy``."""
    value = value.strip()
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%d/%m/%Y")
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}")
