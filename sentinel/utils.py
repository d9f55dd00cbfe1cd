"""Shared utilities used across the sentinel core."""

import re
from datetime import datetime, timedelta, timezone


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("0412 345 678")
        '0412345678'
        >>> normalize_phone("+1 (555) 123-4567")
        '+15551234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def add_minutes(moment: datetime, minutes: int) -> datetime:
    return moment + timedelta(minutes=minutes)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: [a_start, a_end) vs [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


def round_up_to_boundary(moment: datetime, slot_minutes: int) -> datetime:
    """Round ``moment`` up to the next slot-grid boundary.

    The grid is anchored at midnight on the moment's own wall clock, so a
    30 minute grid always lands on :00 and :30 in the business timezone.
    Slot sizes must divide a day evenly.
    """
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    slot = timedelta(minutes=slot_minutes)
    remainder = (moment - midnight) % slot
    if not remainder:
        return moment
    return moment + (slot - remainder)


def isoformat_z(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z.

    >>> isoformat_z(datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc))
    '2026-03-02T09:30:00.000Z'
    """
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
