from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Optional

DATE_ONLY_LENGTH = len("YYYY-MM-DD")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime (query filters, report ranges).

    - None / "" -> None
    - "YYYY-MM-DD" is the start of that day in UTC
    - offsets and trailing "Z" are converted to UTC-naive
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_range_bound(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse one end of a date range.

    An upper bound given as a bare date covers that whole day, so
    date_to=2024-05-01 includes everything booked on May 1st.
    """
    parsed = parse_iso_datetime(value)
    if parsed is not None and end_of_day and len(value.strip()) == DATE_ONLY_LENGTH:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Order and ledger timestamps as ISO-8601 with trailing 'Z' (naive means UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
