from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is interpreted as midnight UTC
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value) -> datetime:
    """
    Normalize a transaction timestamp to canonical UTC-naive datetime.

    Accepts None (-> utcnow()), datetime, date or ISO string.
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        dt = parse_iso_datetime(value)
        if dt is None:
            raise ValueError("invalid datetime")
        return dt

    raise ValueError("invalid datetime")


def to_tax_date(value) -> date:
    """
    Strip time-of-day. Rate tables are effective-dated by day, not instant.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise ValueError("tax date requires a date or datetime")


def tax_period(value) -> date:
    """Monthly tax period bucket: first day of the transaction's month."""
    d = to_tax_date(value)
    return d.replace(day=1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    if d is None:
        return None
    return d.isoformat()
