"""Calendar helpers for day/week/hour based rules.

Naive timestamps are treated as UTC. Calendar boundaries (today, this ISO
week, the current hour) are always computed in the trader's timezone.
"""
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC = timezone.utc


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the tzinfo for an IANA name, falling back to UTC."""
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def ensure_aware(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware datetimes are returned unchanged."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts


def to_local(ts: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Convert a timestamp to the trader's timezone."""
    return ensure_aware(ts).astimezone(tz or UTC)


def local_day_bounds(ts: datetime, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local calendar day containing ``ts``."""
    local = to_local(ts, tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def iso_week_bounds(ts: datetime, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """Return ``[start, end)`` of the ISO week (Monday 00:00) containing ``ts``."""
    day_start, _ = local_day_bounds(ts, tz)
    start = day_start - timedelta(days=day_start.weekday())
    return start, start + timedelta(days=7)


def same_local_day(a: datetime, b: datetime, tz: Optional[tzinfo] = None) -> bool:
    return to_local(a, tz).date() == to_local(b, tz).date()


def same_iso_week(a: datetime, b: datetime, tz: Optional[tzinfo] = None) -> bool:
    return to_local(a, tz).isocalendar()[:2] == to_local(b, tz).isocalendar()[:2]


def local_hour(ts: datetime, tz: Optional[tzinfo] = None) -> int:
    return to_local(ts, tz).hour


def hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """Check ``hour`` against a ``[start_hour, end_hour)`` window.

    Windows where ``start_hour > end_hour`` wrap past midnight
    (22 -> 6 allows 22:00-05:59). ``start_hour == end_hour`` allows the whole day.
    """
    if start_hour == end_hour:
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def utc_now() -> datetime:
    return datetime.now(UTC)
