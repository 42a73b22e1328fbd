"""Date and time zone manipulation utilities"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC = timezone.utc


def get_zone(timezone_id: str) -> ZoneInfo:
    """Resolve an IANA zone identifier (raises ZoneInfoNotFoundError when unknown)"""
    return ZoneInfo(timezone_id)


def is_valid_timezone(timezone_id: str) -> bool:
    if not timezone_id:
        return False
    try:
        get_zone(timezone_id)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _exists(local: datetime, tz: ZoneInfo) -> bool:
    """A wall-clock time exists if it survives a round trip through UTC"""
    aware = local.replace(tzinfo=tz)
    return aware.astimezone(UTC).astimezone(tz).replace(tzinfo=None) == local


def local_to_utc(local: datetime, tz: ZoneInfo, max_gap_minutes: int = 120) -> datetime:
    """
    Convert a naive local wall-clock time to a UTC instant.

    - Nonexistent times (spring-forward gap) advance minute by minute until a
      valid local time is found, at most max_gap_minutes.
    - Ambiguous times (fall-back overlap) resolve to the earlier UTC instant (fold=0).
    """
    candidate = local.replace(tzinfo=None)
    steps = 0
    while steps < max_gap_minutes and not _exists(candidate, tz):
        candidate += timedelta(minutes=1)
        steps += 1

    earlier = candidate.replace(tzinfo=tz, fold=0).astimezone(UTC)
    later = candidate.replace(tzinfo=tz, fold=1).astimezone(UTC)
    return min(earlier, later)


def combine_local(day: date, time_of_day: time, tz: ZoneInfo, max_gap_minutes: int = 120) -> datetime:
    return local_to_utc(datetime.combine(day, time_of_day), tz, max_gap_minutes)


def to_local_date(instant: datetime, tz: ZoneInfo) -> date:
    return ensure_utc(instant).astimezone(tz).date()


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def months_between(start: date, current: date) -> int:
    """Whole calendar months from start's month to current's month"""
    return (current.year - start.year) * 12 + (current.month - start.month)


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping day to the month's last day"""
    return date(year, month, min(day, days_in_month(year, month)))


def nth_weekday_of_month(year: int, month: int, nth: int, weekday: int) -> Optional[date]:
    """
    Date of the nth given weekday (Monday=0) in a month.

    nth = -1 selects the last such weekday. Returns None when the month
    has no nth occurrence (e.g. a fifth Monday in a four-Monday month).
    """
    last_day = days_in_month(year, month)
    if nth == -1:
        last = date(year, month, last_day)
        offset = (last.weekday() - weekday) % 7
        return last - timedelta(days=offset)

    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    day = 1 + offset + (nth - 1) * 7
    if day > last_day:
        return None
    return date(year, month, day)
