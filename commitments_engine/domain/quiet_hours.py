"""Quiet-hours window arithmetic, resolved in the window's own time zone"""

from datetime import datetime, time, timedelta
from typing import Optional

from commitments_engine.domain.models import QuietHours
from commitments_engine.utils.date_utils import combine_local, ensure_utc, get_zone


def is_in_quiet_window(local_hour: int, start_hour: int, end_hour: int) -> bool:
    """
    Whether a local hour falls inside [start_hour, end_hour).

    start < end is a same-day window (09-17), start > end wraps past
    midnight (22-07), and start == end means there is no quiet window.
    """
    if start_hour == end_hour:
        return False
    if start_hour < end_hour:
        return start_hour <= local_hour < end_hour
    return local_hour >= start_hour or local_hour < end_hour


def next_quiet_window_end(local_now: datetime, start_hour: int, end_hour: int) -> datetime:
    """Local wall-clock time at which the window containing local_now closes"""
    end_today = local_now.replace(hour=end_hour, minute=0, second=0, microsecond=0)
    if start_hour < end_hour:
        return end_today if local_now < end_today else end_today + timedelta(days=1)
    # Overnight window: evening hours close tomorrow morning
    if local_now.hour >= start_hour:
        return end_today + timedelta(days=1)
    return end_today


def resolve_quiet_hours(
    override: Optional[QuietHours],
    user_id,
    default_start_hour: int,
    default_end_hour: int,
    default_timezone: str,
) -> QuietHours:
    """Per-user override if stored, else the default window in the fallback zone"""
    if override is not None:
        return override
    return QuietHours(
        user_id=user_id,
        start_hour=default_start_hour,
        end_hour=default_end_hour,
        timezone=default_timezone,
    )


def quiet_deferral_target(now_utc: datetime, window: QuietHours) -> Optional[datetime]:
    """
    UTC instant at which a reminder due now may be delivered.

    Returns None when now is outside the window, so the reminder can go out immediately.
    """
    zone = get_zone(window.timezone)
    local_now = ensure_utc(now_utc).astimezone(zone).replace(tzinfo=None)
    if not is_in_quiet_window(local_now.hour, window.start_hour, window.end_hour):
        return None

    local_end = next_quiet_window_end(local_now, window.start_hour, window.end_hour)
    return combine_local(local_end.date(), time(local_end.hour), zone)
