"""
projectguard.policy.windows

Time-of-day access windows.
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from projectguard.errors import ValidationError
from projectguard.policy.models import AccessWindow


def _validate(window: AccessWindow) -> ZoneInfo:
    for hour in (window.start_hour, window.end_hour):
        if not 0 <= hour <= 23:
            raise ValidationError(f"Access window hour out of range: {hour}")
    for day in window.days_of_week:
        if not 0 <= day <= 6:
            raise ValidationError(f"Access window weekday out of range: {day}")
    try:
        return ZoneInfo(window.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {window.timezone}") from e


def is_within_access_window(window: AccessWindow, now: datetime | None = None) -> bool:
    """
    True when `now` (default: current time), seen in the window's timezone, falls
    inside `[start_hour, end_hour)`.

    A window with start_hour > end_hour wraps midnight (22 -> 2 admits 23:00 and
    01:00). Weekdays use 0=Sunday and are also evaluated in the window's timezone.
    """

    tz = _validate(window)
    local = (now or datetime.now(tz=UTC)).astimezone(tz)
    hour = local.hour

    if window.start_hour <= window.end_hour:
        in_range = window.start_hour <= hour < window.end_hour
    else:
        in_range = hour >= window.start_hour or hour < window.end_hour

    if window.days_of_week:
        # datetime.weekday() is Monday=0; shift to Sunday=0.
        weekday = (local.weekday() + 1) % 7
        if weekday not in window.days_of_week:
            return False

    return in_range
