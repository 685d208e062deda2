# desk_core/sla/business_hours.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import Iterator, Tuple

from .calendar import END_OF_DAY, BusinessCalendar

"""
Business-hours arithmetic.

This module is PURE LOGIC.
- No Django imports, no clock reads
- Every instant is supplied by the caller
- Window bounds are built as policy-local wall clock and converted to UTC
  before any subtraction, so 09:00-17:00 stays 09:00-17:00 across DST
"""

UTC = dt_timezone.utc

# Roughly two years of calendar days.
DEFAULT_HORIZON_DAYS = 731


class SlaConfigurationError(Exception):
    """
    Raised when an SLA policy is internally contradictory.
    """


class BusinessHoursHorizonExceeded(SlaConfigurationError):
    def __init__(self, *, minutes: int, horizon_days: int, timezone: str = "UTC"):
        self.minutes = minutes
        self.horizon_days = horizon_days
        self.timezone = timezone
        super().__init__(
            f"Could not place {minutes} business minutes within "
            f"{horizon_days} days ({timezone}); the policy has no usable business hours."
        )


def as_utc(value: datetime) -> datetime:
    """
    Normalize to an aware UTC datetime. Naive values are taken as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _day_segments(calendar: BusinessCalendar, day: date) -> Iterator[Tuple[datetime, datetime]]:
    tz = calendar.tz
    for start, end in calendar.spans_for(day):
        end_day = day + timedelta(days=1) if end == END_OF_DAY else day
        yield (
            datetime.combine(day, start, tzinfo=tz).astimezone(UTC),
            datetime.combine(end_day, end, tzinfo=tz).astimezone(UTC),
        )


# ===============================================================
# DURATION INSIDE BUSINESS HOURS
# ===============================================================

def minutes_in_hours(calendar: BusinessCalendar, start: datetime, end: datetime) -> int:
    """
    Whole business minutes inside [start, end).

    Seconds are summed across every overlapped segment and truncated once,
    so partial minutes spread over several windows are not lost.
    """
    start_utc = as_utc(start)
    end_utc = as_utc(end)

    if end_utc <= start_utc:
        return 0

    if not calendar.enforce_business_hours:
        return int((end_utc - start_utc).total_seconds() // 60)

    tz = calendar.tz
    day = start_utc.astimezone(tz).date()
    last_day = end_utc.astimezone(tz).date()

    seconds = 0.0
    while day <= last_day:
        for seg_start, seg_end in _day_segments(calendar, day):
            lo = max(seg_start, start_utc)
            hi = min(seg_end, end_utc)
            if hi > lo:
                seconds += (hi - lo).total_seconds()
        day += timedelta(days=1)

    return int(seconds // 60)


# ===============================================================
# FORWARD PROJECTION
# ===============================================================

def add_business_minutes(
    calendar: BusinessCalendar,
    start: datetime,
    minutes: int,
    *,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> datetime:
    """
    Instant reached after consuming `minutes` of business time from `start`.

    - minutes <= 0 returns start
    - enforce_business_hours=False is wall-clock addition
    - a budget that cannot be placed within horizon_days raises
      BusinessHoursHorizonExceeded

    The result is an aware UTC datetime.
    """
    start_utc = as_utc(start)
    minutes = int(minutes)

    if minutes <= 0:
        return start_utc

    if not calendar.enforce_business_hours:
        return start_utc + timedelta(minutes=minutes)

    if not calendar.has_windows:
        raise BusinessHoursHorizonExceeded(
            minutes=minutes, horizon_days=horizon_days, timezone=calendar.timezone
        )

    remaining = timedelta(minutes=minutes)
    day = start_utc.astimezone(calendar.tz).date()

    for _ in range(max(int(horizon_days), 1)):
        for seg_start, seg_end in _day_segments(calendar, day):
            lo = max(seg_start, start_utc)
            if lo >= seg_end:
                continue

            available = seg_end - lo
            if remaining <= available:
                return lo + remaining
            remaining -= available

        day += timedelta(days=1)

    raise BusinessHoursHorizonExceeded(
        minutes=minutes, horizon_days=horizon_days, timezone=calendar.timezone
    )


def add_wall_clock_minutes(start: datetime, minutes: int) -> datetime:
    return as_utc(start) + timedelta(minutes=max(int(minutes), 0))
