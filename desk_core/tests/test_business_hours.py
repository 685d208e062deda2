# desk_core/tests/test_business_hours.py
from __future__ import annotations

from datetime import datetime, timezone as dt_timezone

import pytest

from desk_core.sla import (
    BusinessCalendar,
    BusinessHoursHorizonExceeded,
    add_business_minutes,
    minutes_in_hours,
)

UTC = dt_timezone.utc
WEEKDAYS = ("mon", "tue", "wed", "thu", "fri")


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def nine_to_five(*, timezone="UTC", holidays=()):
    return BusinessCalendar.build(
        timezone=timezone,
        windows=[(day, "09:00", "17:00") for day in WEEKDAYS],
        holidays=holidays,
    )


# ---------------------------------------------------------
# Forward projection
# ---------------------------------------------------------
def test_christmas_eve_skips_holiday():
    """
    Wed 15:00 leaves 120 minutes that day, Thu is a holiday,
    the remaining 360 minutes run Fri 09:00-15:00.
    """
    cal = nine_to_five(holidays=["2025-12-25"])
    due = add_business_minutes(cal, utc(2025, 12, 24, 15, 0), 480)
    assert due == utc(2025, 12, 26, 15, 0)


def test_consecutive_holidays_roll_over_the_weekend():
    cal = nine_to_five(holidays=["2025-12-25", "2025-12-26"])
    due = add_business_minutes(cal, utc(2025, 12, 24, 15, 0), 480)
    assert due == utc(2025, 12, 29, 15, 0)


def test_exact_fit_lands_on_window_end():
    cal = nine_to_five()
    # Monday
    due = add_business_minutes(cal, utc(2025, 12, 22, 9, 0), 480)
    assert due == utc(2025, 12, 22, 17, 0)


def test_start_outside_hours_waits_for_next_window():
    cal = nine_to_five()
    # Saturday morning
    due = add_business_minutes(cal, utc(2025, 12, 20, 10, 0), 60)
    assert due == utc(2025, 12, 22, 10, 0)


def test_zero_minutes_returns_start():
    cal = nine_to_five()
    start = utc(2025, 12, 20, 10, 0)
    assert add_business_minutes(cal, start, 0) == start


def test_naive_start_is_taken_as_utc():
    cal = nine_to_five()
    due = add_business_minutes(cal, datetime(2025, 12, 22, 9, 0), 30)
    assert due == utc(2025, 12, 22, 9, 30)
    assert due.tzinfo is not None


def test_wall_clock_calendar_ignores_windows():
    cal = BusinessCalendar.build(
        windows=[("mon", "09:00", "17:00")],
        holidays=["2025-12-25"],
        enforce_business_hours=False,
    )
    due = add_business_minutes(cal, utc(2025, 12, 24, 15, 0), 480)
    assert due == utc(2025, 12, 24, 23, 0)


def test_projection_is_monotonic_in_minutes():
    cal = nine_to_five(holidays=["2025-12-25"])
    start = utc(2025, 12, 24, 16, 30)

    previous = start
    for minutes in (1, 29, 30, 31, 60, 479, 480, 481, 2400):
        due = add_business_minutes(cal, start, minutes)
        assert due >= previous
        previous = due


def test_projection_and_duration_agree():
    cal = nine_to_five(holidays=["2025-12-25"])
    start = utc(2025, 12, 24, 15, 0)
    due = add_business_minutes(cal, start, 480)
    assert minutes_in_hours(cal, start, due) == 480


# ---------------------------------------------------------
# Daylight saving
# ---------------------------------------------------------
def test_window_keeps_local_wall_clock_across_dst_change():
    """
    America/New_York springs forward on Sunday 2025-03-09.
    Fri 16:00 EST is 21:00 UTC; Mon 10:00 EDT is 14:00 UTC.
    """
    cal = nine_to_five(timezone="America/New_York")
    due = add_business_minutes(cal, utc(2025, 3, 7, 21, 0), 120)
    assert due == utc(2025, 3, 10, 14, 0)


def test_full_day_is_eight_hours_on_both_sides_of_dst():
    cal = nine_to_five(timezone="America/New_York")
    # Fri 2025-03-07 and Mon 2025-03-10, local midnight to midnight
    friday = minutes_in_hours(cal, utc(2025, 3, 7, 5, 0), utc(2025, 3, 8, 5, 0))
    monday = minutes_in_hours(cal, utc(2025, 3, 10, 4, 0), utc(2025, 3, 11, 4, 0))
    assert friday == 480
    assert monday == 480


# ---------------------------------------------------------
# Duration inside business hours
# ---------------------------------------------------------
def test_holiday_contributes_nothing():
    cal = nine_to_five(holidays=["2025-12-25"])
    assert minutes_in_hours(cal, utc(2025, 12, 25, 0, 0), utc(2025, 12, 26, 0, 0)) == 0


def test_reversed_interval_is_zero():
    cal = nine_to_five()
    assert minutes_in_hours(cal, utc(2025, 12, 22, 12, 0), utc(2025, 12, 22, 10, 0)) == 0


def test_overlapping_windows_are_not_double_counted():
    cal = BusinessCalendar.build(
        windows=[
            ("mon", "09:00", "12:00"),
            ("monday", "11:00", "14:00"),
            (0, "14:00", "15:00"),
        ],
    )
    assert minutes_in_hours(cal, utc(2025, 12, 22, 0, 0), utc(2025, 12, 23, 0, 0)) == 360


def test_partial_minutes_are_summed_across_windows():
    cal = nine_to_five()
    # 30s before Monday close + 30s after Tuesday open
    start = datetime(2025, 12, 22, 16, 59, 30, tzinfo=UTC)
    end = datetime(2025, 12, 23, 9, 0, 30, tzinfo=UTC)
    assert minutes_in_hours(cal, start, end) == 1


def test_window_dicts_accept_day_or_weekday_keys():
    cal = BusinessCalendar.build(
        windows=[
            {"day": "Tuesday", "start": "10:00", "end": "11:00"},
            {"weekday": 2, "start": "10:00:00", "end": "10:30:00"},
        ]
    )
    # Tue + Wed
    total = minutes_in_hours(cal, utc(2025, 12, 23, 0, 0), utc(2025, 12, 25, 0, 0))
    assert total == 90


def test_invalid_window_is_rejected():
    with pytest.raises(ValueError):
        BusinessCalendar.build(windows=[("mon", "17:00", "09:00")])
    with pytest.raises(ValueError):
        BusinessCalendar.build(windows=[("someday", "09:00", "17:00")])


def test_window_can_close_at_midnight():
    cal = BusinessCalendar.build(windows=[(day, "00:00", "24:00") for day in WEEKDAYS])

    # Monday, midnight to midnight
    assert minutes_in_hours(cal, utc(2025, 12, 22, 0, 0), utc(2025, 12, 23, 0, 0)) == 1440
    # no gap between Monday and Tuesday
    assert add_business_minutes(cal, utc(2025, 12, 22, 23, 30), 60) == utc(2025, 12, 23, 0, 30)
    # Friday closes at midnight, Monday reopens
    assert add_business_minutes(cal, utc(2025, 12, 26, 23, 30), 60) == utc(2025, 12, 29, 0, 30)


def test_evening_shift_until_midnight_merges_with_earlier_window():
    cal = BusinessCalendar.build(
        windows=[("mon", "18:00", "24:00"), ("mon", "12:00", "18:00"), ("mon", "20:00", "22:00")]
    )
    assert minutes_in_hours(cal, utc(2025, 12, 22, 0, 0), utc(2025, 12, 24, 0, 0)) == 720
    assert add_business_minutes(cal, utc(2025, 12, 22, 23, 0), 90) == utc(2025, 12, 29, 12, 30)


def test_midnight_is_only_a_valid_end():
    with pytest.raises(ValueError):
        BusinessCalendar.build(windows=[("mon", "24:00", "24:00")])
    with pytest.raises(ValueError):
        BusinessCalendar.build(windows=[("mon", "09:00", "24:30")])


def test_unknown_timezone_is_rejected():
    with pytest.raises(ValueError):
        BusinessCalendar.build(timezone="Mars/Olympus_Mons")


# ---------------------------------------------------------
# Horizon
# ---------------------------------------------------------
def test_no_windows_raises_horizon_error():
    cal = BusinessCalendar.build(windows=[], enforce_business_hours=True)
    with pytest.raises(BusinessHoursHorizonExceeded) as exc:
        add_business_minutes(cal, utc(2025, 12, 22, 9, 0), 60)
    assert exc.value.minutes == 60


def test_budget_beyond_horizon_raises():
    cal = BusinessCalendar.build(windows=[("mon", "09:00", "10:00")])
    # Tuesday start, three-day horizon never reaches a Monday
    with pytest.raises(BusinessHoursHorizonExceeded) as exc:
        add_business_minutes(cal, utc(2025, 12, 23, 9, 0), 30, horizon_days=3)
    assert exc.value.horizon_days == 3
