# desk_core/tests/test_deadlines.py
from __future__ import annotations

from datetime import datetime, timezone as dt_timezone

import pytest

from desk_core.sla import (
    BusinessCalendar,
    BusinessHoursHorizonExceeded,
    PolicySnapshot,
    compute_deadlines,
)

UTC = dt_timezone.utc


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def _calendar(*, enforce=True, holidays=()):
    return BusinessCalendar.build(
        windows=[(d, "09:00", "17:00") for d in ("mon", "tue", "wed", "thu", "fri")],
        holidays=holidays,
        enforce_business_hours=enforce,
    )


def test_both_clocks_start_from_the_same_instant():
    policy = PolicySnapshot.build(
        calendar=_calendar(holidays=["2025-12-25"]),
        default_first_response_minutes=60,
        default_resolution_minutes=480,
    )
    deadlines = compute_deadlines(policy, "email", "normal", utc(2025, 12, 24, 15, 0))

    assert deadlines.started_at == utc(2025, 12, 24, 15, 0)
    assert deadlines.first_response_due_at == utc(2025, 12, 24, 16, 0)
    assert deadlines.resolution_due_at == utc(2025, 12, 26, 15, 0)


def test_missing_budget_yields_no_deadline():
    policy = PolicySnapshot.build(
        calendar=_calendar(),
        default_first_response_minutes=None,
        default_resolution_minutes=120,
    )
    deadlines = compute_deadlines(policy, "portal", "low", utc(2025, 12, 22, 9, 0))
    assert deadlines.first_response_due_at is None
    assert deadlines.resolution_due_at == utc(2025, 12, 22, 11, 0)


def test_target_opts_into_business_hours_on_wall_clock_policy():
    policy = PolicySnapshot.build(
        calendar=_calendar(enforce=False),
        default_first_response_minutes=60,
        default_resolution_minutes=60,
        targets=[{"channel": "email", "priority": "low", "use_business_hours": True}],
    )
    # Saturday 10:00
    start = utc(2025, 12, 20, 10, 0)

    wall = compute_deadlines(policy, "chat", "low", start)
    assert wall.resolution_due_at == utc(2025, 12, 20, 11, 0)

    business = compute_deadlines(policy, "email", "low", start)
    assert business.resolution_due_at == utc(2025, 12, 22, 10, 0)
    assert business.targets.use_business_hours is True


def test_target_opts_out_of_business_hours():
    policy = PolicySnapshot.build(
        calendar=_calendar(),
        default_first_response_minutes=30,
        default_resolution_minutes=240,
        targets=[
            {
                "channel": "chat",
                "priority": "urgent",
                "first_response_minutes": 5,
                "use_business_hours": False,
            }
        ],
    )
    start = utc(2025, 12, 20, 22, 0)
    deadlines = compute_deadlines(policy, "chat", "urgent", start)
    assert deadlines.first_response_due_at == utc(2025, 12, 20, 22, 5)
    assert deadlines.resolution_due_at == utc(2025, 12, 21, 2, 0)


def test_as_dict_reports_resolved_budgets():
    policy = PolicySnapshot.build(
        calendar=_calendar(),
        default_first_response_minutes=60,
        default_resolution_minutes=480,
        targets=[{"channel": "email", "priority": "high", "resolution_minutes": 120}],
    )
    data = compute_deadlines(policy, "email", "high", utc(2025, 12, 22, 9, 0)).as_dict()
    assert data["target_matched"] is True
    assert data["first_response_minutes"] == 60
    assert data["resolution_minutes"] == 120
    assert data["resolution_due_at"] == utc(2025, 12, 22, 11, 0)


def test_policy_without_business_hours_raises():
    policy = PolicySnapshot.build(
        calendar=BusinessCalendar.build(windows=[]),
        default_resolution_minutes=60,
    )
    with pytest.raises(BusinessHoursHorizonExceeded):
        compute_deadlines(policy, "email", "normal", utc(2025, 12, 22, 9, 0))
