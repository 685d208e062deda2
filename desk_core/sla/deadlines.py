# desk_core/sla/deadlines.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from .business_hours import (
    DEFAULT_HORIZON_DAYS,
    add_business_minutes,
    add_wall_clock_minutes,
    as_utc,
)
from .targets import PolicySnapshot, ResolvedTargets, resolve_targets


@dataclass(frozen=True)
class Deadlines:
    first_response_due_at: Optional[datetime]
    resolution_due_at: Optional[datetime]
    targets: ResolvedTargets
    started_at: datetime

    def as_dict(self) -> dict:
        return {
            "first_response_due_at": self.first_response_due_at,
            "resolution_due_at": self.resolution_due_at,
            "first_response_minutes": self.targets.first_response_minutes,
            "resolution_minutes": self.targets.resolution_minutes,
            "use_business_hours": self.targets.use_business_hours,
            "target_matched": self.targets.matched,
        }


def _project(policy, start, minutes, use_business_hours, horizon_days):
    if minutes is None:
        return None
    if not use_business_hours:
        return add_wall_clock_minutes(start, minutes)

    calendar = policy.calendar
    if not calendar.enforce_business_hours:
        # target opted into business hours on a wall-clock policy
        calendar = replace(calendar, enforce_business_hours=True)
    return add_business_minutes(calendar, start, minutes, horizon_days=horizon_days)


def compute_deadlines(
    policy: PolicySnapshot,
    channel,
    priority,
    start: datetime,
    *,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> Deadlines:
    """
    First-response and resolution due instants for a ticket event at `start`.

    Both clocks run from `start` independently. A missing budget yields
    None for that deadline.
    """
    targets = resolve_targets(policy, channel, priority)
    start_utc = as_utc(start)

    return Deadlines(
        first_response_due_at=_project(
            policy, start_utc, targets.first_response_minutes,
            targets.use_business_hours, horizon_days,
        ),
        resolution_due_at=_project(
            policy, start_utc, targets.resolution_minutes,
            targets.use_business_hours, horizon_days,
        ),
        targets=targets,
        started_at=start_utc,
    )
