# desk_core/sla/__init__.py

from .business_hours import (
    DEFAULT_HORIZON_DAYS,
    BusinessHoursHorizonExceeded,
    SlaConfigurationError,
    add_business_minutes,
    minutes_in_hours,
)
from .calendar import BusinessCalendar, BusinessWindow, merge_windows
from .deadlines import Deadlines, compute_deadlines
from .targets import PolicySnapshot, ResolvedTargets, TargetRule, resolve_targets

__all__ = [
    "DEFAULT_HORIZON_DAYS",
    "BusinessCalendar",
    "BusinessHoursHorizonExceeded",
    "BusinessWindow",
    "Deadlines",
    "PolicySnapshot",
    "ResolvedTargets",
    "SlaConfigurationError",
    "TargetRule",
    "add_business_minutes",
    "compute_deadlines",
    "merge_windows",
    "minutes_in_hours",
    "resolve_targets",
]
