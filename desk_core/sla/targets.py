# desk_core/sla/targets.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from .business_hours import SlaConfigurationError
from .calendar import BusinessCalendar

"""
SLA target resolution.

PURE LOGIC. A policy snapshot is a consistent, immutable copy of one
SLA policy with its calendar and (channel, priority) overrides.
Matching is exact on normalized keys: a target applies or the policy
defaults apply, nothing in between.
"""


def normalize_key(value) -> str:
    return str(value or "").strip().lower()


@dataclass(frozen=True)
class TargetRule:
    channel: str
    priority: str
    first_response_minutes: Optional[int] = None
    resolution_minutes: Optional[int] = None
    # None inherits the policy's enforce_business_hours flag
    use_business_hours: Optional[bool] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (normalize_key(self.channel), normalize_key(self.priority))


@dataclass(frozen=True)
class PolicySnapshot:
    calendar: BusinessCalendar
    default_first_response_minutes: Optional[int] = None
    default_resolution_minutes: Optional[int] = None
    targets: Tuple[TargetRule, ...] = ()
    policy_id: Optional[int] = None
    slug: str = ""

    _index: Dict[Tuple[str, str], TargetRule] = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        index: Dict[Tuple[str, str], TargetRule] = {}
        for target in self.targets:
            if target.key in index:
                channel, priority = target.key
                raise SlaConfigurationError(
                    f"Duplicate SLA target for channel={channel!r} priority={priority!r}."
                )
            index[target.key] = target
        object.__setattr__(self, "_index", index)

    @property
    def enforce_business_hours(self) -> bool:
        return self.calendar.enforce_business_hours

    def target_for(self, channel, priority) -> Optional[TargetRule]:
        return self._index.get((normalize_key(channel), normalize_key(priority)))

    @classmethod
    def build(
        cls,
        *,
        calendar: BusinessCalendar,
        default_first_response_minutes: Optional[int] = None,
        default_resolution_minutes: Optional[int] = None,
        targets: Iterable = (),
        policy_id: Optional[int] = None,
        slug: str = "",
    ) -> "PolicySnapshot":
        rules = []
        for t in targets:
            if isinstance(t, TargetRule):
                rules.append(t)
            else:
                rules.append(
                    TargetRule(
                        channel=t.get("channel"),
                        priority=t.get("priority"),
                        first_response_minutes=t.get("first_response_minutes"),
                        resolution_minutes=t.get("resolution_minutes"),
                        use_business_hours=t.get("use_business_hours"),
                    )
                )

        return cls(
            calendar=calendar,
            default_first_response_minutes=default_first_response_minutes,
            default_resolution_minutes=default_resolution_minutes,
            targets=tuple(rules),
            policy_id=policy_id,
            slug=slug,
        )


@dataclass(frozen=True)
class ResolvedTargets:
    first_response_minutes: Optional[int]
    resolution_minutes: Optional[int]
    use_business_hours: bool
    target: Optional[TargetRule] = None

    @property
    def matched(self) -> bool:
        return self.target is not None


def resolve_targets(policy: PolicySnapshot, channel, priority) -> ResolvedTargets:
    """
    Effective minute budgets for (channel, priority).

    Each minute field of a matched target overrides the policy default on
    its own; an unset field falls back to the default.
    """
    target = policy.target_for(channel, priority)

    if target is None:
        return ResolvedTargets(
            first_response_minutes=policy.default_first_response_minutes,
            resolution_minutes=policy.default_resolution_minutes,
            use_business_hours=policy.enforce_business_hours,
        )

    first_response = target.first_response_minutes
    if first_response is None:
        first_response = policy.default_first_response_minutes

    resolution = target.resolution_minutes
    if resolution is None:
        resolution = policy.default_resolution_minutes

    use_business_hours = target.use_business_hours
    if use_business_hours is None:
        use_business_hours = policy.enforce_business_hours

    return ResolvedTargets(
        first_response_minutes=first_response,
        resolution_minutes=resolution,
        use_business_hours=bool(use_business_hours),
        target=target,
    )
