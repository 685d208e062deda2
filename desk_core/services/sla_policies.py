from __future__ import annotations

"""
SLA policy authoring.

Field validation happens in serializers_sla before these functions run.
Each call is one transaction: the policy row, its business-hours windows,
holiday exceptions and (channel, priority) targets are written together
so the deadline calculator never sees a half-updated policy.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.utils.text import slugify

from desk_core import audit
from desk_core.context import ExecutionContext, TenantScopeError
from desk_core.models import BusinessHoursWindow, HolidayException, SlaPolicy, SlaTarget
from desk_core.sla.calendar import normalize_weekday, parse_date, parse_time
from desk_core.sla.targets import normalize_key

logger = logging.getLogger(__name__)

POLICY_FIELDS = (
    "name",
    "slug",
    "description",
    "brand_id",
    "timezone",
    "enforce_business_hours",
    "first_response_minutes",
    "resolution_minutes",
)
CHILD_KEYS = ("business_hours", "holidays", "targets")


# ---------------------------------------------------------------------
# SLUGS
# ---------------------------------------------------------------------

def generate_slug(value: str, *, tenant_id: int, ignore_id: Optional[int] = None) -> str:
    """
    slugify(value), then -1, -2 ... until unused within the tenant.
    """
    base = slugify(value or "")[:90] or "sla-policy"
    slug = base
    suffix = 1

    qs = SlaPolicy.objects.filter(tenant_id=tenant_id)
    if ignore_id is not None:
        qs = qs.exclude(pk=ignore_id)

    while qs.filter(slug=slug).exists():
        slug = f"{base}-{suffix}"
        suffix += 1

    return slug


# ---------------------------------------------------------------------
# CHILD ROWS
# ---------------------------------------------------------------------

def _sync_business_hours(policy: SlaPolicy, rows: Iterable[Dict[str, Any]]) -> None:
    policy.business_hours.all().delete()
    BusinessHoursWindow.objects.bulk_create(
        [
            BusinessHoursWindow(
                policy=policy,
                weekday=normalize_weekday(row.get("weekday", row.get("day"))),
                start_time=parse_time(row["start"]),
                end_time=parse_time(row["end"], end_of_day=True),
            )
            for row in rows
        ]
    )


def _sync_holidays(policy: SlaPolicy, rows: Iterable[Dict[str, Any]]) -> None:
    policy.holidays.all().delete()
    seen = {}
    for row in rows:
        day = parse_date(row["date"] if isinstance(row, dict) else row)
        label = (row.get("label") or "") if isinstance(row, dict) else ""
        seen[day] = label
    HolidayException.objects.bulk_create(
        [HolidayException(policy=policy, date=day, label=label) for day, label in sorted(seen.items())]
    )


def _sync_targets(policy: SlaPolicy, rows: Iterable[Dict[str, Any]]) -> None:
    policy.targets.all().delete()
    SlaTarget.objects.bulk_create(
        [
            SlaTarget(
                policy=policy,
                channel=normalize_key(row["channel"]),
                priority=normalize_key(row["priority"]),
                first_response_minutes=row.get("first_response_minutes"),
                resolution_minutes=row.get("resolution_minutes"),
                use_business_hours=row.get("use_business_hours"),
            )
            for row in rows
        ]
    )


def _sync_children(policy: SlaPolicy, data: Dict[str, Any]) -> List[str]:
    synced = []
    if data.get("business_hours") is not None:
        _sync_business_hours(policy, data["business_hours"])
        synced.append("business_hours")
    if data.get("holidays") is not None:
        _sync_holidays(policy, data["holidays"])
        synced.append("holidays")
    if data.get("targets") is not None:
        _sync_targets(policy, data["targets"])
        synced.append("targets")
    return synced


def policy_snapshot(policy: SlaPolicy) -> Dict[str, Any]:
    return {
        "name": policy.name,
        "slug": policy.slug,
        "timezone": policy.timezone,
        "enforce_business_hours": policy.enforce_business_hours,
        "first_response_minutes": policy.first_response_minutes,
        "resolution_minutes": policy.resolution_minutes,
        "business_hours_count": policy.business_hours.count(),
        "holiday_count": policy.holidays.count(),
        "targets": [
            {
                "channel": t.channel,
                "priority": t.priority,
                "first_response_minutes": t.first_response_minutes,
                "resolution_minutes": t.resolution_minutes,
                "use_business_hours": t.use_business_hours,
            }
            for t in policy.targets.all()
        ],
    }


def _log_event(action: str, policy: SlaPolicy, context: ExecutionContext, started: float, **extra):
    logger.info(
        action,
        extra=context.log_extra(
            sla_policy_id=policy.pk,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
            context="sla_policy",
            **extra,
        ),
    )


def _check_brand(context: ExecutionContext, brand_id: Optional[int]) -> None:
    if context.brand_id is not None and brand_id not in (None, context.brand_id):
        raise TenantScopeError(f"Brand {brand_id} is outside the current scope.")


# ---------------------------------------------------------------------
# CREATE / UPDATE / DELETE
# ---------------------------------------------------------------------

def create_policy(*, context: ExecutionContext, data: Dict[str, Any], actor=None) -> SlaPolicy:
    started = time.monotonic()
    fields = {k: data[k] for k in POLICY_FIELDS if k in data and k != "slug"}
    fields.setdefault("brand_id", context.brand_id)
    _check_brand(context, fields["brand_id"])

    with transaction.atomic():
        policy = SlaPolicy(tenant_id=context.tenant_id, **fields)
        policy.slug = generate_slug(data.get("slug") or policy.name, tenant_id=context.tenant_id)
        policy.save()
        _sync_children(policy, data)

        audit.record(
            "sla-policy.created",
            tenant=policy.tenant_id,
            user=actor,
            context=context,
            details={"sla_policy_id": policy.pk, "snapshot": policy_snapshot(policy)},
        )

    _log_event("sla-policy.created", policy, context, started)
    return policy


def update_policy(
    *,
    policy: SlaPolicy,
    context: ExecutionContext,
    data: Dict[str, Any],
    actor=None,
) -> SlaPolicy:
    context.ensure_owns(policy, label="SLA policy")
    started = time.monotonic()

    with transaction.atomic():
        policy = SlaPolicy.objects.select_for_update().get(pk=policy.pk)

        changes: Dict[str, Any] = {}
        for name in POLICY_FIELDS:
            if name == "slug" or name not in data:
                continue
            if getattr(policy, name) != data[name]:
                changes[name] = data[name]
                setattr(policy, name, data[name])

        if "brand_id" in changes:
            _check_brand(context, policy.brand_id)

        if data.get("slug") or "name" in changes:
            slug = generate_slug(data.get("slug") or policy.name, tenant_id=policy.tenant_id, ignore_id=policy.pk)
            if slug != policy.slug:
                changes["slug"] = slug
                policy.slug = slug

        if changes:
            policy.save()

        for key in _sync_children(policy, data):
            changes[key] = data[key]

        if changes:
            audit.record(
                "sla-policy.updated",
                tenant=policy.tenant_id,
                user=actor,
                context=context,
                details={"sla_policy_id": policy.pk, "changes": _jsonable(changes)},
            )

    if changes:
        _log_event("sla-policy.updated", policy, context, started, changed=sorted(changes))
    return policy


def delete_policy(*, policy: SlaPolicy, context: ExecutionContext, actor=None) -> None:
    context.ensure_owns(policy, label="SLA policy")
    started = time.monotonic()

    with transaction.atomic():
        snapshot = policy_snapshot(policy)
        pk = policy.pk
        policy.delete()
        policy.pk = pk

        audit.record(
            "sla-policy.deleted",
            tenant=context.tenant_id,
            user=actor,
            context=context,
            details={"sla_policy_id": pk, "snapshot": snapshot},
        )

    _log_event("sla-policy.deleted", policy, context, started)


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value
