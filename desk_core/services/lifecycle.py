from __future__ import annotations

"""
Ticket lifecycle coordinator.

The only code that writes a ticket's workflow_state and SLA fields.
- creation / re-targeting  -> deadline calculator
- transition requests      -> workflow runtime

Every entry point takes an explicit ExecutionContext; nothing here reads
request-scoped globals.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from rest_framework.exceptions import ValidationError

from desk_core.context import ExecutionContext
from desk_core.models import SlaBreachAlert, SlaPolicy, Ticket, TicketWorkflow, WorkflowEvent
from desk_core.sla.business_hours import DEFAULT_HORIZON_DAYS, add_wall_clock_minutes
from desk_core.sla.deadlines import Deadlines, compute_deadlines
from desk_core.workflows.definitions import StateSpec, TransitionSpec, normalize_slug
from desk_core.workflows.hooks import HookInvoker, HookOutcome, get_hook_invoker
from desk_core.workflows.runtime import TransitionResult, allowed_transitions, execute_transition

logger = logging.getLogger(__name__)

SLA_FIELDS = ["sla_policy", "sla_started_at", "first_response_due_at", "resolution_due_at"]
DEFAULT_CLOSED_STATUSES = ("solved", "closed")

_UNSET = object()


def sla_horizon_days() -> int:
    return int(getattr(settings, "DESK_SLA_HORIZON_DAYS", DEFAULT_HORIZON_DAYS))


def _closed_statuses():
    return {
        str(s).strip().lower()
        for s in getattr(settings, "DESK_SLA_CLOSED_STATUSES", DEFAULT_CLOSED_STATUSES)
    }


# ===============================================================
# WORKFLOW RESOLUTION
# ===============================================================

def resolve_workflow(*, context: ExecutionContext, workflow_id: Optional[int] = None) -> TicketWorkflow:
    """
    Brand scope first, then tenant-wide. Within a scope:
      explicit id -> default (latest edited) -> oldest definition.
    """
    scopes = []
    if context.brand_id is not None:
        scopes.append(Q(brand_id=context.brand_id))
    scopes.append(Q(brand__isnull=True))

    for scope in scopes:
        qs = TicketWorkflow.objects.filter(scope, tenant_id=context.tenant_id)

        if workflow_id:
            found = qs.filter(pk=workflow_id).first()
            if found is not None:
                return found

        found = qs.filter(is_default=True).order_by("-updated_at", "-id").first()
        if found is not None:
            return found

        found = qs.order_by("id").first()
        if found is not None:
            return found

    raise ValidationError({"workflow": ["No workflow is configured for this tenant/brand."]})


def resolve_initial_state(workflow: TicketWorkflow, requested: Optional[str] = None) -> StateSpec:
    graph = workflow.graph()

    if requested:
        state = graph.state(requested)
        if state is None:
            raise ValidationError(
                {"workflow_state": [f"State {normalize_slug(requested)} is not defined for this workflow."]}
            )
        return state

    state = graph.initial_state()
    if state is None:
        raise ValidationError({"workflow_state": ["Workflow does not define any states."]})
    return state


def prepare_ticket_for_create(
    *,
    context: ExecutionContext,
    workflow_id: Optional[int] = None,
    workflow_state: Optional[str] = None,
) -> Tuple[TicketWorkflow, StateSpec]:
    workflow = resolve_workflow(context=context, workflow_id=workflow_id)
    state = resolve_initial_state(workflow, workflow_state)
    return workflow, state


def create_ticket(
    *,
    context: ExecutionContext,
    subject: str,
    channel: str = "agent",
    priority: str = "normal",
    workflow_id: Optional[int] = None,
    workflow_state: Optional[str] = None,
    actor=None,
    now=None,
    **fields,
) -> Ticket:
    now = now or timezone.now()
    workflow, state = prepare_ticket_for_create(
        context=context,
        workflow_id=workflow_id,
        workflow_state=workflow_state,
    )

    with transaction.atomic():
        ticket = Ticket.objects.create(
            tenant_id=context.tenant_id,
            brand_id=context.brand_id,
            subject=subject,
            channel=channel,
            priority=priority,
            workflow=workflow,
            workflow_state=state.slug,
            created_by=actor if getattr(actor, "is_authenticated", False) else None,
            **fields,
        )
        on_ticket_created_or_retargeted(ticket, context=context, now=now, state_hint=state)

    return ticket


# ===============================================================
# SLA
# ===============================================================

def resolve_policy_for_ticket(ticket: Ticket) -> Optional[SlaPolicy]:
    """
    Brand-specific policies beat tenant-wide ones; newest wins in a scope.
    """
    qs = SlaPolicy.objects.filter(tenant_id=ticket.tenant_id).order_by("-id")
    if ticket.brand_id:
        branded = qs.filter(brand_id=ticket.brand_id).first()
        if branded is not None:
            return branded
    return qs.filter(brand__isnull=True).first()


def _load_policy(policy_id: int) -> SlaPolicy:
    return (
        SlaPolicy.objects.prefetch_related("business_hours", "holidays", "targets")
        .get(pk=policy_id)
    )


def _resolve_open_alerts(ticket: Ticket, now) -> int:
    return SlaBreachAlert.objects.filter(ticket=ticket, resolved_at__isnull=True).update(resolved_at=now)


def clear_ticket_sla(ticket: Ticket, *, context: Optional[ExecutionContext] = None, now=None) -> None:
    context = context or ExecutionContext.for_ticket(ticket)
    now = now or timezone.now()

    ticket.sla_policy = None
    ticket.sla_started_at = None
    ticket.first_response_due_at = None
    ticket.resolution_due_at = None
    ticket.save(update_fields=SLA_FIELDS + ["updated_at"])
    _resolve_open_alerts(ticket, now)

    logger.info(
        "sla.policy.cleared",
        extra=context.log_extra(ticket_id=ticket.pk, context="sla_timer"),
    )


def on_ticket_created_or_retargeted(
    ticket: Ticket,
    *,
    context: Optional[ExecutionContext] = None,
    now=None,
    state_hint: Optional[StateSpec] = None,
) -> Optional[Deadlines]:
    """
    Recompute both deadlines from `now`.

    An explicitly assigned policy is kept; otherwise one is resolved for the
    ticket's scope. With no policy, a state sla_minutes hint (creation only)
    sets a wall-clock resolution deadline. Closed tickets are cleared.
    """
    context = context or ExecutionContext.for_ticket(ticket)
    context.ensure_owns(ticket, label="Ticket")
    now = now or timezone.now()

    if str(ticket.status or "").strip().lower() in _closed_statuses():
        clear_ticket_sla(ticket, context=context, now=now)
        return None

    policy = None
    if ticket.sla_policy_id:
        policy = SlaPolicy.objects.filter(
            Q(brand_id=ticket.brand_id) | Q(brand__isnull=True),
            pk=ticket.sla_policy_id,
            tenant_id=ticket.tenant_id,
        ).first()
    if policy is None:
        policy = resolve_policy_for_ticket(ticket)

    if policy is None:
        if state_hint is not None and state_hint.sla_minutes:
            ticket.sla_policy = None
            ticket.sla_started_at = now
            ticket.first_response_due_at = None
            ticket.resolution_due_at = add_wall_clock_minutes(now, state_hint.sla_minutes)
            ticket.save(update_fields=SLA_FIELDS + ["updated_at"])
            _resolve_open_alerts(ticket, now)
            return None
        clear_ticket_sla(ticket, context=context, now=now)
        return None

    policy = _load_policy(policy.pk)
    deadlines = compute_deadlines(
        policy.snapshot(),
        ticket.channel,
        ticket.priority,
        now,
        horizon_days=sla_horizon_days(),
    )

    ticket.sla_policy = policy
    ticket.sla_started_at = deadlines.started_at
    ticket.first_response_due_at = deadlines.first_response_due_at
    ticket.resolution_due_at = deadlines.resolution_due_at
    ticket.save(update_fields=SLA_FIELDS + ["updated_at"])
    _resolve_open_alerts(ticket, now)

    logger.info(
        "sla.policy.applied",
        extra=context.log_extra(
            ticket_id=ticket.pk,
            sla_policy_id=policy.pk,
            first_response_due_at=_iso(deadlines.first_response_due_at),
            resolution_due_at=_iso(deadlines.resolution_due_at),
            context="sla_timer",
        ),
    )
    return deadlines


def update_ticket_targeting(
    ticket: Ticket,
    *,
    context: ExecutionContext,
    channel: Optional[str] = None,
    priority: Optional[str] = None,
    status: Optional[str] = None,
    sla_policy=_UNSET,
    now=None,
) -> Optional[Deadlines]:
    """
    Apply channel / priority / status / policy changes and recompute when
    any of them actually changed. Returns None when nothing was recomputed
    or when deadlines were cleared.
    """
    context.ensure_owns(ticket, label="Ticket")

    changed = []
    if channel is not None and channel != ticket.channel:
        ticket.channel = channel
        changed.append("channel")
    if priority is not None and priority != ticket.priority:
        ticket.priority = priority
        changed.append("priority")
    if status is not None and status != ticket.status:
        ticket.status = status
        changed.append("status")
    if sla_policy is not _UNSET:
        if sla_policy is not None:
            context.ensure_owns(sla_policy, label="SLA policy")
        new_id = getattr(sla_policy, "pk", None)
        if new_id != ticket.sla_policy_id:
            ticket.sla_policy = sla_policy
            changed.append("sla_policy")

    if not changed:
        return None

    with transaction.atomic():
        ticket.save(update_fields=[f for f in changed if f != "sla_policy"] + ["updated_at"])
        return on_ticket_created_or_retargeted(ticket, context=context, now=now)


def _iso(value):
    return value.isoformat() if value else None


# ===============================================================
# TRANSITIONS
# ===============================================================

class _SavepointInvoker(HookInvoker):
    """
    Runs each hook in its own savepoint so a failing hook cannot poison the
    surrounding transaction.
    """

    def __init__(self, inner: HookInvoker):
        self.inner = inner

    def invoke(self, hook_id: str, *, ticket, transition, context) -> HookOutcome:
        with transaction.atomic():
            return self.inner.invoke(hook_id, ticket=ticket, transition=transition, context=context)


def _ticket_workflow(ticket: Ticket, context: ExecutionContext) -> TicketWorkflow:
    if ticket.workflow_id:
        found = TicketWorkflow.objects.filter(
            Q(brand_id=ticket.brand_id) | Q(brand__isnull=True),
            pk=ticket.workflow_id,
            tenant_id=ticket.tenant_id,
        ).first()
        if found is not None:
            return found
    return resolve_workflow(context=context)


def on_transition_requested(
    ticket: Ticket,
    target_state: str,
    *,
    context: ExecutionContext,
    comment: Optional[str] = None,
    actor=None,
    extra: Optional[Dict[str, Any]] = None,
    hooks: Optional[HookInvoker] = None,
    now=None,
) -> TransitionResult:
    """
    Validate and apply one transition. TransitionError subclasses leave the
    ticket untouched; entry-hook failures come back as result.warnings.
    """
    context.ensure_owns(ticket, label="Ticket")
    invoker = _SavepointInvoker(hooks or get_hook_invoker())

    with transaction.atomic():
        locked = Ticket.objects.select_for_update().get(pk=ticket.pk)
        workflow = _ticket_workflow(locked, context)
        graph = workflow.graph()

        hook_context = {
            **(extra or {}),
            "tenant_id": context.tenant_id,
            "brand_id": context.brand_id,
            "correlation_id": context.correlation_id,
            "actor": actor or context.actor,
            "workflow_id": workflow.pk,
        }

        def apply(transition: TransitionSpec):
            locked.workflow = workflow
            locked.workflow_state = transition.to_slug
            locked.save(update_fields=["workflow", "workflow_state", "updated_at"], _workflow_bypass=True)

        result = execute_transition(
            graph=graph,
            current_state=locked.workflow_state,
            target_state=target_state,
            apply=apply,
            ticket=locked,
            comment=comment,
            context=hook_context,
            hooks=invoker,
        )

        actor = actor or context.actor
        WorkflowEvent.objects.create(
            tenant_id=locked.tenant_id,
            ticket=locked,
            workflow=workflow,
            from_state=result.from_state,
            to_state=result.to_state,
            performed_by=actor if getattr(actor, "is_authenticated", False) else None,
            comment=result.comment,
            warnings=list(result.warnings),
            correlation_id=context.correlation_id,
        )

        if result.recompute_sla:
            on_ticket_created_or_retargeted(locked, context=context, now=now)

    logger.info(
        "ticket.workflow.transition",
        extra=context.log_extra(
            ticket_id=locked.pk,
            workflow_id=workflow.pk,
            from_state=result.from_state,
            to_state=result.to_state,
            actor_id=getattr(actor, "pk", None),
            requires_comment=result.transition.requires_comment,
            has_comment=bool(result.comment),
            warnings=len(result.warnings),
            context="ticket_workflow",
        ),
    )

    # keep the caller's instance in step with the row
    for name in (
        "workflow_id",
        "workflow_state",
        "sla_policy_id",
        "sla_started_at",
        "first_response_due_at",
        "resolution_due_at",
    ):
        setattr(ticket, name, getattr(locked, name))
    return result


def allowed_transitions_for(ticket: Ticket, *, context: ExecutionContext) -> List[Dict[str, Any]]:
    context.ensure_owns(ticket, label="Ticket")
    workflow = _ticket_workflow(ticket, context)
    graph = workflow.graph()

    out = []
    for t in allowed_transitions(graph, ticket.workflow_state):
        state = graph.state(t.to_slug)
        out.append(
            {
                "to": t.to_slug,
                "name": state.name if state else t.to_slug,
                "is_terminal": bool(state and state.is_terminal),
                "requires_comment": t.requires_comment,
                "has_guard": bool(t.guard_hook),
            }
        )
    return out
