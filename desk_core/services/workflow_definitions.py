from __future__ import annotations

"""
Workflow definition authoring.

Persists the plans produced by desk_core.workflows.reconcile. Every call
runs in ONE transaction with the definition row locked, so concurrent
edits of the same definition are serialized and a failure leaves nothing
half-applied. Edits of different definitions do not contend.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from django.db import IntegrityError, transaction
from django.db.models import Case, F, SlugField, Value, When

from desk_core import audit
from desk_core.context import ExecutionContext
from desk_core.models import Ticket, TicketWorkflow, TicketWorkflowState, TicketWorkflowTransition
from desk_core.workflows.reconcile import (
    ReconciliationError,
    StatePlan,
    TransitionPlan,
    plan_states,
    plan_transitions,
)

logger = logging.getLogger(__name__)

WORKFLOW_FIELDS = ("slug", "name", "description", "is_default")

# Placeholder slug used while renames are in flight.
_TEMP_SLUG = "~{pk}"


@dataclass
class ReconcileOutcome:
    workflow: TicketWorkflow
    states: StatePlan
    transitions: TransitionPlan
    workflow_changed: bool = False
    demoted: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.workflow_changed
            or self.demoted
            or self.states.has_changes
            or self.transitions.has_changes
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "states": {
                "created": len(self.states.creates),
                "updated": len(self.states.updates),
                "unchanged": len(self.states.unchanged),
                "deleted": len(self.states.deletes),
            },
            "transitions": {
                "created": len(self.transitions.creates),
                "updated": len(self.transitions.updates),
                "unchanged": len(self.transitions.unchanged),
                "deleted": len(self.transitions.deletes),
                "skipped": [
                    {"from": t.from_slug, "to": t.to_slug} for t in self.transitions.skipped
                ],
            },
            "demoted_defaults": self.demoted,
        }


# ---------------------------------------------------------------------
# DEFAULT INVARIANT
# ---------------------------------------------------------------------

def demote_other_defaults(workflow: TicketWorkflow) -> int:
    """
    Clear is_default on every sibling in the same tenant + brand scope.
    Must run inside the caller's transaction, before the workflow itself
    is saved as default.
    """
    return workflow.scope_siblings().filter(is_default=True).update(is_default=False)


# ---------------------------------------------------------------------
# PERSISTENCE OF PLANS
# ---------------------------------------------------------------------

def _apply_state_plan(workflow: TicketWorkflow, plan: StatePlan, current: Dict[int, TicketWorkflowState]):
    renamed_ids = [s.id for s in plan.updates if s.slug != current[s.id].slug]
    renamed = {current[s.id].slug: s.slug for s in plan.updates if s.id in renamed_ids}
    parked = renamed_ids + [s.id for s in plan.deletes]
    for pk in parked:
        TicketWorkflowState.objects.filter(pk=pk).update(slug=_TEMP_SLUG.format(pk=pk))

    for item in plan.updates:
        obj = current[item.id]
        obj.name = item.name
        obj.slug = item.slug
        obj.position = item.position
        obj.is_initial = item.is_initial
        obj.is_terminal = item.is_terminal
        obj.sla_minutes = item.sla_minutes
        obj.entry_hook = item.entry_hook
        obj.description = item.description
        obj.save()

    created = []
    for item in plan.creates:
        created.append(
            TicketWorkflowState.objects.create(
                workflow=workflow,
                name=item.name,
                slug=item.slug,
                position=item.position,
                is_initial=item.is_initial,
                is_terminal=item.is_terminal,
                sla_minutes=item.sla_minutes,
                entry_hook=item.entry_hook,
                description=item.description,
            )
        )

    moved = _carry_ticket_states(workflow, renamed)
    if moved:
        logger.info(
            "workflow.definition.tickets_relabelled",
            extra={"workflow_id": workflow.pk, "tickets": moved, "renamed": renamed},
        )

    slug_to_id = {s.slug: s.id for s in plan.kept}
    slug_to_id.update({obj.slug: obj.pk for obj in created})
    return slug_to_id


def _carry_ticket_states(workflow: TicketWorkflow, renamed: Dict[str, str]) -> int:
    """
    Tickets store the state slug; follow renames in one UPDATE so swapped
    slugs land correctly.
    """
    if not renamed:
        return 0
    return Ticket.objects.filter(workflow=workflow, workflow_state__in=list(renamed)).update(
        workflow_state=Case(
            *[When(workflow_state=old, then=Value(new)) for old, new in renamed.items()],
            default=F("workflow_state"),
            output_field=SlugField(),
        )
    )


def _apply_transition_plan(workflow: TicketWorkflow, plan: TransitionPlan):
    if plan.deletes:
        TicketWorkflowTransition.objects.filter(pk__in=[t.id for t in plan.deletes]).delete()

    current = TicketWorkflowTransition.objects.in_bulk([t.id for t in plan.updates])
    for item in plan.updates:
        obj = current[item.id]
        obj.from_state_id = item.from_state_id
        obj.to_state_id = item.to_state_id
        obj.guard_hook = item.guard_hook
        obj.requires_comment = item.requires_comment
        obj.metadata = item.metadata
        obj.save()

    for item in plan.creates:
        TicketWorkflowTransition.objects.create(
            workflow=workflow,
            from_state_id=item.from_state_id,
            to_state_id=item.to_state_id,
            guard_hook=item.guard_hook,
            requires_comment=item.requires_comment,
            metadata=item.metadata,
        )


# ---------------------------------------------------------------------
# RECONCILE
# ---------------------------------------------------------------------

def reconcile_workflow(
    *,
    workflow: TicketWorkflow,
    states: Sequence,
    transitions: Optional[Sequence] = None,
    context: ExecutionContext,
    fields: Optional[Dict[str, Any]] = None,
    actor=None,
) -> ReconcileOutcome:
    """
    Converge a definition to the desired states / transitions.

    transitions=None leaves persisted transitions alone; deleting a state
    they still reference is then a ReconciliationError.
    """
    context.ensure_owns(workflow, label="Workflow")
    fields = {k: v for k, v in (fields or {}).items() if k in WORKFLOW_FIELDS}

    try:
        with transaction.atomic():
            locked = TicketWorkflow.objects.select_for_update().get(pk=workflow.pk)

            workflow_changed = False
            for name, value in fields.items():
                if getattr(locked, name) != value:
                    setattr(locked, name, value)
                    workflow_changed = True

            demoted = demote_other_defaults(locked) if locked.is_default else 0
            if workflow_changed:
                locked.save()

            current = {s.pk: s for s in locked.states.all()}
            state_plan = plan_states([s.as_spec() for s in current.values()], states)

            existing_transitions = [t.as_persisted() for t in locked.transitions.all()]
            if transitions is None:
                # validates before anything is written
                transition_plan = plan_transitions(
                    existing_transitions,
                    None,
                    {},
                    deleted_state_ids=state_plan.deleted_ids,
                )

            slug_to_id = _apply_state_plan(locked, state_plan, current)

            if transitions is not None:
                transition_plan = plan_transitions(
                    existing_transitions,
                    transitions,
                    slug_to_id,
                    deleted_state_ids=state_plan.deleted_ids,
                )
                _apply_transition_plan(locked, transition_plan)

            if state_plan.deletes:
                TicketWorkflowState.objects.filter(
                    pk__in=[s.id for s in state_plan.deletes]
                ).delete()

            outcome = ReconcileOutcome(
                workflow=locked,
                states=state_plan,
                transitions=transition_plan,
                workflow_changed=workflow_changed,
                demoted=demoted,
            )

            if outcome.changed:
                audit.record(
                    "workflow.definition.reconciled",
                    tenant=locked.tenant_id,
                    user=actor,
                    context=context,
                    details={"workflow_id": locked.pk, **outcome.summary()},
                )
    except IntegrityError as exc:
        raise ReconciliationError(f"Workflow definition violates an integrity rule: {exc}") from exc

    logger.info(
        "workflow.definition.reconciled",
        extra=context.log_extra(
            workflow_id=outcome.workflow.pk,
            changed=outcome.changed,
            skipped=len(outcome.transitions.skipped),
        ),
    )
    return outcome


def create_workflow(
    *,
    context: ExecutionContext,
    slug: str,
    name: str,
    states: Sequence,
    transitions: Sequence = (),
    description: str = "",
    is_default: bool = False,
    brand_id: Optional[int] = None,
    actor=None,
) -> ReconcileOutcome:
    if brand_id is None:
        brand_id = context.brand_id
    elif context.brand_id is not None and brand_id != context.brand_id:
        raise ReconciliationError("Brand is outside the current scope.", field_name="brand")

    try:
        with transaction.atomic():
            workflow = TicketWorkflow(
                tenant_id=context.tenant_id,
                brand_id=brand_id,
                slug=slug,
                name=name,
                description=description,
                is_default=False,
            )
            workflow.save()
            outcome = reconcile_workflow(
                workflow=workflow,
                states=states,
                transitions=list(transitions),
                context=context,
                fields={"is_default": bool(is_default)},
                actor=actor,
            )
    except IntegrityError as exc:
        raise ReconciliationError(
            f"A workflow with slug '{slug}' already exists in this scope.", field_name="slug"
        ) from exc

    return outcome


def delete_workflow(*, workflow: TicketWorkflow, context: ExecutionContext, actor=None) -> None:
    context.ensure_owns(workflow, label="Workflow")

    with transaction.atomic():
        locked = TicketWorkflow.objects.select_for_update().get(pk=workflow.pk)
        if locked.tickets.exists():
            raise ReconciliationError(
                "Workflow is still referenced by tickets.", field_name="workflow"
            )
        pk = locked.pk
        locked.delete()
        audit.record(
            "workflow.definition.deleted",
            tenant=context.tenant_id,
            user=actor,
            context=context,
            details={"workflow_id": pk, "slug": workflow.slug},
        )
