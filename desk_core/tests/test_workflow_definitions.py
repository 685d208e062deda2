# desk_core/tests/test_workflow_definitions.py
from __future__ import annotations

import pytest

from desk_core.context import ExecutionContext, TenantScopeError
from desk_core.models import (
    AuditLog,
    Ticket,
    TicketWorkflow,
    TicketWorkflowState,
    TicketWorkflowTransition,
)
from desk_core.services.lifecycle import (
    allowed_transitions_for,
    create_ticket,
    on_transition_requested,
)
from desk_core.services.workflow_definitions import (
    create_workflow,
    delete_workflow,
    reconcile_workflow,
)
from desk_core.workflows import ReconciliationError


def _state_ids(workflow):
    return dict(workflow.states.values_list("slug", "id"))


def _pairs(workflow):
    return sorted(
        (t.from_state.slug, t.to_state.slug)
        for t in workflow.transitions.select_related("from_state", "to_state")
    )


@pytest.mark.django_db
def test_create_persists_states_and_transitions(ctx, support_states, support_transitions):
    outcome = create_workflow(
        context=ctx,
        slug="support",
        name="Support",
        states=support_states,
        transitions=support_transitions,
    )
    workflow = outcome.workflow

    assert workflow.tenant_id == ctx.tenant_id
    assert workflow.brand_id is None
    assert list(workflow.states.values_list("slug", flat=True)) == ["new", "open", "solved"]
    assert _pairs(workflow) == [("new", "open"), ("open", "new"), ("open", "solved")]
    assert outcome.summary()["states"]["created"] == 3
    assert AuditLog.objects.filter(action="workflow.definition.reconciled").count() == 1


@pytest.mark.django_db
def test_resubmitting_same_definition_changes_nothing(
    ctx, workflow_factory, support_states, support_transitions
):
    workflow = workflow_factory(ctx)
    before = {
        s.pk: s.updated_at for s in workflow.states.all()
    }
    transitions_before = {
        t.pk: t.updated_at for t in workflow.transitions.all()
    }
    audit_count = AuditLog.objects.count()

    outcome = reconcile_workflow(
        workflow=workflow,
        states=support_states,
        transitions=support_transitions,
        context=ctx,
    )

    assert outcome.changed is False
    assert {s.pk: s.updated_at for s in workflow.states.all()} == before
    assert {t.pk: t.updated_at for t in workflow.transitions.all()} == transitions_before
    assert AuditLog.objects.count() == audit_count


@pytest.mark.django_db
def test_three_states_two_transitions_edit_keeps_ids(ctx, workflow_factory, support_states):
    """
    Renaming one state and dropping a transition keeps every surviving id;
    untouched rows are not rewritten.
    """
    workflow = workflow_factory(
        ctx,
        transitions=[{"from": "new", "to": "open"}, {"from": "open", "to": "solved"}],
    )
    ids = _state_ids(workflow)
    new_state = TicketWorkflowState.objects.get(pk=ids["new"])
    keep_transition = workflow.transitions.get(from_state_id=ids["new"])

    states = support_states
    states[1]["name"] = "In progress"

    outcome = reconcile_workflow(
        workflow=workflow,
        states=states,
        transitions=[{"from": "new", "to": "open"}],
        context=ctx,
    )

    assert _state_ids(workflow) == ids
    assert TicketWorkflowState.objects.get(pk=ids["open"]).name == "In progress"
    assert TicketWorkflowState.objects.get(pk=ids["new"]).updated_at == new_state.updated_at
    assert list(workflow.transitions.values_list("id", flat=True)) == [keep_transition.pk]
    assert outcome.summary()["states"] == {"created": 0, "updated": 1, "unchanged": 2, "deleted": 0}
    assert outcome.summary()["transitions"]["deleted"] == 1


@pytest.mark.django_db
def test_removed_state_takes_its_transitions_with_it(
    ctx, workflow_factory, support_states, support_transitions
):
    workflow = workflow_factory(ctx)
    ids = _state_ids(workflow)

    reconcile_workflow(
        workflow=workflow,
        states=support_states[:2],
        transitions=support_transitions,
        context=ctx,
    )

    assert not TicketWorkflowState.objects.filter(pk=ids["solved"]).exists()
    assert _pairs(workflow) == [("new", "open"), ("open", "new")]


@pytest.mark.django_db
def test_dangling_reference_without_transitions_is_rejected(ctx, workflow_factory, support_states):
    workflow = workflow_factory(ctx)
    ids = _state_ids(workflow)

    with pytest.raises(ReconciliationError):
        reconcile_workflow(
            workflow=workflow,
            states=support_states[:2],
            transitions=None,
            context=ctx,
        )

    # nothing applied
    assert TicketWorkflowState.objects.filter(pk=ids["solved"]).exists()
    assert TicketWorkflowTransition.objects.filter(workflow=workflow).count() == 3


@pytest.mark.django_db
def test_rename_by_id_keeps_transitions_attached(ctx, workflow_factory, support_states):
    workflow = workflow_factory(ctx)
    ids = _state_ids(workflow)

    states = support_states
    states[1] = {"id": ids["open"], "slug": "working", "name": "Working"}
    transitions = [
        {"from": "new", "to": "working"},
        {"from": "working", "to": "solved", "requires_comment": True},
        {"from": "working", "to": "new"},
    ]
    outcome = reconcile_workflow(workflow=workflow, states=states, transitions=transitions, context=ctx)

    assert _state_ids(workflow)["working"] == ids["open"]
    assert outcome.summary()["transitions"]["created"] == 0
    assert outcome.summary()["transitions"]["deleted"] == 0
    assert _pairs(workflow) == [("new", "working"), ("working", "new"), ("working", "solved")]


@pytest.mark.django_db
def test_swapping_slugs_does_not_collide(ctx, workflow_factory):
    workflow = workflow_factory(ctx, transitions=[])
    ids = _state_ids(workflow)

    reconcile_workflow(
        workflow=workflow,
        states=[
            {"id": ids["new"], "slug": "open", "name": "Open", "is_initial": True},
            {"id": ids["open"], "slug": "new", "name": "New"},
            {"id": ids["solved"], "slug": "solved", "name": "Solved", "is_terminal": True},
        ],
        transitions=[],
        context=ctx,
    )

    after = _state_ids(workflow)
    assert after["open"] == ids["new"]
    assert after["new"] == ids["open"]


@pytest.mark.django_db
def test_rename_carries_tickets_in_that_state(ctx, workflow_factory, support_states):
    workflow = workflow_factory(ctx, is_default=True)
    ids = _state_ids(workflow)
    ticket = create_ticket(context=ctx, subject="Mid-flight", workflow_id=workflow.pk)
    on_transition_requested(ticket, "open", context=ctx)

    states = support_states
    states[1] = {"id": ids["open"], "slug": "in-progress", "name": "In progress"}
    reconcile_workflow(workflow=workflow, states=states, transitions=None, context=ctx)

    ticket.refresh_from_db()
    assert ticket.workflow_state == "in-progress"
    assert [t["to"] for t in allowed_transitions_for(ticket, context=ctx)] == ["new", "solved"]

    on_transition_requested(ticket, "new", context=ctx)
    ticket.refresh_from_db()
    assert ticket.workflow_state == "new"


@pytest.mark.django_db
def test_swapped_slugs_swap_ticket_states(ctx, workflow_factory):
    workflow = workflow_factory(ctx, is_default=True, transitions=[{"from": "new", "to": "open"}])
    ids = _state_ids(workflow)
    waiting = create_ticket(context=ctx, subject="Waiting", workflow_id=workflow.pk)
    working = create_ticket(context=ctx, subject="Working", workflow_id=workflow.pk)
    on_transition_requested(working, "open", context=ctx)

    reconcile_workflow(
        workflow=workflow,
        states=[
            {"id": ids["new"], "slug": "open", "name": "Open", "is_initial": True},
            {"id": ids["open"], "slug": "new", "name": "New"},
            {"id": ids["solved"], "slug": "solved", "name": "Solved", "is_terminal": True},
        ],
        transitions=None,
        context=ctx,
    )

    assert Ticket.objects.get(pk=waiting.pk).workflow_state == "open"
    assert Ticket.objects.get(pk=working.pk).workflow_state == "new"


@pytest.mark.django_db
def test_swapping_transition_pairs_by_id_keeps_ids(ctx, workflow_factory):
    workflow = workflow_factory(
        ctx,
        transitions=[
            {"from": "new", "to": "open", "guard_hook": "to_open"},
            {"from": "new", "to": "solved", "guard_hook": "to_solved"},
        ],
    )
    ids = dict(workflow.transitions.values_list("guard_hook", "id"))

    outcome = reconcile_workflow(
        workflow=workflow,
        states=[s.as_spec() for s in workflow.states.all()],
        transitions=[
            {"id": ids["to_open"], "from": "new", "to": "solved", "guard_hook": "to_open"},
            {"id": ids["to_solved"], "from": "new", "to": "open", "guard_hook": "to_solved"},
        ],
        context=ctx,
    )

    assert outcome.summary()["transitions"]["updated"] == 2
    assert outcome.summary()["transitions"]["created"] == 0
    pairs = {
        t.pk: (t.from_state.slug, t.to_state.slug)
        for t in TicketWorkflowTransition.objects.filter(workflow=workflow)
    }
    assert pairs == {ids["to_open"]: ("new", "solved"), ids["to_solved"]: ("new", "open")}


@pytest.mark.django_db
def test_unknown_transition_slugs_are_reported_as_skipped(
    ctx, workflow_factory, support_states, support_transitions
):
    workflow = workflow_factory(ctx)
    outcome = reconcile_workflow(
        workflow=workflow,
        states=support_states,
        transitions=support_transitions + [{"from": "open", "to": "archived"}],
        context=ctx,
    )
    assert outcome.summary()["transitions"]["skipped"] == [{"from": "open", "to": "archived"}]
    assert len(_pairs(workflow)) == 3


@pytest.mark.django_db
def test_only_one_default_per_scope(ctx, brand_ctx, workflow_factory):
    first = workflow_factory(ctx, is_default=True)
    branded = workflow_factory(brand_ctx, is_default=True)
    second = workflow_factory(ctx, is_default=True)

    first.refresh_from_db()
    branded.refresh_from_db()
    second.refresh_from_db()

    assert second.is_default is True
    assert first.is_default is False
    # brand scope is independent of tenant-wide
    assert branded.is_default is True


@pytest.mark.django_db
def test_slug_clash_in_same_scope_is_rejected(ctx, workflow_factory):
    workflow_factory(ctx, slug="support")
    with pytest.raises(ReconciliationError) as exc:
        workflow_factory(ctx, slug="support")
    assert exc.value.field_name == "slug"


@pytest.mark.django_db
def test_other_tenant_cannot_reconcile(ctx, other_tenant, workflow_factory, support_states):
    workflow = workflow_factory(ctx)
    foreign = ExecutionContext(tenant_id=other_tenant.pk)
    with pytest.raises(TenantScopeError):
        reconcile_workflow(workflow=workflow, states=support_states, context=foreign)


@pytest.mark.django_db
def test_delete_blocked_while_tickets_reference_workflow(ctx, support_workflow):
    create_ticket(context=ctx, subject="Printer on fire")

    with pytest.raises(ReconciliationError):
        delete_workflow(workflow=support_workflow, context=ctx)
    assert TicketWorkflow.objects.filter(pk=support_workflow.pk).exists()


@pytest.mark.django_db
def test_delete_removes_children_and_audits(ctx, workflow_factory):
    workflow = workflow_factory(ctx)
    pk = workflow.pk

    delete_workflow(workflow=workflow, context=ctx)

    assert not TicketWorkflow.objects.filter(pk=pk).exists()
    assert not TicketWorkflowState.objects.filter(workflow_id=pk).exists()
    entry = AuditLog.objects.get(action="workflow.definition.deleted")
    assert entry.details["workflow_id"] == pk
