# desk_core/tests/test_workflow_api.py
from __future__ import annotations

import pytest
from django.contrib.auth import get_user_model

from desk_core.models import TenantRole, Ticket, TicketWorkflow, WorkflowEvent


def _definition(**overrides):
    payload = {
        "slug": "support",
        "name": "Support",
        "is_default": True,
        "states": [
            {"slug": "new", "name": "New", "is_initial": True},
            {"slug": "open", "name": "Open"},
            {"slug": "solved", "name": "Solved", "is_terminal": True},
        ],
        "transitions": [
            {"from": "new", "to": "open"},
            {"from": "open", "to": "solved", "requires_comment": True},
        ],
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------
# Definitions
# ---------------------------------------------------------
@pytest.mark.django_db
def test_admin_creates_definition(api_client, admin_user, tenant):
    client = api_client.as_user(admin_user, tenant=tenant)

    resp = client.post("/desk/workflows/", _definition(), format="json")

    assert resp.status_code == 201, resp.data
    assert [s["slug"] for s in resp.data["states"]] == ["new", "open", "solved"]
    assert resp.data["reconciliation"]["states"]["created"] == 3
    assert TicketWorkflow.objects.get(pk=resp.data["id"]).tenant_id == tenant.pk


@pytest.mark.django_db
@pytest.mark.parametrize("user_fixture", ["agent_user", "viewer_user"])
def test_non_admins_cannot_author_definitions(request, api_client, tenant, user_fixture):
    user = request.getfixturevalue(user_fixture)
    client = api_client.as_user(user, tenant=tenant)

    resp = client.post("/desk/workflows/", _definition(), format="json")
    assert resp.status_code == 403
    assert not TicketWorkflow.objects.exists()


@pytest.mark.django_db
def test_viewer_can_read_definitions(api_client, viewer_user, tenant, support_workflow):
    client = api_client.as_user(viewer_user, tenant=tenant)
    resp = client.get("/desk/workflows/")
    assert resp.status_code == 200
    assert [w["slug"] for w in resp.data["results"]] == ["support"]


@pytest.mark.django_db
def test_definition_needs_exactly_one_initial_state(api_client, admin_user, tenant):
    client = api_client.as_user(admin_user, tenant=tenant)
    states = [
        {"slug": "new", "name": "New", "is_initial": True},
        {"slug": "open", "name": "Open", "is_initial": True},
    ]

    resp = client.post("/desk/workflows/", _definition(states=states, transitions=[]), format="json")

    assert resp.status_code == 400
    assert "states" in resp.data


@pytest.mark.django_db
def test_transition_to_unknown_state_is_rejected(api_client, admin_user, tenant):
    client = api_client.as_user(admin_user, tenant=tenant)
    payload = _definition(transitions=[{"from": "open", "to": "archived"}])

    resp = client.post("/desk/workflows/", payload, format="json")

    assert resp.status_code == 400
    assert "transitions" in resp.data


@pytest.mark.django_db
def test_put_reconciles_and_keeps_ids(api_client, admin_user, tenant, support_workflow):
    client = api_client.as_user(admin_user, tenant=tenant)
    ids = dict(support_workflow.states.values_list("slug", "id"))

    payload = _definition(
        states=[
            {"id": ids["new"], "slug": "new", "name": "New", "is_initial": True},
            {"id": ids["open"], "slug": "working", "name": "Working"},
            {"id": ids["solved"], "slug": "solved", "name": "Solved", "is_terminal": True},
        ],
        transitions=[{"from": "new", "to": "working"}],
    )
    resp = client.put(f"/desk/workflows/{support_workflow.pk}/", payload, format="json")

    assert resp.status_code == 200, resp.data
    by_slug = {s["slug"]: s["id"] for s in resp.data["states"]}
    assert by_slug["working"] == ids["open"]
    assert resp.data["reconciliation"]["transitions"]["deleted"] == 2


@pytest.mark.django_db
def test_foreign_state_ids_are_rejected(
    api_client, admin_user, tenant, ctx, workflow_factory, support_workflow
):
    other = workflow_factory(ctx, slug="other")
    foreign_id = other.states.first().pk
    client = api_client.as_user(admin_user, tenant=tenant)

    payload = _definition(
        states=[{"id": foreign_id, "slug": "new", "name": "New", "is_initial": True}],
        transitions=[],
    )
    resp = client.put(f"/desk/workflows/{support_workflow.pk}/", payload, format="json")

    assert resp.status_code == 400
    assert "states" in resp.data


@pytest.mark.django_db
def test_patch_without_states_updates_fields_only(api_client, admin_user, tenant, support_workflow):
    client = api_client.as_user(admin_user, tenant=tenant)
    before = set(support_workflow.states.values_list("id", flat=True))

    resp = client.patch(f"/desk/workflows/{support_workflow.pk}/", {"name": "Front line"}, format="json")

    assert resp.status_code == 200, resp.data
    assert resp.data["name"] == "Front line"
    assert {s["id"] for s in resp.data["states"]} == before


@pytest.mark.django_db
def test_scope_cannot_be_changed(api_client, admin_user, tenant, brand, support_workflow):
    client = api_client.as_user(admin_user, tenant=tenant)
    resp = client.patch(f"/desk/workflows/{support_workflow.pk}/", {"brand": brand.pk}, format="json")
    assert resp.status_code == 400
    assert "brand" in resp.data


@pytest.mark.django_db
def test_delete_in_use_definition_is_a_400(
    api_client, admin_user, agent_user, tenant, support_workflow
):
    api_client.as_user(agent_user, tenant=tenant).post(
        "/desk/tickets/", {"subject": "Blocking"}, format="json"
    )

    client = api_client.as_user(admin_user, tenant=tenant)
    resp = client.delete(f"/desk/workflows/{support_workflow.pk}/")

    assert resp.status_code == 400
    assert "workflow" in resp.data


# ---------------------------------------------------------
# Tickets
# ---------------------------------------------------------
@pytest.mark.django_db
def test_ticket_lifecycle_over_http(api_client, agent_user, tenant, support_workflow):
    client = api_client.as_user(agent_user, tenant=tenant)

    resp = client.post("/desk/tickets/", {"subject": "Laptop broken", "priority": "high"}, format="json")
    assert resp.status_code == 201, resp.data
    ticket_id = resp.data["id"]
    assert resp.data["workflow_state"] == "new"

    resp = client.get(f"/desk/tickets/{ticket_id}/allowed/")
    assert [a["to"] for a in resp.data["allowed"]] == ["open"]

    resp = client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "open"}, format="json")
    assert resp.status_code == 200, resp.data
    assert resp.data["workflow_state"] == "open"
    assert resp.data["transition"] == {"from": "new", "to": "open", "warnings": []}

    resp = client.get(f"/desk/tickets/{ticket_id}/events/")
    assert [(e["from_state"], e["to_state"]) for e in resp.data] == [("new", "open")]
    assert resp.data[0]["performed_by"] == agent_user.username


@pytest.mark.django_db
def test_rejections_are_409_with_codes(api_client, agent_user, tenant, support_workflow):
    client = api_client.as_user(agent_user, tenant=tenant)
    ticket_id = client.post("/desk/tickets/", {"subject": "Conflict"}, format="json").data["id"]

    resp = client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "solved"}, format="json")
    assert resp.status_code == 409
    assert resp.data["code"] == "no_such_transition"

    client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "open"}, format="json")
    resp = client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "solved"}, format="json")
    assert resp.status_code == 409
    assert resp.data["code"] == "comment_required"

    assert Ticket.objects.get(pk=ticket_id).workflow_state == "open"
    assert WorkflowEvent.objects.filter(ticket_id=ticket_id).count() == 1


@pytest.mark.django_db
def test_guard_rejection_is_409(
    api_client, agent_user, tenant, ctx, workflow_factory, hook_registry
):
    hook_registry.register("never", lambda *a: False)
    workflow_factory(
        ctx,
        transitions=[{"from": "new", "to": "open", "guard_hook": "never"}],
        is_default=True,
    )
    client = api_client.as_user(agent_user, tenant=tenant)
    ticket_id = client.post("/desk/tickets/", {"subject": "Guarded"}, format="json").data["id"]

    resp = client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "open"}, format="json")

    assert resp.status_code == 409
    assert resp.data["code"] == "guard_rejected"


@pytest.mark.django_db
def test_viewer_cannot_transition(api_client, agent_user, viewer_user, tenant, support_workflow):
    ticket_id = (
        api_client.as_user(agent_user, tenant=tenant)
        .post("/desk/tickets/", {"subject": "Read only"}, format="json")
        .data["id"]
    )

    client = api_client.as_user(viewer_user, tenant=tenant)
    resp = client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "open"}, format="json")

    assert resp.status_code == 403
    assert Ticket.objects.get(pk=ticket_id).workflow_state == "new"


@pytest.mark.django_db
def test_user_without_role_in_tenant_is_forbidden(api_client, tenant, other_tenant, support_workflow):
    outsider = get_user_model().objects.create_user(username="outsider", password="pass123")
    TenantRole.objects.create(user=outsider, tenant=other_tenant, role=TenantRole.ROLE_ADMIN)

    client = api_client.as_user(outsider, tenant=tenant)
    assert client.get("/desk/tickets/").status_code == 403


@pytest.mark.django_db
def test_other_tenant_tickets_are_not_found(
    api_client, agent_user, tenant, other_tenant, support_workflow
):
    ticket_id = (
        api_client.as_user(agent_user, tenant=tenant)
        .post("/desk/tickets/", {"subject": "Private"}, format="json")
        .data["id"]
    )

    outsider = get_user_model().objects.create_user(username="outsider", password="pass123")
    TenantRole.objects.create(user=outsider, tenant=other_tenant, role=TenantRole.ROLE_ADMIN)
    client = api_client.as_user(outsider, tenant=other_tenant)

    assert client.get(f"/desk/tickets/{ticket_id}/").status_code == 404
    resp = client.post(f"/desk/tickets/{ticket_id}/transition/", {"to_state": "open"}, format="json")
    assert resp.status_code == 404


@pytest.mark.django_db
def test_brand_header_scopes_ticket_list(api_client, admin_user, tenant, brand, support_workflow):
    client = api_client.as_user(admin_user, tenant=tenant)
    client.post("/desk/tickets/", {"subject": "Tenant wide"}, format="json")

    branded = api_client.as_user(admin_user, tenant=tenant, brand=brand)
    resp = branded.post("/desk/tickets/", {"subject": "Branded"}, format="json")
    assert resp.status_code == 201
    assert resp.data["brand"] == brand.pk

    resp = branded.get("/desk/tickets/")
    assert [t["subject"] for t in resp.data["results"]] == ["Branded"]

    resp = api_client.as_user(admin_user, tenant=tenant).get("/desk/tickets/")
    assert {t["subject"] for t in resp.data["results"]} == {"Tenant wide", "Branded"}


@pytest.mark.django_db
def test_query_params_resolve_scope(api_client, admin_user, tenant, support_workflow):
    api_client.force_authenticate(user=admin_user)
    resp = api_client.get(f"/desk/tickets/?tenant={tenant.pk}")
    assert resp.status_code == 200


# ---------------------------------------------------------
# System
# ---------------------------------------------------------
@pytest.mark.django_db
def test_health_is_public(api_client):
    resp = api_client.get("/desk/health/")
    assert resp.status_code == 200
    assert resp.data["status"] == "ok"


@pytest.mark.django_db
def test_whoami_reports_roles_and_scope(api_client, admin_user, tenant):
    client = api_client.as_user(admin_user, tenant=tenant)
    resp = client.get("/desk/whoami/")

    assert resp.status_code == 200
    assert resp.data["username"] == admin_user.username
    assert resp.data["roles"][0]["role"] == TenantRole.ROLE_ADMIN
    assert resp.data["scope"]["tenant_id"] == tenant.pk
