# desk_core/views_workflow_api.py

from __future__ import annotations

from django.shortcuts import get_object_or_404

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from desk_core.filters import TicketFilter, TicketWorkflowFilter
from desk_core.mixins import EngineErrorMixin, TenantScopedQuerysetMixin, _deny_if_payload_has
from desk_core.models import SlaPolicy, Ticket, TicketWorkflow
from desk_core.permissions import HasTenantScope, IsTenantAdminOrReadOnly
from desk_core.serializers_workflow import (
    TicketCreateSerializer,
    TicketSerializer,
    TicketTargetingSerializer,
    TicketTransitionSerializer,
    TicketWorkflowSerializer,
    WorkflowDefinitionInputSerializer,
    WorkflowEventSerializer,
)
from desk_core.services import lifecycle
from desk_core.services.workflow_definitions import (
    create_workflow,
    delete_workflow,
    reconcile_workflow,
)


def _definition_payload(outcome) -> dict:
    workflow = (
        TicketWorkflow.objects.prefetch_related(
            "states", "transitions__from_state", "transitions__to_state"
        ).get(pk=outcome.workflow.pk)
    )
    data = TicketWorkflowSerializer(workflow).data
    data["reconciliation"] = outcome.summary()
    return data


# =============================================================
# API: Workflow definitions
# =============================================================

@extend_schema(tags=["Workflows"])
class WorkflowDefinitionViewSet(
    EngineErrorMixin,
    TenantScopedQuerysetMixin,
    viewsets.ReadOnlyModelViewSet,
):
    """
    /desk/workflows/

    Writes submit the complete definition; the reconciler converges
    persisted states and transitions to it, keeping ids of matched rows.
    PATCH without `states` keeps the current states.
    """

    serializer_class = TicketWorkflowSerializer
    permission_classes = [IsTenantAdminOrReadOnly]
    filterset_class = TicketWorkflowFilter

    def get_queryset(self):
        qs = TicketWorkflow.objects.prefetch_related(
            "states", "transitions__from_state", "transitions__to_state"
        ).order_by("brand_id", "slug", "id")
        return self.get_scoped_queryset(qs)

    def create(self, request, *args, **kwargs):
        ctx = self.get_context()
        serializer = WorkflowDefinitionInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attrs = serializer.validated_data

        outcome = create_workflow(
            context=ctx,
            slug=attrs["slug"],
            name=attrs["name"],
            description=attrs.get("description", ""),
            is_default=attrs.get("is_default", False),
            brand_id=attrs.get("brand"),
            states=attrs["states"],
            transitions=WorkflowDefinitionInputSerializer.transition_rows(attrs) or [],
            actor=request.user,
        )
        return Response(_definition_payload(outcome), status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        ctx = self.get_context()
        workflow = self.get_object()

        _deny_if_payload_has(request, ["brand", "tenant"], "Scope cannot be changed once created.")

        serializer = WorkflowDefinitionInputSerializer(
            data=request.data,
            partial=partial,
            context={"workflow": workflow},
        )
        serializer.is_valid(raise_exception=True)
        attrs = serializer.validated_data

        outcome = reconcile_workflow(
            workflow=workflow,
            states=attrs["states"],
            transitions=WorkflowDefinitionInputSerializer.transition_rows(attrs),
            context=ctx,
            fields={k: attrs[k] for k in ("slug", "name", "description", "is_default") if k in attrs},
            actor=request.user,
        )
        return Response(_definition_payload(outcome))

    def partial_update(self, request, *args, **kwargs):
        kwargs["partial"] = True
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        workflow = self.get_object()
        delete_workflow(workflow=workflow, context=self.get_context(), actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================
# API: Tickets
# =============================================================

@extend_schema(tags=["Tickets"])
class TicketViewSet(
    EngineErrorMixin,
    TenantScopedQuerysetMixin,
    mixins.CreateModelMixin,
    viewsets.ReadOnlyModelViewSet,
):
    """
    Tickets are created and moved only through the lifecycle coordinator:

    POST  /desk/tickets/                      create (workflow + SLA)
    PATCH /desk/tickets/<pk>/targeting/       channel / priority / status / policy
    POST  /desk/tickets/<pk>/transition/      workflow transition
    GET   /desk/tickets/<pk>/allowed/         outgoing transitions
    GET   /desk/tickets/<pk>/events/          transition history
    """

    serializer_class = TicketSerializer
    permission_classes = [HasTenantScope]
    filterset_class = TicketFilter
    include_tenant_wide = False

    def get_queryset(self):
        qs = Ticket.objects.select_related("workflow", "sla_policy").order_by("-created_at", "-id")
        return self.get_scoped_queryset(qs)

    @extend_schema(request=TicketCreateSerializer, responses=TicketSerializer)
    def create(self, request, *args, **kwargs):
        serializer = TicketCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attrs = serializer.validated_data

        ticket = lifecycle.create_ticket(
            context=self.get_context(),
            subject=attrs["subject"],
            channel=attrs.get("channel", "agent"),
            priority=attrs.get("priority", "normal"),
            workflow_id=attrs.get("workflow"),
            workflow_state=attrs.get("workflow_state") or None,
            actor=request.user,
        )
        return Response(TicketSerializer(ticket).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=TicketTargetingSerializer, responses=TicketSerializer)
    @action(detail=True, methods=["patch"], url_path="targeting")
    def targeting(self, request, pk=None):
        ctx = self.get_context()
        ticket = self.get_object()

        serializer = TicketTargetingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attrs = dict(serializer.validated_data)

        kwargs = {k: attrs[k] for k in ("channel", "priority", "status") if k in attrs}
        if "sla_policy" in attrs:
            policy = None
            if attrs["sla_policy"] is not None:
                policy = get_object_or_404(
                    ctx.scope_filter(SlaPolicy.objects.all()), pk=attrs["sla_policy"]
                )
            kwargs["sla_policy"] = policy

        lifecycle.update_ticket_targeting(ticket, context=ctx, **kwargs)
        ticket.refresh_from_db()
        return Response(TicketSerializer(ticket).data)

    @extend_schema(request=TicketTransitionSerializer, responses=TicketSerializer)
    @action(detail=True, methods=["post"], url_path="transition")
    def transition(self, request, pk=None):
        """
        The only API entry point that moves workflow_state.
        Rejections come back as 409 with a machine-readable code.
        """
        ctx = self.get_context()
        ticket = self.get_object()

        serializer = TicketTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attrs = serializer.validated_data

        result = lifecycle.on_transition_requested(
            ticket,
            attrs["to_state"],
            context=ctx,
            comment=attrs.get("comment") or None,
            actor=request.user,
            extra=attrs.get("context") or None,
        )

        ticket.refresh_from_db()
        data = TicketSerializer(ticket).data
        data["transition"] = {
            "from": result.from_state,
            "to": result.to_state,
            "warnings": list(result.warnings),
        }
        return Response(data)

    @action(detail=True, methods=["get"], url_path="allowed")
    def allowed(self, request, pk=None):
        ticket = self.get_object()
        return Response(
            {
                "ticket_id": ticket.pk,
                "current": ticket.workflow_state,
                "allowed": lifecycle.allowed_transitions_for(ticket, context=self.get_context()),
            }
        )

    @action(detail=True, methods=["get"], url_path="events")
    def events(self, request, pk=None):
        ticket = self.get_object()
        qs = ticket.workflow_events.select_related("performed_by").order_by("created_at", "id")
        return Response(WorkflowEventSerializer(qs, many=True).data)
