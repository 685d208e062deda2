# desk_core/views_sla.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from desk_core.filters import SlaPolicyFilter
from desk_core.mixins import EngineErrorMixin, TenantScopedQuerysetMixin, _deny_if_payload_has
from desk_core.models import SlaBreachAlert, SlaPolicy
from desk_core.permissions import HasTenantScope, IsTenantAdminOrReadOnly, IsTenantMember
from desk_core.serializers_sla import (
    DeadlinePreviewSerializer,
    SlaBreachAlertSerializer,
    SlaPolicyInputSerializer,
    SlaPolicySerializer,
)
from desk_core.services.lifecycle import sla_horizon_days
from desk_core.services.sla_policies import create_policy, delete_policy, update_policy
from desk_core.sla.deadlines import compute_deadlines


def _policy_queryset():
    return SlaPolicy.objects.prefetch_related("business_hours", "holidays", "targets")


# ===============================================================
# SLA policies
# ===============================================================

@extend_schema(tags=["SLA"])
class SlaPolicyViewSet(EngineErrorMixin, TenantScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    """
    /desk/sla-policies/

    Children (business_hours, holidays, targets) are replaced wholesale
    when present in a write; omitted lists are left alone.
    """

    serializer_class = SlaPolicySerializer
    permission_classes = [IsTenantAdminOrReadOnly]
    filterset_class = SlaPolicyFilter

    def get_queryset(self):
        return self.get_scoped_queryset(_policy_queryset().order_by("-created_at", "-id"))

    def _respond(self, policy, code=status.HTTP_200_OK):
        return Response(SlaPolicySerializer(_policy_queryset().get(pk=policy.pk)).data, status=code)

    def create(self, request, *args, **kwargs):
        serializer = SlaPolicyInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        policy = create_policy(
            context=self.get_context(),
            data=serializer.to_service_data(),
            actor=request.user,
        )
        return self._respond(policy, status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        policy = self.get_object()
        _deny_if_payload_has(request, ["tenant"], "Tenant cannot be changed once created.")

        serializer = SlaPolicyInputSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        policy = update_policy(
            policy=policy,
            context=self.get_context(),
            data=serializer.to_service_data(),
            actor=request.user,
        )
        return self._respond(policy)

    def partial_update(self, request, *args, **kwargs):
        kwargs["partial"] = True
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        policy = self.get_object()
        delete_policy(policy=policy, context=self.get_context(), actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(request=DeadlinePreviewSerializer)
    @action(detail=True, methods=["post"], url_path="preview", permission_classes=[IsTenantMember])
    def preview(self, request, pk=None):
        """
        Deadlines a ticket with this channel / priority would get if it
        started at `start`. Nothing is persisted.
        """
        policy = self.get_object()
        serializer = DeadlinePreviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attrs = serializer.validated_data

        deadlines = compute_deadlines(
            policy.snapshot(),
            attrs["channel"],
            attrs["priority"],
            attrs["start"],
            horizon_days=sla_horizon_days(),
        )
        return Response(deadlines.as_dict())


# ===============================================================
# Breach alerts (READ-ONLY)
# ===============================================================

@extend_schema(tags=["SLA"])
class SlaBreachAlertViewSet(EngineErrorMixin, TenantScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = SlaBreachAlertSerializer
    permission_classes = [HasTenantScope]

    def get_queryset(self):
        ctx = self.get_context()
        qs = SlaBreachAlert.objects.select_related("ticket").filter(tenant_id=ctx.tenant_id)
        if ctx.brand_id is not None:
            qs = qs.filter(ticket__brand_id=ctx.brand_id)
        if self.request.query_params.get("open") in ("1", "true", "yes"):
            qs = qs.filter(resolved_at__isnull=True)
        return qs.order_by("-triggered_at", "-id")
