# desk_core/views_identity.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import TenantRole
from .permissions import resolve_execution_context


class HealthCheckView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(tags=["System"])
    def get(self, request):
        return Response({"status": "ok", "service": "servicedesk"})


class WhoAmIView(APIView):
    """
    Returns the authenticated user, their tenant roles, and the scope the
    current headers resolve to (null when none resolves).
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["System"])
    def get(self, request):
        user = request.user

        roles_qs = (
            TenantRole.objects
            .filter(user=user)
            .select_related("tenant", "brand")
            .order_by("tenant__id", "brand__id", "role")
        )

        roles = [
            {
                "tenant_id": r.tenant_id,
                "tenant": r.tenant.slug,
                "brand_id": r.brand_id,
                "brand": r.brand.slug if r.brand else None,
                "role": r.role,
            }
            for r in roles_qs
        ]

        ctx = resolve_execution_context(request)
        scope = None
        if ctx is not None:
            scope = {
                "tenant_id": ctx.tenant_id,
                "brand_id": ctx.brand_id,
                "correlation_id": ctx.correlation_id,
            }

        return Response(
            {
                "id": user.id,
                "username": user.get_username(),
                "is_superuser": bool(getattr(user, "is_superuser", False)),
                "roles": roles,
                "scope": scope,
            }
        )
