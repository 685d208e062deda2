# desk_core/permissions.py
from __future__ import annotations

from typing import Optional

from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import SAFE_METHODS, BasePermission

from .context import ExecutionContext
from .models import Brand, Tenant, TenantRole


# ------------------------------------------------------------------
# Role definitions
# ------------------------------------------------------------------
WRITE_ROLES = {TenantRole.ROLE_ADMIN, TenantRole.ROLE_AGENT}
ADMIN_ROLES = {TenantRole.ROLE_ADMIN}


# ------------------------------------------------------------------
# Utilities
# ------------------------------------------------------------------
def _parse_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _roles_for(user, tenant_id: int, brand_id: Optional[int]):
    qs = TenantRole.objects.filter(user=user, tenant_id=tenant_id)
    if brand_id is None:
        return qs.filter(brand__isnull=True)
    return qs.filter(brand__isnull=True) | qs.filter(brand_id=brand_id)


def resolve_execution_context(request) -> Optional[ExecutionContext]:
    """
    Canonical scope resolver for API requests.

    Priority:
      1) X-Tenant / X-Brand headers
      2) ?tenant= / ?brand= query params
      3) single-tenant auto resolution via TenantRole

    A brand must belong to the tenant; non-superusers need a role in the
    tenant (tenant-wide, or for that brand).
    """
    user = getattr(request, "user", None)
    if not user or not user.is_authenticated:
        return None

    headers = getattr(request, "headers", {})
    params = getattr(request, "query_params", {})

    tenant_id = _parse_int(headers.get("X-Tenant"))
    if tenant_id is None:
        tenant_id = _parse_int(params.get("tenant"))

    brand_id = _parse_int(headers.get("X-Brand"))
    if brand_id is None:
        brand_id = _parse_int(params.get("brand"))

    if tenant_id is None:
        tenant_ids = list(
            TenantRole.objects.filter(user=user, tenant__is_active=True)
            .values_list("tenant_id", flat=True)
            .distinct()[:2]
        )
        if len(tenant_ids) != 1:
            return None
        tenant_id = tenant_ids[0]

    if not Tenant.objects.filter(pk=tenant_id, is_active=True).exists():
        return None

    if brand_id is not None and not Brand.objects.filter(
        pk=brand_id, tenant_id=tenant_id, is_active=True
    ).exists():
        return None

    if not user.is_superuser and not _roles_for(user, tenant_id, brand_id).exists():
        return None

    correlation_id = headers.get("X-Correlation-ID")
    kwargs = {"tenant_id": tenant_id, "brand_id": brand_id, "actor": user}
    if correlation_id:
        kwargs["correlation_id"] = str(correlation_id)[:64]
    return ExecutionContext(**kwargs)


def user_has_any_role(user, context: ExecutionContext, allowed_roles: set[str]) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return _roles_for(user, context.tenant_id, context.brand_id).filter(role__in=allowed_roles).exists()


def get_execution_context(request) -> ExecutionContext:
    """
    Context cached on the request by HasTenantScope.
    """
    ctx = getattr(request, "desk_context", None)
    if ctx is None:
        ctx = resolve_execution_context(request)
        if ctx is None:
            raise PermissionDenied(HasTenantScope.message)
        request.desk_context = ctx
    return ctx


# ------------------------------------------------------------------
# Permission classes
# ------------------------------------------------------------------
class HasTenantScope(BasePermission):
    """
    Read: any member of the resolved tenant/brand
    Write: ROLES in `write_roles` (agents and admins by default)
    """

    message = (
        "No tenant scope. Provide X-Tenant (and optionally X-Brand) headers "
        "and ensure you have a role in that tenant."
    )
    write_roles = WRITE_ROLES

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        ctx = get_execution_context(request)

        if request.method in SAFE_METHODS:
            return True

        roles = getattr(view, "write_roles", None) or self.write_roles
        return user_has_any_role(user, ctx, roles)


class IsTenantAdminOrReadOnly(HasTenantScope):
    """
    Definition and policy authoring is admin-only.
    """

    write_roles = ADMIN_ROLES


class IsTenantMember(HasTenantScope):
    """
    Any member of the resolved scope, whatever the method. For POST
    actions that compute and return without persisting anything.
    """

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        get_execution_context(request)
        return True
