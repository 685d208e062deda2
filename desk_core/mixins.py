# desk_core/mixins.py
from __future__ import annotations

import logging

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.response import Response

from .context import TenantScopeError
from .permissions import get_execution_context
from .sla.business_hours import SlaConfigurationError
from .workflows.reconcile import ReconciliationError
from .workflows.runtime import TransitionError

logger = logging.getLogger(__name__)


# ===============================================================
# Utilities
# ===============================================================

def _deny_if_payload_has(request, fields: list[str], message: str):
    """
    Reject requests that attempt to mutate server-controlled fields.
    """
    incoming = getattr(request, "data", {}) or {}
    present = [f for f in fields if f in incoming]
    if present:
        raise ValidationError({f: message for f in present})


# ===============================================================
# Tenant-scoped queryset mixin (READ)
# ===============================================================

class TenantScopedQuerysetMixin:
    """
    Limits querysets to the request's ExecutionContext.

    include_tenant_wide=True also returns brand-less rows when a brand is
    selected (workflows, policies). Tickets are brand-exact.
    """

    include_tenant_wide = True

    def get_context(self):
        return get_execution_context(self.request)

    def get_scoped_queryset(self, base_qs):
        return self.get_context().scope_filter(
            base_qs, include_tenant_wide=self.include_tenant_wide
        )


# ===============================================================
# Engine errors -> HTTP
# ===============================================================

class EngineErrorMixin:
    """
    Maps engine exceptions onto DRF responses:
      TransitionError          -> 409 {"code", "detail"}
      ReconciliationError      -> 400 {field: [message]}
      SlaConfigurationError    -> 422 {"detail"}
      TenantScopeError         -> 404
      model write guard        -> 403
    """

    def handle_exception(self, exc):
        if isinstance(exc, TransitionError):
            return Response(exc.as_dict(), status=status.HTTP_409_CONFLICT)

        if isinstance(exc, ReconciliationError):
            payload = {exc.field_name: [str(exc)]}
            if exc.items:
                payload["items"] = [str(i) for i in exc.items]
            return Response(payload, status=status.HTTP_400_BAD_REQUEST)

        if isinstance(exc, SlaConfigurationError):
            logger.warning("sla.configuration.error", extra={"error": str(exc)})
            return Response({"detail": str(exc)}, status=status.HTTP_422_UNPROCESSABLE_ENTITY)

        if isinstance(exc, TenantScopeError):
            exc = Http404(str(exc))
        elif isinstance(exc, DjangoPermissionDenied):
            exc = PermissionDenied(str(exc))

        return super().handle_exception(exc)
