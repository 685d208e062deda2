# desk_core/context.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.db.models import Q


class TenantScopeError(Exception):
    """
    A record was addressed outside the caller's tenant/brand scope.
    """


@dataclass(frozen=True)
class ExecutionContext:
    """
    Explicit tenant/brand scope passed into every engine call.

    brand_id=None means the tenant-wide scope.
    """

    tenant_id: int
    brand_id: Optional[int] = None
    actor: Any = None
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def ensure_owns(self, obj, *, label: str = "object") -> None:
        """
        Raise TenantScopeError unless obj belongs to this tenant and, when
        a brand is set, to this brand or the tenant-wide scope.
        """
        if obj is None or getattr(obj, "tenant_id", None) != self.tenant_id:
            raise TenantScopeError(f"{label} is outside tenant {self.tenant_id}.")

        obj_brand = getattr(obj, "brand_id", None)
        if self.brand_id is not None and obj_brand not in (None, self.brand_id):
            raise TenantScopeError(f"{label} is outside brand {self.brand_id}.")

    def scope_filter(self, queryset, *, include_tenant_wide: bool = True):
        qs = queryset.filter(tenant_id=self.tenant_id)
        if self.brand_id is None:
            return qs
        if include_tenant_wide:
            return qs.filter(Q(brand_id=self.brand_id) | Q(brand__isnull=True))
        return qs.filter(brand_id=self.brand_id)

    def log_extra(self, **extra) -> Dict[str, Any]:
        data = {
            "tenant_id": self.tenant_id,
            "brand_id": self.brand_id,
            "correlation_id": self.correlation_id,
        }
        data.update(extra)
        return data

    @classmethod
    def for_ticket(cls, ticket, *, actor=None, correlation_id: str | None = None) -> "ExecutionContext":
        kwargs = {"tenant_id": ticket.tenant_id, "brand_id": ticket.brand_id, "actor": actor}
        if correlation_id:
            kwargs["correlation_id"] = correlation_id
        return cls(**kwargs)
