# desk_core/audit.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from desk_core.models import AuditLog

logger = logging.getLogger("desk_core.audit")


def _real_user(user):
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return user


def record(
    action: str,
    *,
    tenant=None,
    user=None,
    details: Optional[Dict[str, Any]] = None,
    context=None,
) -> AuditLog:
    """
    Write one AuditLog row and mirror it to the audit logger.
    """
    details = dict(details or {})
    if context is not None:
        details.setdefault("correlation_id", context.correlation_id)
        details.setdefault("brand_id", context.brand_id)

    entry = AuditLog.objects.create(
        tenant_id=getattr(tenant, "pk", tenant),
        user=_real_user(user),
        action=action,
        details=details,
    )

    logger.info(
        action,
        extra={
            "tenant_id": entry.tenant_id,
            "user_id": entry.user_id,
            "audit_id": entry.pk,
        },
    )
    return entry
