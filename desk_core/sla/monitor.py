# desk_core/sla/monitor.py
from __future__ import annotations

import logging
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from desk_core.models import SlaBreachAlert, Ticket

logger = logging.getLogger(__name__)

"""
SLA breach scanner.

Reads the due timestamps the lifecycle coordinator stored on tickets and
opens one SlaBreachAlert per (ticket, deadline kind) once a deadline has
passed. Alerts are resolved by the coordinator whenever deadlines are
recomputed or cleared, so a re-targeted ticket can breach again later.
"""

DEADLINE_FIELDS = {
    SlaBreachAlert.KIND_FIRST_RESPONSE: "first_response_due_at",
    SlaBreachAlert.KIND_RESOLUTION: "resolution_due_at",
}


def check_sla_breaches(*, now=None, tenant_id: Optional[int] = None) -> int:
    """
    Returns:
        int: number of newly created alerts
    """
    now = now or timezone.now()
    created_count = 0

    for kind, field_name in DEADLINE_FIELDS.items():
        open_alerts = SlaBreachAlert.objects.filter(kind=kind, resolved_at__isnull=True)
        qs = Ticket.objects.filter(**{f"{field_name}__lte": now}).exclude(
            pk__in=open_alerts.values("ticket_id")
        )
        if tenant_id is not None:
            qs = qs.filter(tenant_id=tenant_id)

        for ticket in qs.only("id", "tenant_id", "brand_id", field_name).iterator():
            due_at = getattr(ticket, field_name)
            try:
                with transaction.atomic():
                    SlaBreachAlert.objects.create(
                        tenant_id=ticket.tenant_id,
                        ticket=ticket,
                        kind=kind,
                        due_at=due_at,
                        overdue_seconds=max(0, int((now - due_at).total_seconds())),
                    )
            except IntegrityError:
                # another scanner opened it first
                continue

            created_count += 1
            logger.warning(
                "sla.breach.detected",
                extra={
                    "ticket_id": ticket.pk,
                    "tenant_id": ticket.tenant_id,
                    "brand_id": ticket.brand_id,
                    "kind": kind,
                    "due_at": due_at.isoformat(),
                },
            )

    return created_count
