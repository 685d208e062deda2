# desk_core/signals.py
from __future__ import annotations

from django.db.models.signals import post_save
from django.dispatch import receiver

from desk_core.models import AuditLog, SlaBreachAlert, WorkflowEvent


# ===============================================================
# WORKFLOW TRANSITIONS
# ===============================================================
@receiver(post_save, sender=WorkflowEvent)
def audit_workflow_event(sender, instance: WorkflowEvent, created: bool, **kwargs):
    """
    One AuditLog row per applied transition. Runs inside the coordinator's
    transaction, so a rolled-back transition leaves no audit row.
    """
    if not created:
        return

    AuditLog.objects.create(
        tenant_id=instance.tenant_id,
        user=instance.performed_by,
        action="ticket.workflow.transition",
        details={
            "ticket_id": instance.ticket_id,
            "workflow_id": instance.workflow_id,
            "from": instance.from_state,
            "to": instance.to_state,
            "has_comment": bool(instance.comment),
            "warnings": list(instance.warnings or []),
            "correlation_id": instance.correlation_id,
        },
    )


# ===============================================================
# SLA BREACHES
# ===============================================================
@receiver(post_save, sender=SlaBreachAlert)
def audit_sla_breach(sender, instance: SlaBreachAlert, created: bool, **kwargs):
    if not created:
        return

    AuditLog.objects.create(
        tenant_id=instance.tenant_id,
        action="sla.breach.detected",
        details={
            "ticket_id": instance.ticket_id,
            "kind": instance.kind,
            "due_at": instance.due_at.isoformat() if instance.due_at else None,
            "overdue_seconds": instance.overdue_seconds,
        },
    )
