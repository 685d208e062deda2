from django.conf import settings
from django.db import models


class WorkflowEvent(models.Model):
    """
    Immutable audit record for an applied ticket transition.
    """

    tenant = models.ForeignKey(
        "desk_core.Tenant",
        on_delete=models.CASCADE,
        related_name="workflow_events",
    )
    ticket = models.ForeignKey(
        "desk_core.Ticket",
        on_delete=models.CASCADE,
        related_name="workflow_events",
    )
    workflow = models.ForeignKey(
        "desk_core.TicketWorkflow",
        on_delete=models.SET_NULL,
        related_name="events",
        null=True,
        blank=True,
    )

    from_state = models.CharField(max_length=100)
    to_state = models.CharField(max_length=100)

    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="workflow_events",
        null=True,
        blank=True,
    )

    comment = models.TextField(blank=True)
    warnings = models.JSONField(default=list, blank=True)
    correlation_id = models.CharField(max_length=64, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["ticket", "created_at"], name="wf_event_ticket_created_idx"),
        ]

    def __str__(self):
        who = self.performed_by.get_username() if self.performed_by else "system"
        return f"#{self.ticket_id}: {self.from_state} → {self.to_state} by {who}"
