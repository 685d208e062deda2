from django.db import models
from django.db.models import Q


class SlaBreachAlert(models.Model):
    KIND_FIRST_RESPONSE = "first_response"
    KIND_RESOLUTION = "resolution"
    KIND_CHOICES = (
        (KIND_FIRST_RESPONSE, "First response"),
        (KIND_RESOLUTION, "Resolution"),
    )

    tenant = models.ForeignKey(
        "desk_core.Tenant",
        on_delete=models.CASCADE,
        related_name="sla_alerts",
    )
    ticket = models.ForeignKey(
        "desk_core.Ticket",
        on_delete=models.CASCADE,
        related_name="sla_alerts",
    )
    kind = models.CharField(max_length=32, choices=KIND_CHOICES)
    due_at = models.DateTimeField()
    overdue_seconds = models.PositiveIntegerField(default=0)

    triggered_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ("-triggered_at",)
        constraints = [
            models.UniqueConstraint(
                fields=["ticket", "kind"],
                condition=Q(resolved_at__isnull=True),
                name="sla_alert_one_open_per_kind",
            ),
        ]

    def __str__(self):
        return f"#{self.ticket_id} {self.kind} SLA BREACH"
