# desk_core/models/core.py

from django.conf import settings
from django.db import models

from desk_core.workflows.guards import WorkflowWriteGuardMixin


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================
# Tenant / Brand
# ============================================================
class Tenant(TimeStampedModel):
    slug = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class Brand(TimeStampedModel):
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="brands",
    )
    slug = models.SlugField(max_length=64)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)

    class Meta:
        unique_together = ("tenant", "slug")

    def __str__(self):
        return f"{self.tenant.slug}:{self.slug}"


class TenantRole(TimeStampedModel):
    """
    Membership of a user in a tenant. Brand-less roles cover every brand.
    """

    ROLE_ADMIN = "admin"
    ROLE_AGENT = "agent"
    ROLE_VIEWER = "viewer"
    ROLE_CHOICES = (
        (ROLE_ADMIN, "Administrator"),
        (ROLE_AGENT, "Agent"),
        (ROLE_VIEWER, "Viewer"),
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="tenant_roles",
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="roles",
    )
    brand = models.ForeignKey(
        Brand,
        on_delete=models.CASCADE,
        related_name="roles",
        null=True,
        blank=True,
    )
    role = models.CharField(max_length=32, choices=ROLE_CHOICES, default=ROLE_AGENT)

    class Meta:
        unique_together = ("user", "tenant", "brand", "role")

    def __str__(self):
        return f"{self.user} @ {self.tenant.slug} ({self.role})"


# ============================================================
# Audit Log
# ============================================================
class AuditLog(TimeStampedModel):
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="audit_logs",
        null=True,
        blank=True,
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    action = models.CharField(max_length=255, db_index=True)
    details = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.action


# ============================================================
# Ticket
# ============================================================
class Ticket(WorkflowWriteGuardMixin, TimeStampedModel):
    """
    The engine owns workflow_state and the SLA fields below; everything
    else belongs to the surrounding help desk.
    """

    CHANNEL_CHOICES = (
        ("agent", "Agent"),
        ("portal", "Portal"),
        ("email", "Email"),
        ("chat", "Chat"),
        ("api", "API"),
    )
    PRIORITY_CHOICES = (
        ("low", "Low"),
        ("normal", "Normal"),
        ("high", "High"),
        ("urgent", "Urgent"),
    )
    STATUS_CHOICES = (
        ("open", "Open"),
        ("pending", "Pending"),
        ("solved", "Solved"),
        ("closed", "Closed"),
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    brand = models.ForeignKey(
        Brand,
        on_delete=models.SET_NULL,
        related_name="tickets",
        null=True,
        blank=True,
    )

    subject = models.CharField(max_length=255)
    channel = models.CharField(max_length=20, choices=CHANNEL_CHOICES, default="agent")
    priority = models.CharField(max_length=20, choices=PRIORITY_CHOICES, default="normal")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="open", db_index=True)

    workflow = models.ForeignKey(
        "desk_core.TicketWorkflow",
        on_delete=models.PROTECT,
        related_name="tickets",
        null=True,
        blank=True,
    )
    workflow_state = models.SlugField(max_length=100, blank=True, db_index=True)

    sla_policy = models.ForeignKey(
        "desk_core.SlaPolicy",
        on_delete=models.SET_NULL,
        related_name="tickets",
        null=True,
        blank=True,
    )
    sla_started_at = models.DateTimeField(null=True, blank=True)
    first_response_due_at = models.DateTimeField(null=True, blank=True, db_index=True)
    resolution_due_at = models.DateTimeField(null=True, blank=True, db_index=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="tickets_created",
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant", "status"], name="ticket_tenant_status_idx"),
        ]

    def __str__(self):
        return f"#{self.pk} {self.subject}"
