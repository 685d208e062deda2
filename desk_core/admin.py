# desk_core/admin.py

from django.contrib import admin

from .models import (
    AuditLog,
    Brand,
    BusinessHoursWindow,
    HolidayException,
    SlaBreachAlert,
    SlaPolicy,
    SlaTarget,
    Tenant,
    TenantRole,
    Ticket,
    TicketWorkflow,
    TicketWorkflowState,
    TicketWorkflowTransition,
    WorkflowEvent,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Tenancy
# =============================================================

class BrandInline(admin.TabularInline):
    model = Brand
    extra = 0


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("slug", "name", "is_active", "created_at")
    search_fields = ("slug", "name")
    inlines = [BrandInline]


@admin.register(TenantRole)
class TenantRoleAdmin(admin.ModelAdmin):
    list_display = ("user", "tenant", "brand", "role")
    list_filter = ("role", "tenant")
    search_fields = ("user__username", "tenant__slug")


# =============================================================
# Workflow definitions
# =============================================================

class TicketWorkflowStateInline(admin.TabularInline):
    model = TicketWorkflowState
    extra = 0
    fields = ("position", "slug", "name", "is_initial", "is_terminal", "sla_minutes", "entry_hook")
    ordering = ("position", "id")


class TicketWorkflowTransitionInline(admin.TabularInline):
    model = TicketWorkflowTransition
    fk_name = "workflow"
    extra = 0
    fields = ("from_state", "to_state", "guard_hook", "requires_comment")

    def formfield_for_foreignkey(self, db_field, request, **kwargs):
        # only states of the workflow being edited
        if db_field.name in ("from_state", "to_state"):
            object_id = request.resolver_match.kwargs.get("object_id")
            kwargs["queryset"] = TicketWorkflowState.objects.filter(workflow_id=object_id)
        return super().formfield_for_foreignkey(db_field, request, **kwargs)


@admin.register(TicketWorkflow)
class TicketWorkflowAdmin(admin.ModelAdmin):
    list_display = ("slug", "name", "tenant", "brand", "is_default", "updated_at")
    list_filter = ("tenant", "is_default")
    search_fields = ("slug", "name")
    inlines = [TicketWorkflowStateInline, TicketWorkflowTransitionInline]


# =============================================================
# SLA policies
# =============================================================

class BusinessHoursWindowInline(admin.TabularInline):
    model = BusinessHoursWindow
    extra = 0


class HolidayExceptionInline(admin.TabularInline):
    model = HolidayException
    extra = 0


class SlaTargetInline(admin.TabularInline):
    model = SlaTarget
    extra = 0


@admin.register(SlaPolicy)
class SlaPolicyAdmin(admin.ModelAdmin):
    list_display = ("slug", "name", "tenant", "brand", "timezone", "enforce_business_hours")
    list_filter = ("tenant", "enforce_business_hours")
    search_fields = ("slug", "name")
    inlines = [BusinessHoursWindowInline, HolidayExceptionInline, SlaTargetInline]


# =============================================================
# Tickets
# =============================================================

@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "subject",
        "tenant",
        "brand",
        "priority",
        "status",
        "workflow_state",
        "resolution_due_at",
    )
    list_filter = ("tenant", "status", "priority", "channel")
    search_fields = ("subject",)
    # workflow_state and deadlines belong to the lifecycle coordinator
    readonly_fields = (
        "workflow",
        "workflow_state",
        "sla_policy",
        "sla_started_at",
        "first_response_due_at",
        "resolution_due_at",
    )


# =============================================================
# Audit trail (READ-ONLY)
# =============================================================

@admin.register(WorkflowEvent)
class WorkflowEventAdmin(ReadOnlyAdmin):
    list_display = ("ticket", "from_state", "to_state", "performed_by", "tenant", "created_at")
    list_filter = ("tenant", "to_state")
    search_fields = ("ticket__subject", "performed_by__username", "correlation_id")
    ordering = ("-created_at",)


@admin.register(SlaBreachAlert)
class SlaBreachAlertAdmin(ReadOnlyAdmin):
    list_display = ("ticket", "kind", "due_at", "overdue_seconds", "triggered_at", "resolved_at")
    list_filter = ("tenant", "kind")
    ordering = ("-triggered_at",)


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    list_display = ("action", "tenant", "user", "created_at")
    list_filter = ("tenant", "action")
    search_fields = ("action", "user__username")
    ordering = ("-created_at",)
