# desk_core/filters.py
import django_filters as df
from .models import SlaBreachAlert, SlaPolicy, Ticket, TicketWorkflow


class TicketFilter(df.FilterSet):
    subject = df.CharFilter(field_name="subject", lookup_expr="icontains")
    workflow = df.NumberFilter(field_name="workflow_id")
    state = df.CharFilter(field_name="workflow_state", lookup_expr="iexact")
    created_at = df.DateFromToRangeFilter()
    resolution_due_before = df.IsoDateTimeFilter(field_name="resolution_due_at", lookup_expr="lte")
    breached = df.BooleanFilter(method="filter_breached")

    class Meta:
        model = Ticket
        fields = ["channel", "priority", "status", "workflow", "state", "sla_policy"]

    def filter_breached(self, queryset, name, value):
        open_alerts = SlaBreachAlert.objects.filter(resolved_at__isnull=True).values("ticket_id")
        if value:
            return queryset.filter(pk__in=open_alerts)
        return queryset.exclude(pk__in=open_alerts)


class TicketWorkflowFilter(df.FilterSet):
    name = df.CharFilter(field_name="name", lookup_expr="icontains")
    tenant_wide = df.BooleanFilter(field_name="brand", lookup_expr="isnull")

    class Meta:
        model = TicketWorkflow
        fields = ["slug", "name", "is_default", "tenant_wide"]


class SlaPolicyFilter(df.FilterSet):
    name = df.CharFilter(field_name="name", lookup_expr="icontains")
    tenant_wide = df.BooleanFilter(field_name="brand", lookup_expr="isnull")

    class Meta:
        model = SlaPolicy
        fields = ["slug", "name", "timezone", "enforce_business_hours", "tenant_wide"]
