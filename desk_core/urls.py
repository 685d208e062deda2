# desk_core/urls.py

from django.urls import path, include
from rest_framework.routers import DefaultRouter

# -------------------------------------------------
# Identity / system
# -------------------------------------------------
from .views_identity import HealthCheckView, WhoAmIView

# -------------------------------------------------
# Workflow definitions and ticket lifecycle
# -------------------------------------------------
from .views_workflow_api import TicketViewSet, WorkflowDefinitionViewSet

# -------------------------------------------------
# SLA policies and breach alerts
# -------------------------------------------------
from .views_sla import SlaBreachAlertViewSet, SlaPolicyViewSet


app_name = "desk_core"

# -------------------------------------------------
# Router
# -------------------------------------------------
router = DefaultRouter()
router.register(r"workflows", WorkflowDefinitionViewSet, basename="workflow")
router.register(r"tickets", TicketViewSet, basename="ticket")
router.register(r"sla-policies", SlaPolicyViewSet, basename="sla-policy")
router.register(r"sla-alerts", SlaBreachAlertViewSet, basename="sla-alert")


urlpatterns = [
    # ============================================================
    # System
    # ============================================================
    path("health/", HealthCheckView.as_view(), name="health_check"),
    path("whoami/", WhoAmIView.as_view(), name="whoami"),

    # ============================================================
    # API
    # ============================================================
    path("", include(router.urls)),
]
