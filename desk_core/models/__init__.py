from .core import AuditLog, Brand, Tenant, TenantRole, Ticket, TimeStampedModel
from .sla import BusinessHoursWindow, HolidayException, SlaPolicy, SlaTarget
from .sla_alert import SlaBreachAlert
from .workflow import TicketWorkflow, TicketWorkflowState, TicketWorkflowTransition
from .workflow_event import WorkflowEvent

__all__ = [
    "AuditLog",
    "Brand",
    "BusinessHoursWindow",
    "HolidayException",
    "SlaBreachAlert",
    "SlaPolicy",
    "SlaTarget",
    "Tenant",
    "TenantRole",
    "Ticket",
    "TicketWorkflow",
    "TicketWorkflowState",
    "TicketWorkflowTransition",
    "TimeStampedModel",
    "WorkflowEvent",
]
