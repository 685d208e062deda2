# desk_core/workflows/guards.py

from django.core.exceptions import PermissionDenied
from django.db import models


class WorkflowWriteForbidden(PermissionDenied):
    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(
            f"Direct modification of '{field_name}' is forbidden. "
            "Use the ticket transition API."
        )


class WorkflowWriteGuardMixin(models.Model):
    """
    Block direct changes to workflow-controlled fields on existing rows.

    The lifecycle coordinator is the only writer of these fields. It saves
    with _workflow_bypass=True after the runtime has accepted a transition.

    Escape hatch:
      - pass _workflow_bypass=True to save(), OR
      - set instance._workflow_bypass = True
    Use sparingly (tests, data fixes, admin repair scripts).
    """

    WORKFLOW_FIELDS = ("workflow_state",)
    WORKFLOW_BYPASS_KWARG = "_workflow_bypass"

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        bypass = bool(
            kwargs.pop(self.WORKFLOW_BYPASS_KWARG, False)
            or getattr(self, "_workflow_bypass", False)
        )

        if not bypass and self.pk is not None and self.WORKFLOW_FIELDS:
            update_fields = kwargs.get("update_fields")
            guarded = [
                f for f in self.WORKFLOW_FIELDS
                if update_fields is None or f in update_fields
            ]

            if guarded:
                old = (
                    self.__class__.objects.filter(pk=self.pk)
                    .values(*guarded)
                    .first()
                )
                for name in guarded:
                    if old is not None and old[name] != getattr(self, name, None):
                        raise WorkflowWriteForbidden(name)

        return super().save(*args, **kwargs)
