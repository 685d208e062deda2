# desk_core/models/workflow.py

from django.db import models
from django.db.models import Q

from desk_core.workflows.definitions import StateSpec, TransitionSpec, WorkflowGraph
from desk_core.workflows.reconcile import PersistedTransition

from .core import Brand, Tenant, TimeStampedModel


# ============================================================
# Workflow definition
# ============================================================
class TicketWorkflow(TimeStampedModel):
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="workflows",
    )
    brand = models.ForeignKey(
        Brand,
        on_delete=models.CASCADE,
        related_name="workflows",
        null=True,
        blank=True,
    )
    slug = models.SlugField(max_length=100)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    is_default = models.BooleanField(default=False)

    class Meta:
        ordering = ["name", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "brand", "slug"],
                name="workflow_slug_unique_per_brand",
            ),
            models.UniqueConstraint(
                fields=["tenant", "slug"],
                condition=Q(brand__isnull=True),
                name="workflow_slug_unique_tenant_wide",
            ),
            models.UniqueConstraint(
                fields=["tenant", "brand"],
                condition=Q(is_default=True),
                name="workflow_one_default_per_brand",
            ),
            models.UniqueConstraint(
                fields=["tenant"],
                condition=Q(is_default=True, brand__isnull=True),
                name="workflow_one_default_tenant_wide",
            ),
        ]

    def __str__(self):
        return f"{self.tenant.slug}:{self.slug}"

    def scope_siblings(self):
        """
        Other definitions in the same tenant + brand scope.
        """
        qs = TicketWorkflow.objects.filter(tenant_id=self.tenant_id)
        if self.brand_id is None:
            qs = qs.filter(brand__isnull=True)
        else:
            qs = qs.filter(brand_id=self.brand_id)
        if self.pk is not None:
            qs = qs.exclude(pk=self.pk)
        return qs

    def graph(self) -> WorkflowGraph:
        states = [s.as_spec() for s in self.states.all()]
        slugs = {s.id: s.slug for s in states}
        transitions = [
            t.as_spec(slugs) for t in self.transitions.all()
        ]
        return WorkflowGraph(
            states=tuple(states),
            transitions=tuple(transitions),
            workflow_id=self.pk,
            slug=self.slug,
        )


class TicketWorkflowState(TimeStampedModel):
    workflow = models.ForeignKey(
        TicketWorkflow,
        on_delete=models.CASCADE,
        related_name="states",
    )
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=100)
    position = models.PositiveIntegerField(default=0)
    is_initial = models.BooleanField(default=False)
    is_terminal = models.BooleanField(default=False)
    sla_minutes = models.PositiveIntegerField(null=True, blank=True)
    entry_hook = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ["position", "id"]
        unique_together = ("workflow", "slug")

    def __str__(self):
        return f"{self.workflow.slug}:{self.slug}"

    def as_spec(self) -> StateSpec:
        return StateSpec(
            id=self.pk,
            slug=self.slug,
            name=self.name,
            position=self.position,
            is_initial=self.is_initial,
            is_terminal=self.is_terminal,
            sla_minutes=self.sla_minutes,
            entry_hook=self.entry_hook or "",
            description=self.description or "",
        )


class TicketWorkflowTransition(TimeStampedModel):
    workflow = models.ForeignKey(
        TicketWorkflow,
        on_delete=models.CASCADE,
        related_name="transitions",
    )
    # RESTRICT: a state cannot go while a surviving transition points at it,
    # but deleting the whole workflow cascades through both.
    from_state = models.ForeignKey(
        TicketWorkflowState,
        on_delete=models.RESTRICT,
        related_name="outgoing_transitions",
    )
    to_state = models.ForeignKey(
        TicketWorkflowState,
        on_delete=models.RESTRICT,
        related_name="incoming_transitions",
    )
    guard_hook = models.CharField(max_length=255, blank=True)
    requires_comment = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["from_state__position", "to_state__position", "id"]
        constraints = [
            # checked at commit; reconciliation may swap pairs between ids
            models.UniqueConstraint(
                fields=["workflow", "from_state", "to_state"],
                name="workflow_transition_pair_unique",
                deferrable=models.Deferrable.DEFERRED,
            ),
        ]

    def __str__(self):
        return f"{self.workflow.slug}: {self.from_state.slug} -> {self.to_state.slug}"

    def as_spec(self, slugs=None) -> TransitionSpec:
        if slugs is None:
            from_slug, to_slug = self.from_state.slug, self.to_state.slug
        else:
            from_slug, to_slug = slugs[self.from_state_id], slugs[self.to_state_id]
        return TransitionSpec(
            id=self.pk,
            from_slug=from_slug,
            to_slug=to_slug,
            guard_hook=self.guard_hook or "",
            requires_comment=self.requires_comment,
            metadata=dict(self.metadata or {}),
        )

    def as_persisted(self) -> PersistedTransition:
        return PersistedTransition(
            id=self.pk,
            from_state_id=self.from_state_id,
            to_state_id=self.to_state_id,
            guard_hook=self.guard_hook or "",
            requires_comment=self.requires_comment,
            metadata=dict(self.metadata or {}),
        )
