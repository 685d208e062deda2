# desk_core/serializers_workflow.py
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from rest_framework import serializers

from desk_core.models import (
    Ticket,
    TicketWorkflow,
    TicketWorkflowState,
    TicketWorkflowTransition,
    WorkflowEvent,
)
from desk_core.models.sla import MAX_SLA_MINUTES


# =============================================================
# Authoring input
# =============================================================

class StateInputSerializer(serializers.Serializer):
    id = serializers.IntegerField(required=False, allow_null=True)
    name = serializers.CharField(max_length=255)
    slug = serializers.SlugField(max_length=100)
    position = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    is_initial = serializers.BooleanField(default=False)
    is_terminal = serializers.BooleanField(default=False)
    sla_minutes = serializers.IntegerField(
        required=False, allow_null=True, min_value=0, max_value=MAX_SLA_MINUTES
    )
    entry_hook = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_slug(self, value: str) -> str:
        return value.strip().lower()


class TransitionInputSerializer(serializers.Serializer):
    id = serializers.IntegerField(required=False, allow_null=True)
    from_state = serializers.SlugField(max_length=100)
    to_state = serializers.SlugField(max_length=100)
    guard_hook = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    requires_comment = serializers.BooleanField(default=False)
    metadata = serializers.DictField(required=False, default=dict)

    def to_internal_value(self, data):
        # "from" / "to" are accepted as aliases
        if isinstance(data, dict):
            data = dict(data)
            if "from" in data and "from_state" not in data:
                data["from_state"] = data.pop("from")
            if "to" in data and "to_state" not in data:
                data["to_state"] = data.pop("to")
        return super().to_internal_value(data)


class WorkflowDefinitionInputSerializer(serializers.Serializer):
    """
    Validates a full definition before anything is persisted:
    - unique state slugs, exactly one initial state
    - transitions reference submitted slugs, one per (from, to) pair
    - ids belong to the definition being edited
    """

    slug = serializers.SlugField(max_length=100)
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    is_default = serializers.BooleanField(required=False, default=False)
    brand = serializers.IntegerField(required=False, allow_null=True)
    states = StateInputSerializer(many=True, allow_empty=False)
    transitions = TransitionInputSerializer(many=True, required=False)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        instance: TicketWorkflow | None = self.context.get("workflow")
        states: List[Dict[str, Any]] | None = attrs.get("states")
        transitions: List[Dict[str, Any]] | None = attrs.get("transitions")

        if states is None and instance is not None:
            states = [asdict(s.as_spec()) for s in instance.states.all()]
            attrs["states"] = states

        errors: Dict[str, List[str]] = {}

        slugs = [s["slug"] for s in states or []]
        dupes = sorted({s for s in slugs if slugs.count(s) > 1})
        if dupes:
            errors.setdefault("states", []).append(f"Duplicate state slugs: {', '.join(dupes)}.")

        initial = [s["slug"] for s in states or [] if s.get("is_initial")]
        if len(initial) != 1:
            errors.setdefault("states", []).append(
                f"Exactly one state must be initial (found {len(initial)})."
            )

        if instance is not None:
            known = set(instance.states.values_list("id", flat=True))
            foreign = [s["id"] for s in states or [] if s.get("id") and s["id"] not in known]
            if foreign:
                errors.setdefault("states", []).append(
                    f"Unknown state ids for this workflow: {foreign}."
                )

        if transitions is not None:
            known_slugs = set(slugs)
            pairs = []
            for t in transitions:
                for key in ("from_state", "to_state"):
                    if t[key] not in known_slugs:
                        errors.setdefault("transitions", []).append(
                            f"Transition references unknown state '{t[key]}'."
                        )
                pairs.append((t["from_state"], t["to_state"]))

            dup_pairs = sorted({p for p in pairs if pairs.count(p) > 1})
            if dup_pairs:
                errors.setdefault("transitions", []).append(
                    "Duplicate transitions: "
                    + ", ".join(f"{a} -> {b}" for a, b in dup_pairs)
                    + "."
                )

            if instance is not None:
                known_t = set(instance.transitions.values_list("id", flat=True))
                foreign_t = [t["id"] for t in transitions if t.get("id") and t["id"] not in known_t]
                if foreign_t:
                    errors.setdefault("transitions", []).append(
                        f"Unknown transition ids for this workflow: {foreign_t}."
                    )

        if errors:
            raise serializers.ValidationError(errors)
        return attrs

    @staticmethod
    def transition_rows(attrs: Dict[str, Any]):
        rows = attrs.get("transitions")
        if rows is None:
            return None
        return [
            {
                "id": t.get("id"),
                "from": t["from_state"],
                "to": t["to_state"],
                "guard_hook": t.get("guard_hook", ""),
                "requires_comment": t.get("requires_comment", False),
                "metadata": t.get("metadata") or {},
            }
            for t in rows
        ]


# =============================================================
# Output
# =============================================================

class TicketWorkflowStateSerializer(serializers.ModelSerializer):
    class Meta:
        model = TicketWorkflowState
        fields = [
            "id",
            "name",
            "slug",
            "position",
            "is_initial",
            "is_terminal",
            "sla_minutes",
            "entry_hook",
            "description",
            "updated_at",
        ]


class TicketWorkflowTransitionSerializer(serializers.ModelSerializer):
    from_state = serializers.SlugRelatedField(slug_field="slug", read_only=True)
    to_state = serializers.SlugRelatedField(slug_field="slug", read_only=True)

    class Meta:
        model = TicketWorkflowTransition
        fields = [
            "id",
            "from_state",
            "to_state",
            "guard_hook",
            "requires_comment",
            "metadata",
            "updated_at",
        ]


class TicketWorkflowSerializer(serializers.ModelSerializer):
    states = TicketWorkflowStateSerializer(many=True, read_only=True)
    transitions = TicketWorkflowTransitionSerializer(many=True, read_only=True)

    class Meta:
        model = TicketWorkflow
        fields = [
            "id",
            "tenant",
            "brand",
            "slug",
            "name",
            "description",
            "is_default",
            "states",
            "transitions",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


# =============================================================
# Tickets
# =============================================================

class TicketTransitionSerializer(serializers.Serializer):
    to_state = serializers.SlugField(max_length=100)
    comment = serializers.CharField(required=False, allow_blank=True, default="")
    context = serializers.DictField(required=False, default=dict)


class TicketCreateSerializer(serializers.Serializer):
    subject = serializers.CharField(max_length=255)
    channel = serializers.ChoiceField(choices=Ticket.CHANNEL_CHOICES, default="agent")
    priority = serializers.ChoiceField(choices=Ticket.PRIORITY_CHOICES, default="normal")
    workflow = serializers.IntegerField(required=False, allow_null=True)
    workflow_state = serializers.SlugField(max_length=100, required=False, allow_blank=True)


class TicketTargetingSerializer(serializers.Serializer):
    channel = serializers.ChoiceField(choices=Ticket.CHANNEL_CHOICES, required=False)
    priority = serializers.ChoiceField(choices=Ticket.PRIORITY_CHOICES, required=False)
    status = serializers.ChoiceField(choices=Ticket.STATUS_CHOICES, required=False)
    sla_policy = serializers.IntegerField(required=False, allow_null=True)


class TicketSerializer(serializers.ModelSerializer):
    class Meta:
        model = Ticket
        fields = [
            "id",
            "tenant",
            "brand",
            "subject",
            "channel",
            "priority",
            "status",
            "workflow",
            "workflow_state",
            "sla_policy",
            "sla_started_at",
            "first_response_due_at",
            "resolution_due_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class WorkflowEventSerializer(serializers.ModelSerializer):
    performed_by = serializers.StringRelatedField()

    class Meta:
        model = WorkflowEvent
        fields = [
            "id",
            "ticket",
            "from_state",
            "to_state",
            "performed_by",
            "comment",
            "warnings",
            "correlation_id",
            "created_at",
        ]
