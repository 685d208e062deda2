# desk_core/serializers_sla.py
from __future__ import annotations

from typing import Any, Dict, List

from rest_framework import serializers

from desk_core.models import (
    BusinessHoursWindow,
    HolidayException,
    SlaBreachAlert,
    SlaPolicy,
    SlaTarget,
    Ticket,
)
from desk_core.models.sla import MAX_SLA_MINUTES
from desk_core.sla.calendar import (
    END_OF_DAY,
    WEEKDAYS,
    day_offset,
    format_time,
    load_timezone,
    normalize_weekday,
)

CHANNELS = [c for c, _ in Ticket.CHANNEL_CHOICES]
PRIORITIES = [p for p, _ in Ticket.PRIORITY_CHOICES]


def _minutes_field(**kwargs):
    return serializers.IntegerField(
        required=False, allow_null=True, min_value=0, max_value=MAX_SLA_MINUTES, **kwargs
    )


class WindowEndField(serializers.TimeField):
    """
    A window end; "24:00" means the window runs to midnight.
    """

    def to_internal_value(self, value):
        if isinstance(value, str) and value.strip() in ("24:00", "24:00:00"):
            return END_OF_DAY
        return super().to_internal_value(value)

    def to_representation(self, value):
        if value == END_OF_DAY:
            return format_time(value, end=True)
        return super().to_representation(value)


class BusinessHoursWindowInputSerializer(serializers.Serializer):
    day = serializers.CharField()
    start = serializers.TimeField(format="%H:%M", input_formats=["%H:%M", "%H:%M:%S"])
    end = WindowEndField(format="%H:%M", input_formats=["%H:%M", "%H:%M:%S"])

    def validate_day(self, value):
        try:
            return normalize_weekday(value)
        except ValueError:
            raise serializers.ValidationError(f"Day must be one of: {', '.join(WEEKDAYS)}.")

    def validate(self, attrs):
        if day_offset(attrs["end"], end=True) <= day_offset(attrs["start"]):
            raise serializers.ValidationError({"end": "End time must be after start time."})
        return attrs


class HolidayInputSerializer(serializers.Serializer):
    date = serializers.DateField()
    label = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class SlaTargetInputSerializer(serializers.Serializer):
    channel = serializers.ChoiceField(choices=CHANNELS)
    priority = serializers.ChoiceField(choices=PRIORITIES)
    first_response_minutes = _minutes_field()
    resolution_minutes = _minutes_field()
    use_business_hours = serializers.BooleanField(required=False, allow_null=True, default=None)

    def to_internal_value(self, data):
        if isinstance(data, dict):
            data = dict(data)
            for key in ("channel", "priority"):
                if isinstance(data.get(key), str):
                    data[key] = data[key].strip().lower()
        return super().to_internal_value(data)


class SlaPolicyInputSerializer(serializers.Serializer):
    """
    Validates a policy and its children before any write:
    - IANA timezone
    - every window ends after it starts
    - (channel, priority) pairs are unique
    """

    name = serializers.CharField(max_length=255)
    slug = serializers.SlugField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    brand = serializers.IntegerField(required=False, allow_null=True)
    timezone = serializers.CharField(max_length=64, required=False, default="UTC")
    enforce_business_hours = serializers.BooleanField(required=False, default=True)
    first_response_minutes = _minutes_field()
    resolution_minutes = _minutes_field()
    business_hours = BusinessHoursWindowInputSerializer(many=True, required=False)
    holidays = HolidayInputSerializer(many=True, required=False)
    targets = SlaTargetInputSerializer(many=True, required=False)

    def validate_timezone(self, value: str) -> str:
        try:
            load_timezone(value)
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))
        return value.strip() or "UTC"

    def validate_targets(self, value: List[Dict[str, Any]]):
        seen = set()
        dupes = []
        for t in value:
            key = (t["channel"], t["priority"])
            if key in seen:
                dupes.append(f"{key[0]}/{key[1]}")
            seen.add(key)
        if dupes:
            raise serializers.ValidationError(
                f"Duplicate channel/priority targets: {', '.join(dupes)}."
            )
        return value

    def to_service_data(self) -> Dict[str, Any]:
        data = dict(self.validated_data)
        if "brand" in data:
            data["brand_id"] = data.pop("brand")
        if "business_hours" in data:
            data["business_hours"] = [
                {"weekday": w["day"], "start": w["start"], "end": w["end"]}
                for w in data["business_hours"]
            ]
        return data


# =============================================================
# Output
# =============================================================

class BusinessHoursWindowSerializer(serializers.ModelSerializer):
    day = serializers.SerializerMethodField()
    start = serializers.TimeField(source="start_time", format="%H:%M")
    end = WindowEndField(source="end_time", format="%H:%M")

    class Meta:
        model = BusinessHoursWindow
        fields = ["day", "start", "end"]

    def get_day(self, obj) -> str:
        return WEEKDAYS[obj.weekday]


class HolidayExceptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = HolidayException
        fields = ["date", "label"]


class SlaTargetSerializer(serializers.ModelSerializer):
    class Meta:
        model = SlaTarget
        fields = [
            "channel",
            "priority",
            "first_response_minutes",
            "resolution_minutes",
            "use_business_hours",
        ]


class SlaPolicySerializer(serializers.ModelSerializer):
    business_hours = BusinessHoursWindowSerializer(many=True, read_only=True)
    holidays = HolidayExceptionSerializer(many=True, read_only=True)
    targets = SlaTargetSerializer(many=True, read_only=True)

    class Meta:
        model = SlaPolicy
        fields = [
            "id",
            "tenant",
            "brand",
            "slug",
            "name",
            "description",
            "timezone",
            "enforce_business_hours",
            "first_response_minutes",
            "resolution_minutes",
            "business_hours",
            "holidays",
            "targets",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class DeadlinePreviewSerializer(serializers.Serializer):
    channel = serializers.CharField(max_length=20)
    priority = serializers.CharField(max_length=20)
    start = serializers.DateTimeField()


class SlaBreachAlertSerializer(serializers.ModelSerializer):
    ticket_subject = serializers.CharField(source="ticket.subject", read_only=True)

    class Meta:
        model = SlaBreachAlert
        fields = [
            "id",
            "ticket",
            "ticket_subject",
            "kind",
            "due_at",
            "overdue_seconds",
            "triggered_at",
            "resolved_at",
        ]
        read_only_fields = fields
