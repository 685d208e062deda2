# desk_core/models/sla.py

from django.core.validators import MaxValueValidator
from django.db import models
from django.db.models import F, Q

from desk_core.sla.calendar import END_OF_DAY, BusinessCalendar, BusinessWindow, format_time
from desk_core.sla.targets import PolicySnapshot, TargetRule

from .core import Brand, Tenant, TimeStampedModel

# 30 days
MAX_SLA_MINUTES = 43200


# ============================================================
# SLA Policy
# ============================================================
class SlaPolicy(TimeStampedModel):
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="sla_policies",
    )
    brand = models.ForeignKey(
        Brand,
        on_delete=models.CASCADE,
        related_name="sla_policies",
        null=True,
        blank=True,
    )
    slug = models.SlugField(max_length=100)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    timezone = models.CharField(max_length=64, default="UTC")
    enforce_business_hours = models.BooleanField(default=True)
    first_response_minutes = models.PositiveIntegerField(
        null=True, blank=True, validators=[MaxValueValidator(MAX_SLA_MINUTES)]
    )
    resolution_minutes = models.PositiveIntegerField(
        null=True, blank=True, validators=[MaxValueValidator(MAX_SLA_MINUTES)]
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "brand", "slug"],
                name="sla_policy_slug_unique_per_brand",
            ),
            models.UniqueConstraint(
                fields=["tenant", "slug"],
                condition=Q(brand__isnull=True),
                name="sla_policy_slug_unique_tenant_wide",
            ),
        ]

    def __str__(self):
        return f"{self.tenant.slug}:{self.slug}"

    def calendar(self) -> BusinessCalendar:
        return BusinessCalendar(
            timezone=self.timezone or "UTC",
            windows=tuple(
                BusinessWindow(weekday=w.weekday, start=w.start_time, end=w.end_time)
                for w in self.business_hours.all()
            ),
            holidays=frozenset(h.date for h in self.holidays.all()),
            enforce_business_hours=self.enforce_business_hours,
        )

    def snapshot(self) -> PolicySnapshot:
        """
        Immutable copy for the deadline calculator. Callers load the policy
        and its children in one transaction (or prefetch) so the copy is
        consistent.
        """
        return PolicySnapshot(
            calendar=self.calendar(),
            default_first_response_minutes=self.first_response_minutes,
            default_resolution_minutes=self.resolution_minutes,
            targets=tuple(t.as_rule() for t in self.targets.all()),
            policy_id=self.pk,
            slug=self.slug,
        )


class BusinessHoursWindow(models.Model):
    WEEKDAY_CHOICES = (
        (0, "Monday"),
        (1, "Tuesday"),
        (2, "Wednesday"),
        (3, "Thursday"),
        (4, "Friday"),
        (5, "Saturday"),
        (6, "Sunday"),
    )

    policy = models.ForeignKey(
        SlaPolicy,
        on_delete=models.CASCADE,
        related_name="business_hours",
    )
    weekday = models.PositiveSmallIntegerField(choices=WEEKDAY_CHOICES)
    start_time = models.TimeField()
    end_time = models.TimeField()

    class Meta:
        ordering = ["weekday", "start_time"]
        constraints = [
            models.CheckConstraint(
                name="business_hours_end_after_start",
                condition=Q(end_time__gt=F("start_time")) | Q(end_time=END_OF_DAY),
            ),
        ]

    def __str__(self):
        return (
            f"{self.get_weekday_display()} "
            f"{format_time(self.start_time)}-{format_time(self.end_time, end=True)}"
        )


class HolidayException(models.Model):
    policy = models.ForeignKey(
        SlaPolicy,
        on_delete=models.CASCADE,
        related_name="holidays",
    )
    date = models.DateField()
    label = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["date"]
        unique_together = ("policy", "date")

    def __str__(self):
        return f"{self.date} {self.label}".strip()


class SlaTarget(models.Model):
    policy = models.ForeignKey(
        SlaPolicy,
        on_delete=models.CASCADE,
        related_name="targets",
    )
    channel = models.CharField(max_length=20)
    priority = models.CharField(max_length=20)
    first_response_minutes = models.PositiveIntegerField(
        null=True, blank=True, validators=[MaxValueValidator(MAX_SLA_MINUTES)]
    )
    resolution_minutes = models.PositiveIntegerField(
        null=True, blank=True, validators=[MaxValueValidator(MAX_SLA_MINUTES)]
    )
    # NULL inherits the policy's enforce_business_hours
    use_business_hours = models.BooleanField(null=True, blank=True)

    class Meta:
        ordering = ["channel", "priority"]
        unique_together = ("policy", "channel", "priority")

    def __str__(self):
        return f"{self.channel}/{self.priority}"

    def as_rule(self) -> TargetRule:
        return TargetRule(
            channel=self.channel,
            priority=self.priority,
            first_response_minutes=self.first_response_minutes,
            resolution_minutes=self.resolution_minutes,
            use_business_hours=self.use_business_hours,
        )
