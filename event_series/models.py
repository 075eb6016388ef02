import datetime

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from event_series.constants import RecurrenceFrequency
from event_series.exceptions import InvalidRecurrenceRuleError
from event_series.services.dataclasses import RecurrenceRuleData
from events.models import generate_slug
from organizations.models import OrganizationModel


class RecurrenceRule(OrganizationModel):
    """
    Represents the recurrence rule of an event series following RFC 5545 (RRULE).
    """

    frequency = models.CharField(
        max_length=10,
        choices=RecurrenceFrequency,
        help_text="How often the series repeats (DAILY, WEEKLY, MONTHLY, YEARLY)",
    )
    interval = models.PositiveIntegerField(
        default=1, help_text="The interval between each frequency iteration (e.g., every 2 weeks)"
    )
    count = models.PositiveIntegerField(
        null=True, blank=True, help_text="Number of occurrences after which the recurrence ends"
    )
    until = models.DateTimeField(
        null=True, blank=True, help_text="The instant until which the recurrence is valid"
    )
    by_weekday = models.CharField(
        max_length=100, blank=True, help_text="Comma-separated list of weekdays (e.g., 'MO,WE,FR')"
    )
    by_month_day = models.CharField(
        max_length=100,
        blank=True,
        help_text="Comma-separated list of month days (e.g., '1,15,-1' for 1st, 15th, last day)",
    )

    def __str__(self):
        return f"Recurrence: {self.frequency} every {self.interval}"

    def to_data(self) -> RecurrenceRuleData:
        try:
            month_days = [int(day.strip()) for day in self.by_month_day.split(",") if day.strip()]
        except ValueError as e:
            raise InvalidRecurrenceRuleError(
                "Month days must be integers separated by commas."
            ) from e
        return RecurrenceRuleData(
            frequency=self.frequency,
            interval=self.interval,
            count=self.count,
            until=self.until,
            by_weekday=[day.strip() for day in self.by_weekday.split(",") if day.strip()],
            by_month_day=month_days,
        )

    def apply_data(self, data: RecurrenceRuleData) -> None:
        self.frequency = data.frequency
        self.interval = data.interval
        self.count = data.count
        self.until = data.until
        self.by_weekday = ",".join(data.by_weekday)
        self.by_month_day = ",".join(str(day) for day in data.by_month_day)

    def to_rrule_string(self) -> str:
        """
        Convert the recurrence rule to an RRULE string following RFC 5545.
        """
        parts = [f"FREQ={self.frequency}"]

        if self.interval and self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")

        if self.count:
            parts.append(f"COUNT={self.count}")

        if self.until:
            # Format as YYYYMMDDTHHMMSSZ in UTC
            until_utc = self.until.astimezone(datetime.UTC)
            parts.append(f"UNTIL={until_utc.strftime('%Y%m%dT%H%M%SZ')}")

        if self.by_weekday:
            parts.append(f"BYDAY={self.by_weekday}")

        if self.by_month_day:
            parts.append(f"BYMONTHDAY={self.by_month_day}")

        return ";".join(parts)

    def clean(self):
        try:
            self.to_data().validate()
        except InvalidRecurrenceRuleError as e:
            raise ValidationError(str(e)) from e

    def save(self, *args, **kwargs):
        """Override save to run validation."""
        self.clean()
        super().save(*args, **kwargs)


class EventSeries(OrganizationModel):
    """
    A recurring-event definition: a recurrence rule, a timezone and a template event
    whose business fields are copied onto materialized occurrences.

    Occurrences are never bulk-persisted. They are generated on read and
    materialized one at a time on demand (see EventSeriesService).
    """

    slug = models.SlugField(max_length=80, unique=True, editable=False)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    recurrence_rule = models.OneToOneField(
        RecurrenceRule,
        on_delete=models.PROTECT,
        related_name="series",
    )
    time_zone = models.CharField(max_length=64, default="UTC", help_text="IANA timezone name")
    template_event_slug = models.CharField(
        max_length=80,
        blank=True,
        default="",
        help_text="Slug of the event supplying default business fields. "
        "That event's series must be this series.",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_event_series",
    )

    class Meta:
        verbose_name_plural = "event series"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = generate_slug(self.name)
        super().save(*args, **kwargs)

    @property
    def recurrence_description(self) -> str:
        return self.recurrence_rule.to_data().describe()


class SeriesTemplateRevision(OrganizationModel):
    """
    A dated patch on the series template. Occurrences materialized at or after
    `effective_from` get the patch applied on top of the template event fields.
    """

    series = models.ForeignKey(
        EventSeries,
        on_delete=models.CASCADE,
        related_name="template_revisions",
    )
    effective_from = models.DateTimeField()
    patch = models.JSONField(default=dict)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ("effective_from", "id")

    def __str__(self):
        return f"{self.series_id} from {self.effective_from}"
