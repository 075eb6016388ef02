import datetime

from django.conf import settings
from django.db import models
from django.utils.text import slugify

from cuid2 import cuid_wrapper

from events.constants import EVENT_BUSINESS_FIELDS, EventStatus, EventType, EventVisibility
from organizations.models import OrganizationModel


slug_suffix_generator = cuid_wrapper()


def generate_slug(name: str) -> str:
    base = slugify(name)[:50].strip("-") or "item"
    return f"{base}-{slug_suffix_generator()[:10]}"


class Event(OrganizationModel):
    """
    A concrete, independently editable event.

    Events are either standalone or belong to an event series through `series`
    (stored as the series slug). At most one event exists per (series, start_date).
    """

    slug = models.SlugField(max_length=80, unique=True, editable=False)
    series = models.ForeignKey(
        "event_series.EventSeries",
        to_field="slug",
        db_column="series_slug",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
        help_text="The series this event is an occurrence of, if any.",
    )

    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    time_zone = models.CharField(max_length=64, default="UTC")

    # Business fields copied from the series template on materialization
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    type = models.CharField(  # noqa: A003
        max_length=20, choices=EventType, default=EventType.IN_PERSON
    )
    location = models.CharField(max_length=255, blank=True)
    location_online = models.CharField(max_length=500, blank=True)
    max_attendees = models.PositiveIntegerField(default=0)
    require_approval = models.BooleanField(default=False)
    approval_question = models.CharField(max_length=500, blank=True)
    allow_waitlist = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=EventStatus, default=EventStatus.PUBLISHED)
    visibility = models.CharField(
        max_length=20, choices=EventVisibility, default=EventVisibility.PUBLIC
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_events",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["series", "start_date"],
                name="unique_event_per_series_start_date",
            ),
        ]
        indexes = [
            models.Index(
                fields=["organization", "series", "start_date"],
                name="event_org_series_start_idx",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.start_date})"

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = generate_slug(self.name)
        super().save(*args, **kwargs)

    @property
    def duration(self) -> datetime.timedelta | None:
        if self.end_date is None:
            return None
        return self.end_date - self.start_date

    def get_business_fields(self) -> dict:
        return {field_name: getattr(self, field_name) for field_name in EVENT_BUSINESS_FIELDS}
