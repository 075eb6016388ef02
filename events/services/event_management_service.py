import datetime
import logging
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from event_series.exceptions import (
    EventAlreadyInSeriesError,
    EventNotFoundError,
    SeriesValidationError,
)
from events.constants import EVENT_BUSINESS_FIELDS
from events.models import Event
from events.services.dataclasses import EventInputData, EventTemplateData
from events.utils import normalize_instant
from organizations.dataclasses import OrganizationContext


if TYPE_CHECKING:
    from event_series.models import EventSeries


logger = logging.getLogger(__name__)


class EventManagementService:
    """
    Write side of the events collaborator.
    """

    def _get_event(self, context: OrganizationContext, slug: str) -> Event:
        event = (
            Event.objects.filter_by_organization(context.organization_id).filter(slug=slug).first()
        )
        if event is None:
            raise EventNotFoundError(slug)
        return event

    def create(self, context: OrganizationContext, data: EventInputData, actor=None) -> Event:
        """
        Create a standalone event.
        """
        event = Event.objects.create(
            organization=context.organization,
            start_date=normalize_instant(data.start_date),
            end_date=normalize_instant(data.end_date) if data.end_date else None,
            time_zone=data.time_zone,
            created_by=actor,
            **data.template.as_fields(),
        )
        logger.info("Created event %s starting at %s", event.slug, event.start_date)
        return event

    def update(
        self, context: OrganizationContext, slug: str, patch: dict[str, Any], actor=None
    ) -> Event:
        """
        Apply `patch` (business fields only) to the event identified by `slug`.
        """
        unknown_fields = set(patch) - set(EVENT_BUSINESS_FIELDS)
        if unknown_fields:
            raise SeriesValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown_fields))}"
            )

        event = self._get_event(context, slug)
        for field_name, value in patch.items():
            setattr(event, field_name, value)
        event.save(update_fields=[*patch.keys(), "modified"])
        logger.debug("Updated event %s fields %s by %s", slug, sorted(patch), actor)
        return event

    def create_occurrence_event(
        self,
        context: OrganizationContext,
        series: "EventSeries",
        template: EventTemplateData,
        instant: datetime.datetime,
        duration: datetime.timedelta | None = None,
        actor=None,
    ) -> Event:
        """
        Insert the event materializing `series` at `instant`.

        Runs inside a savepoint and lets IntegrityError propagate when another
        event already exists for (series, instant); callers decide how to recover.
        """
        start_date = normalize_instant(instant)
        with transaction.atomic():
            event = Event.objects.create(
                organization=context.organization,
                series=series,
                start_date=start_date,
                end_date=start_date + duration if duration is not None else None,
                time_zone=series.time_zone,
                created_by=actor,
                **template.as_fields(),
            )
        return event

    def link_to_series(
        self,
        context: OrganizationContext,
        event: Event,
        series: "EventSeries",
        start_date: datetime.datetime | None = None,
    ) -> Event:
        """
        Set the event's series back-reference, optionally moving it to `start_date`
        while keeping its duration.

        The write only applies while the stored event has no series or already
        belongs to `series`, so a stale `event` cannot steal it from another series.
        Raises EventAlreadyInSeriesError otherwise.
        """
        changes: dict[str, Any] = {"series": series, "modified": timezone.now()}
        if start_date is not None:
            start_date = normalize_instant(start_date)
            if start_date != event.start_date:
                duration = event.duration
                changes["start_date"] = start_date
                changes["end_date"] = start_date + duration if duration is not None else None

        qs = Event.objects.filter_by_organization(context.organization_id).filter(pk=event.pk)
        with transaction.atomic():
            updated = qs.filter(Q(series__isnull=True) | Q(series_id=series.slug)).update(
                **changes
            )
        if not updated:
            current_series_slug = qs.values_list("series_id", flat=True).first()
            if current_series_slug is None:
                raise EventNotFoundError(event.slug)
            raise EventAlreadyInSeriesError(event.slug, current_series_slug)

        for field_name, value in changes.items():
            setattr(event, field_name, value)
        return event

    def detach_from_series(self, context: OrganizationContext, series_slug: str) -> list[str]:
        """
        Clear the series back-reference of every event in the series.
        Returns the slugs of the detached events.
        """
        qs = Event.objects.filter_by_organization(context.organization_id).filter(
            series_id=series_slug
        )
        slugs = list(qs.values_list("slug", flat=True))
        qs.update(series=None)
        return slugs

    def delete(self, context: OrganizationContext, slug: str) -> None:
        """
        Delete a single event. Dependents are removed by the storage cascade.
        """
        event = self._get_event(context, slug)
        event.delete()
        logger.info("Deleted event %s", slug)
