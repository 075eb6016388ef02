import datetime
import logging
from typing import Annotated, Any

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from event_series.constants import DEFAULT_LISTING_COUNT, MAX_LISTING_COUNT
from event_series.exceptions import (
    EventAlreadyInSeriesError,
    EventNotFoundError,
    EventSeriesNotFoundError,
    InvalidOccurrenceDateError,
    MissingTemplateError,
    OccurrenceAlreadyMaterializedError,
    SeriesNotFoundError,
    SeriesValidationError,
)
from event_series.models import EventSeries, RecurrenceRule, SeriesTemplateRevision
from event_series.services.dataclasses import (
    EventDeletionFailure,
    EventSeriesInputData,
    EventSeriesUpdateData,
    FutureOccurrencesUpdateResult,
    Occurrence,
    SeriesDeletionResult,
)
from event_series.services.protocols.event_management import EventManagement
from event_series.services.protocols.event_query import EventQuery
from event_series.services.recurrence_pattern_service import (
    RecurrencePatternService,
    get_zone,
    localize,
)
from events.constants import EVENT_BUSINESS_FIELDS
from events.models import Event
from events.services.dataclasses import EventTemplateData
from events.utils import normalize_instant
from organizations.dataclasses import OrganizationContext


logger = logging.getLogger(__name__)

OccurrenceDate = datetime.date | datetime.datetime


class EventSeriesService:
    """
    Manages recurring event series: a recurrence rule, a timezone and a template event.

    Occurrences are computed on read and only turned into Event rows
    ("materialized") one at a time, when a caller needs a concrete, editable event.
    Every call receives the OrganizationContext it operates in.
    """

    @inject
    def __init__(
        self,
        event_query_service: Annotated["EventQuery", Provide["event_query_service"]],
        event_management_service: Annotated[
            "EventManagement", Provide["event_management_service"]
        ],
        recurrence_pattern_service: Annotated[
            "RecurrencePatternService", Provide["recurrence_pattern_service"]
        ],
    ) -> None:
        self.event_query_service = event_query_service
        self.event_management_service = event_management_service
        self.recurrence_pattern_service = recurrence_pattern_service
        self.default_listing_count = getattr(
            settings, "EVENT_SERIES_DEFAULT_LISTING_COUNT", DEFAULT_LISTING_COUNT
        )
        self.max_listing_count = getattr(
            settings, "EVENT_SERIES_MAX_LISTING_COUNT", MAX_LISTING_COUNT
        )

    def _get_series(self, context: OrganizationContext, series_slug: str) -> EventSeries:
        series = (
            EventSeries.objects.filter_by_organization(context.organization_id)
            .select_related("recurrence_rule")
            .filter(slug=series_slug)
            .first()
        )
        if series is None:
            raise EventSeriesNotFoundError(series_slug)
        return series

    def _get_event(self, context: OrganizationContext, event_slug: str) -> Event:
        event = self.event_query_service.find_by_slug(context, event_slug)
        if event is None:
            raise EventNotFoundError(event_slug)
        return event

    def _get_template_event(self, context: OrganizationContext, series: EventSeries) -> Event:
        template_event = None
        if series.template_event_slug:
            template_event = self.event_query_service.find_by_slug(
                context, series.template_event_slug
            )
        if template_event is None:
            raise MissingTemplateError(f"Series {series.slug} has no template event")
        return template_event

    def _check_owner(self, obj: EventSeries | Event, actor, action: str) -> None:
        if actor is None or obj.created_by_id != actor.pk:
            raise PermissionDenied(f"You do not have permission to {action} {obj.slug}")

    def _resolve_instant(
        self, series: EventSeries, anchor: datetime.datetime, occurrence_date: OccurrenceDate
    ) -> datetime.datetime:
        if isinstance(occurrence_date, datetime.datetime):
            if occurrence_date.tzinfo is None:
                raise SeriesValidationError("Occurrence instants must be timezone-aware")
            return normalize_instant(occurrence_date)
        return self.recurrence_pattern_service.resolve_local_date(
            occurrence_date, series.time_zone, anchor
        )

    def _template_at(
        self,
        context: OrganizationContext,
        series: EventSeries,
        template_event: Event,
        instant: datetime.datetime,
    ) -> EventTemplateData:
        """
        Business fields an occurrence at `instant` inherits: the template event's
        fields with every revision effective at or before `instant` applied in order.
        """
        fields = template_event.get_business_fields()
        revisions = (
            SeriesTemplateRevision.objects.filter_by_organization(context.organization_id)
            .filter(series=series, effective_from__lte=instant)
            .order_by("effective_from", "id")
        )
        for revision in revisions:
            fields.update(revision.patch)
        return EventTemplateData(**fields)

    def _save_rule(
        self, context: OrganizationContext, data: EventSeriesInputData
    ) -> RecurrenceRule:
        rule = RecurrenceRule(organization=context.organization)
        rule.apply_data(data.recurrence_rule)
        rule.save()
        return rule

    def create(
        self, context: OrganizationContext, data: EventSeriesInputData, actor
    ) -> EventSeries:
        """
        Create a series from an inline template (which becomes the first occurrence)
        or from an existing event (`template_event_slug`). Exactly one must be given.
        """
        has_template_slug = bool(data.template_event_slug)
        has_inline_template = data.template is not None
        if has_template_slug == has_inline_template:
            raise MissingTemplateError()

        if has_template_slug:
            return self.create_from_existing_event(
                context, data.template_event_slug, data, actor
            )

        if data.template_start_date is None:
            raise SeriesValidationError("`template_start_date` is required for an inline template")
        if data.template_start_date.tzinfo is None:
            raise SeriesValidationError("`template_start_date` must be timezone-aware")

        data.recurrence_rule.validate()
        time_zone = data.time_zone or "UTC"
        get_zone(time_zone)

        duration = None
        if data.template_end_date is not None:
            duration = normalize_instant(data.template_end_date) - normalize_instant(
                data.template_start_date
            )
            if duration < datetime.timedelta(0):
                raise SeriesValidationError("`template_end_date` must be after the start date")

        with transaction.atomic():
            series = EventSeries.objects.create(
                organization=context.organization,
                name=data.name,
                description=data.description,
                recurrence_rule=self._save_rule(context, data),
                time_zone=time_zone,
                created_by=actor,
            )
            template_event = self.event_management_service.create_occurrence_event(
                context,
                series,
                data.template,
                data.template_start_date,
                duration=duration,
                actor=actor,
            )
            series.template_event_slug = template_event.slug
            series.save(update_fields=["template_event_slug", "modified"])

        logger.info(
            "Created event series %s (%s) with template event %s",
            series.slug,
            data.recurrence_rule.describe(),
            template_event.slug,
        )
        return series

    def create_from_existing_event(
        self,
        context: OrganizationContext,
        event_slug: str,
        data: EventSeriesInputData,
        actor,
    ) -> EventSeries:
        """
        Promote an existing standalone event into the template of a new series.
        The series row and the event's back-reference are written in one transaction.
        """
        event = self._get_event(context, event_slug)
        if event.series_id:
            raise EventAlreadyInSeriesError(event.slug, event.series_id)

        data.recurrence_rule.validate()
        time_zone = data.time_zone or event.time_zone
        get_zone(time_zone)

        with transaction.atomic():
            series = EventSeries.objects.create(
                organization=context.organization,
                name=data.name,
                description=data.description,
                recurrence_rule=self._save_rule(context, data),
                time_zone=time_zone,
                template_event_slug=event.slug,
                created_by=actor,
            )
            self.event_management_service.link_to_series(context, event, series)

        logger.info("Created event series %s from existing event %s", series.slug, event.slug)
        return series

    def update(
        self,
        context: OrganizationContext,
        series_slug: str,
        data: EventSeriesUpdateData,
        actor,
    ) -> EventSeries:
        series = self._get_series(context, series_slug)
        self._check_owner(series, actor, "update series")

        update_fields = ["modified"]
        if data.name is not None:
            series.name = data.name
            update_fields.append("name")
        if data.description is not None:
            series.description = data.description
            update_fields.append("description")
        if data.time_zone is not None:
            get_zone(data.time_zone)
            series.time_zone = data.time_zone
            update_fields.append("time_zone")

        with transaction.atomic():
            if data.recurrence_rule is not None:
                data.recurrence_rule.validate()
                series.recurrence_rule.apply_data(data.recurrence_rule)
                series.recurrence_rule.save()
            series.save(update_fields=update_fields)

        logger.info("Updated event series %s", series.slug)
        return series

    def find_series_by_slug(self, context: OrganizationContext, series_slug: str) -> EventSeries:
        return self._get_series(context, series_slug)

    def list_series(self, context: OrganizationContext, created_by=None) -> QuerySet:
        qs = EventSeries.objects.filter_by_organization(context.organization_id).select_related(
            "recurrence_rule"
        )
        if created_by is not None:
            qs = qs.filter(created_by=created_by)
        return qs.order_by("-created", "-id")

    def get_occurrences(
        self,
        context: OrganizationContext,
        series_slug: str,
        count: int | None = None,
        include_past: bool = False,
    ) -> list[Occurrence]:
        """
        Upcoming occurrences of a series, materialized or not, in ascending order.

        :param count: number of occurrences to return, capped at the max listing count.
        :param include_past: when False the listing starts at the beginning of today
            in the series' timezone; otherwise at the first occurrence.
        """
        if count is None:
            count = self.default_listing_count
        count = max(1, min(count, self.max_listing_count))

        series = self._get_series(context, series_slug)
        template_event = self._get_template_event(context, series)

        window_start = None
        if not include_past:
            tz = get_zone(series.time_zone)
            today = timezone.now().astimezone(tz).date()
            window_start = localize(datetime.datetime.combine(today, datetime.time.min), tz)
            window_start = window_start.astimezone(datetime.UTC)

        generated = iter(
            self.recurrence_pattern_service.generate_occurrences(
                series.recurrence_rule.to_data(),
                series.time_zone,
                template_event.start_date,
                start_after=window_start,
            )
        )
        materialized = self.event_query_service.find_by_series(
            context, series.slug, start=window_start
        )

        occurrences: list[Occurrence] = []
        next_generated = next(generated, None)
        event_index = 0
        while len(occurrences) < count:
            event = materialized[event_index] if event_index < len(materialized) else None
            if event is None and next_generated is None:
                break

            event_instant = normalize_instant(event.start_date) if event is not None else None
            if event is not None and (next_generated is None or event_instant <= next_generated):
                occurrences.append(Occurrence(date=event_instant, materialized=True, event=event))
                event_index += 1
                if event_instant == next_generated:
                    next_generated = next(generated, None)
            else:
                occurrences.append(Occurrence(date=next_generated, materialized=False))
                next_generated = next(generated, None)

        logger.debug("Listed %s occurrences for series %s", len(occurrences), series.slug)
        return occurrences

    def get_or_materialize_occurrence(
        self,
        context: OrganizationContext,
        series_slug: str,
        occurrence_date: OccurrenceDate,
        actor=None,
    ) -> Event:
        """
        Return the event for the occurrence at `occurrence_date`, creating it from the
        series template when it does not exist yet.

        `occurrence_date` is a calendar date (resolved at the template's local time in
        the series timezone) or an aware datetime. Concurrent callers get the same event.
        """
        series = self._get_series(context, series_slug)
        template_event = self._get_template_event(context, series)
        instant = self._resolve_instant(series, template_event.start_date, occurrence_date)

        existing = self.event_query_service.find_at_instant(context, series.slug, instant)
        if existing is not None:
            return existing

        if not self.recurrence_pattern_service.is_date_in_recurrence_pattern(
            instant,
            series.recurrence_rule.to_data(),
            series.time_zone,
            template_event.start_date,
        ):
            raise InvalidOccurrenceDateError(occurrence_date, series.slug)

        try:
            event = self.event_management_service.create_occurrence_event(
                context,
                series,
                self._template_at(context, series, template_event, instant),
                instant,
                duration=template_event.duration,
                actor=actor,
            )
        except IntegrityError:
            existing = self.event_query_service.find_at_instant(context, series.slug, instant)
            if existing is None:
                raise
            logger.warning(
                "Occurrence %s of series %s was materialized concurrently, returning event %s",
                instant.isoformat(),
                series.slug,
                existing.slug,
            )
            return existing

        logger.info(
            "Materialized occurrence %s of series %s as event %s",
            instant.isoformat(),
            series.slug,
            event.slug,
        )
        return event

    def materialize_next_occurrence(
        self, context: OrganizationContext, series_slug: str, actor=None
    ) -> Event | None:
        """
        Materialize the first upcoming occurrence that has no event yet.
        Returns None when the recurrence has no such occurrence left.
        """
        series = self._get_series(context, series_slug)
        template_event = self._get_template_event(context, series)
        now = normalize_instant(timezone.now())

        taken = {
            normalize_instant(event.start_date)
            for event in self.event_query_service.find_by_series(context, series.slug, start=now)
        }
        expansion = self.recurrence_pattern_service.generate_occurrences(
            series.recurrence_rule.to_data(),
            series.time_zone,
            template_event.start_date,
            start_after=now,
        )
        for instant in expansion:
            if instant > now and instant not in taken:
                return self.get_or_materialize_occurrence(context, series.slug, instant, actor)

        logger.info("Series %s has no upcoming occurrence left to materialize", series.slug)
        return None

    def update_future_occurrences_from(
        self,
        context: OrganizationContext,
        series_slug: str,
        from_date: OccurrenceDate,
        patch: dict[str, Any],
        actor,
    ) -> FutureOccurrencesUpdateResult:
        """
        Apply `patch` to every materialized occurrence starting at or after `from_date`
        and to every occurrence materialized later at or after it. Earlier occurrences
        are left untouched. A calendar date means the start of that day in the series
        timezone.
        """
        if not patch:
            raise SeriesValidationError("No fields to update")
        unknown_fields = set(patch) - set(EVENT_BUSINESS_FIELDS)
        if unknown_fields:
            raise SeriesValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown_fields))}"
            )

        series = self._get_series(context, series_slug)
        self._check_owner(series, actor, "update series")

        if isinstance(from_date, datetime.datetime):
            if from_date.tzinfo is None:
                raise SeriesValidationError("`from_date` must be timezone-aware")
            from_instant = normalize_instant(from_date)
        else:
            tz = get_zone(series.time_zone)
            from_instant = localize(
                datetime.datetime.combine(from_date, datetime.time.min), tz
            ).astimezone(datetime.UTC)

        with transaction.atomic():
            SeriesTemplateRevision.objects.create(
                organization=context.organization,
                series=series,
                effective_from=from_instant,
                patch=patch,
                created_by=actor,
            )
            events = self.event_query_service.find_by_series(
                context, series.slug, start=from_instant
            )
            for event in events:
                self.event_management_service.update(context, event.slug, patch, actor)

        message = (
            f"Updated {len(events)} occurrences of series {series.slug} "
            f"from {from_instant.isoformat()}"
        )
        logger.info(message)
        return FutureOccurrencesUpdateResult(count=len(events), message=message)

    def add_event(
        self,
        context: OrganizationContext,
        series_slug: str,
        event_slug: str,
        occurrence_date: OccurrenceDate | None = None,
        actor=None,
    ) -> Event:
        """
        Attach an existing event to the series, optionally moving it to `occurrence_date`.
        Adding an event that is already there at the same instant returns it unchanged.
        """
        series = self._get_series(context, series_slug)
        event = self._get_event(context, event_slug)

        if event.series_id and event.series_id != series.slug:
            raise EventAlreadyInSeriesError(event.slug, event.series_id)

        target_instant = None
        if occurrence_date is not None:
            anchor = event.start_date
            if series.template_event_slug:
                anchor = self._get_template_event(context, series).start_date
            target_instant = self._resolve_instant(series, anchor, occurrence_date)

        instant = target_instant or normalize_instant(event.start_date)
        if event.series_id == series.slug and normalize_instant(event.start_date) == instant:
            return event

        self._check_owner(series, actor, "update series")
        self._check_owner(event, actor, "update event")

        occupant = self.event_query_service.find_at_instant(context, series.slug, instant)
        if occupant is not None and occupant.pk != event.pk:
            raise OccurrenceAlreadyMaterializedError(
                series.slug, instant.isoformat(), occupant.slug
            )

        try:
            event = self.event_management_service.link_to_series(
                context, event, series, start_date=target_instant
            )
        except IntegrityError as e:
            occupant = self.event_query_service.find_at_instant(context, series.slug, instant)
            raise OccurrenceAlreadyMaterializedError(
                series.slug, instant.isoformat(), occupant.slug if occupant else "unknown"
            ) from e

        logger.info("Added event %s to series %s at %s", event.slug, series.slug, instant)
        return event

    def delete_series(
        self,
        context: OrganizationContext,
        series_slug: str,
        actor,
        delete_events: bool = False,
    ) -> SeriesDeletionResult:
        """
        Delete a series. With `delete_events` every materialized event is deleted too,
        each one on its own; events that fail to delete are reported and detached.
        Without it the events are kept as standalone events.
        """
        series = self._get_series(context, series_slug)
        self._check_owner(series, actor, "delete series")
        result = SeriesDeletionResult(series_slug=series.slug)

        if delete_events:
            for event in self.event_query_service.find_by_series(context, series.slug):
                try:
                    with transaction.atomic():
                        self.event_management_service.delete(context, event.slug)
                except (DatabaseError, SeriesNotFoundError) as e:
                    logger.exception(
                        "Failed to delete event %s of series %s", event.slug, series.slug
                    )
                    result.failures.append(
                        EventDeletionFailure(event_slug=event.slug, error=str(e))
                    )
                else:
                    result.deleted_event_slugs.append(event.slug)

        with transaction.atomic():
            result.detached_event_slugs = self.event_management_service.detach_from_series(
                context, series.slug
            )
            rule = series.recurrence_rule
            series.delete()
            rule.delete()

        if result.is_partial_failure:
            logger.error(
                "Deleted series %s with %s event deletion failures",
                series_slug,
                len(result.failures),
            )
        else:
            logger.info(
                "Deleted series %s (%s events deleted, %s detached)",
                series_slug,
                len(result.deleted_event_slugs),
                len(result.detached_event_slugs),
            )
        return result
