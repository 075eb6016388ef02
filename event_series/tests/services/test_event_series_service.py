import datetime
import zoneinfo
from unittest import mock

from django.core.exceptions import PermissionDenied
from django.db import DatabaseError
from django.utils import timezone

import pytest
from model_bakery import baker

from event_series.exceptions import (
    EventAlreadyInSeriesError,
    EventNotFoundError,
    EventSeriesNotFoundError,
    InvalidOccurrenceDateError,
    InvalidTimezoneError,
    MissingTemplateError,
    OccurrenceAlreadyMaterializedError,
    SeriesValidationError,
)
from event_series.models import EventSeries, RecurrenceRule, SeriesTemplateRevision
from event_series.services.dataclasses import (
    EventSeriesInputData,
    EventSeriesUpdateData,
    RecurrenceRuleData,
)
from events.models import Event
from events.services.dataclasses import EventInputData, EventTemplateData
from organizations.dataclasses import OrganizationContext


NEW_YORK = "America/New_York"


# Helpers
def _dt(year, month, day, hour=9, minute=0):
    return datetime.datetime(year, month, day, hour, minute, tzinfo=datetime.UTC)


def _series_events(context, series):
    return list(
        Event.objects.filter_by_organization(context.organization_id)
        .filter(series_id=series.slug)
        .order_by("start_date")
    )


def _standalone_event(event_management_service, context, user, start, duration=None, name="Solo"):
    return event_management_service.create(
        context,
        EventInputData(
            template=EventTemplateData(name=name),
            start_date=start,
            end_date=start + duration if duration else None,
        ),
        actor=user,
    )


@pytest.mark.django_db
def test_create_with_inline_template_materializes_only_the_template(make_series, context):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"], count=5)

    events = _series_events(context, series)
    assert len(events) == 1
    template = events[0]
    assert series.template_event_slug == template.slug
    assert template.start_date == _dt(2025, 1, 6)
    assert template.end_date == _dt(2025, 1, 6, 10)
    assert template.location == "Room 1"
    assert series.recurrence_rule.to_data().count == 5


@pytest.mark.django_db
@pytest.mark.parametrize("with_slug,with_template", [(True, True), (False, False)])
def test_create_requires_exactly_one_template_source(
    event_series_service, context, user, with_slug, with_template
):
    data = EventSeriesInputData(
        name="Broken",
        recurrence_rule=RecurrenceRuleData(frequency="DAILY"),
        template_event_slug="some-event" if with_slug else None,
        template=EventTemplateData(name="Broken") if with_template else None,
        template_start_date=_dt(2025, 1, 1),
    )

    with pytest.raises(MissingTemplateError):
        event_series_service.create(context, data, user)


@pytest.mark.django_db
def test_create_with_invalid_timezone_writes_nothing(event_series_service, context, user):
    data = EventSeriesInputData(
        name="Nowhere",
        recurrence_rule=RecurrenceRuleData(frequency="DAILY"),
        time_zone="Not/AZone",
        template=EventTemplateData(name="Nowhere"),
        template_start_date=_dt(2025, 1, 1),
    )

    with pytest.raises(InvalidTimezoneError):
        event_series_service.create(context, data, user)

    assert not EventSeries.original_manager.exists()
    assert not Event.original_manager.exists()


@pytest.mark.django_db
def test_create_from_existing_event_links_both_ways(
    event_series_service, event_management_service, context, user
):
    event = _standalone_event(event_management_service, context, user, _dt(2025, 2, 3))
    event.time_zone = NEW_YORK
    event.save(update_fields=["time_zone"])

    series = event_series_service.create(
        context,
        EventSeriesInputData(
            name="Promoted",
            recurrence_rule=RecurrenceRuleData(frequency="WEEKLY"),
            template_event_slug=event.slug,
        ),
        user,
    )

    event.refresh_from_db()
    assert event.series_id == series.slug
    assert series.template_event_slug == event.slug
    assert series.time_zone == NEW_YORK


@pytest.mark.django_db
def test_create_from_event_already_in_series_conflicts(
    event_series_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6))

    with pytest.raises(EventAlreadyInSeriesError):
        event_series_service.create_from_existing_event(
            context,
            series.template_event_slug,
            EventSeriesInputData(name="Again", recurrence_rule=RecurrenceRuleData("DAILY")),
            user,
        )


@pytest.mark.django_db
def test_create_from_unknown_event(event_series_service, context, user):
    with pytest.raises(EventNotFoundError):
        event_series_service.create_from_existing_event(
            context,
            "missing-event",
            EventSeriesInputData(name="Ghost", recurrence_rule=RecurrenceRuleData("DAILY")),
            user,
        )


@pytest.mark.django_db
def test_find_series_by_slug_is_scoped_to_organization(event_series_service, make_series, context):
    series = make_series(_dt(2025, 1, 6))
    other_context = OrganizationContext(organization=baker.make("organizations.Organization"))

    assert event_series_service.find_series_by_slug(context, series.slug) == series
    with pytest.raises(EventSeriesNotFoundError):
        event_series_service.find_series_by_slug(other_context, series.slug)


@pytest.mark.django_db
def test_list_series_filters_by_creator(event_series_service, make_series, context, other_user):
    mine = make_series(_dt(2025, 1, 6), name="Mine")
    theirs = make_series(_dt(2025, 1, 7), name="Theirs", actor=other_user)

    assert set(event_series_service.list_series(context)) == {mine, theirs}
    assert list(event_series_service.list_series(context, created_by=other_user)) == [theirs]


@pytest.mark.django_db
def test_update_by_creator(event_series_service, make_series, context, user):
    series = make_series(_dt(2025, 1, 6), count=3)

    updated = event_series_service.update(
        context,
        series.slug,
        EventSeriesUpdateData(
            name="Renamed",
            time_zone=NEW_YORK,
            recurrence_rule=RecurrenceRuleData(frequency="DAILY", interval=2),
        ),
        user,
    )

    series.refresh_from_db()
    assert updated.slug == series.slug
    assert series.name == "Renamed"
    assert series.time_zone == NEW_YORK
    rule = RecurrenceRule.original_manager.get(pk=series.recurrence_rule_id)
    assert (rule.frequency, rule.interval, rule.count) == ("DAILY", 2, None)


@pytest.mark.django_db
def test_update_by_someone_else_is_denied(event_series_service, make_series, context, other_user):
    series = make_series(_dt(2025, 1, 6))

    with pytest.raises(PermissionDenied):
        event_series_service.update(
            context, series.slug, EventSeriesUpdateData(name="Hijacked"), other_user
        )


@pytest.mark.django_db
def test_get_occurrences_merges_template_and_generated(event_series_service, make_series, context):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"], count=4)

    occurrences = event_series_service.get_occurrences(context, series.slug, include_past=True)

    assert [o.date for o in occurrences] == [
        _dt(2025, 1, 6),
        _dt(2025, 1, 13),
        _dt(2025, 1, 20),
        _dt(2025, 1, 27),
    ]
    assert [o.materialized for o in occurrences] == [True, False, False, False]
    assert occurrences[0].event.slug == series.template_event_slug
    assert occurrences[1].event is None


@pytest.mark.django_db
def test_get_occurrences_count_is_capped(event_series_service, make_series, context):
    series = make_series(_dt(2025, 1, 1), frequency="DAILY")

    occurrences = event_series_service.get_occurrences(
        context, series.slug, count=100, include_past=True
    )

    assert len(occurrences) == 50


@pytest.mark.django_db
def test_get_occurrences_starts_at_beginning_of_today(event_series_service, make_series, context):
    today = timezone.now().astimezone(datetime.UTC).date()
    anchor = datetime.datetime.combine(
        today - datetime.timedelta(days=3), datetime.time(9), tzinfo=datetime.UTC
    )
    series = make_series(anchor, frequency="DAILY")

    occurrences = event_series_service.get_occurrences(context, series.slug)

    assert len(occurrences) == 10
    assert occurrences[0].date == datetime.datetime.combine(
        today, datetime.time(9), tzinfo=datetime.UTC
    )
    assert not any(o.materialized for o in occurrences)


@pytest.mark.django_db
def test_get_occurrences_includes_events_added_off_pattern(
    event_series_service, event_management_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"], count=3)
    extra = _standalone_event(event_management_service, context, user, _dt(2025, 1, 7, 12))
    event_series_service.add_event(context, series.slug, extra.slug, actor=user)

    occurrences = event_series_service.get_occurrences(context, series.slug, include_past=True)

    assert [(o.date, o.materialized) for o in occurrences] == [
        (_dt(2025, 1, 6), True),
        (_dt(2025, 1, 7, 12), True),
        (_dt(2025, 1, 13), False),
        (_dt(2025, 1, 20), False),
    ]


@pytest.mark.django_db
def test_get_or_materialize_occurrence_copies_template(event_series_service, make_series, context):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"], duration=datetime.timedelta(hours=2))

    event = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )

    assert event.series_id == series.slug
    assert event.start_date == _dt(2025, 1, 13)
    assert event.end_date == _dt(2025, 1, 13, 11)
    assert event.name == "Weekly Sync"
    assert event.location == "Room 1"
    assert event.slug != series.template_event_slug


@pytest.mark.django_db
def test_get_or_materialize_occurrence_is_idempotent(event_series_service, make_series, context):
    series = make_series(_dt(2025, 1, 6))

    first = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 20)
    )
    second = event_series_service.get_or_materialize_occurrence(
        context, series.slug, _dt(2025, 1, 20)
    )

    assert first.pk == second.pk
    assert len(_series_events(context, series)) == 2


@pytest.mark.django_db
def test_get_or_materialize_occurrence_returns_template_for_first_date(
    event_series_service, make_series, context
):
    series = make_series(_dt(2025, 1, 6))

    event = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 6)
    )

    assert event.slug == series.template_event_slug


@pytest.mark.django_db
def test_get_or_materialize_occurrence_rejects_dates_outside_pattern(
    event_series_service, make_series, context
):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"])

    with pytest.raises(InvalidOccurrenceDateError):
        event_series_service.get_or_materialize_occurrence(
            context, series.slug, datetime.date(2025, 1, 14)
        )
    assert len(_series_events(context, series)) == 1


@pytest.mark.django_db
def test_get_or_materialize_occurrence_across_dst(event_series_service, make_series, context):
    anchor = datetime.datetime(2023, 3, 6, 9, 0, tzinfo=zoneinfo.ZoneInfo(NEW_YORK))
    series = make_series(anchor, time_zone=NEW_YORK)

    event = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2023, 3, 13)
    )

    assert event.start_date == _dt(2023, 3, 13, 13)
    assert event.time_zone == NEW_YORK


@pytest.mark.django_db
def test_get_or_materialize_occurrence_returns_concurrent_winner(
    event_series_service, event_query_service, make_series, context
):
    series = make_series(_dt(2025, 1, 6))
    winner = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )

    # The first lookup misses as if the winner had not committed yet
    with mock.patch.object(
        event_query_service, "find_at_instant", side_effect=[None, winner]
    ) as find_at_instant:
        event = event_series_service.get_or_materialize_occurrence(
            context, series.slug, datetime.date(2025, 1, 13)
        )

    assert event.pk == winner.pk
    assert find_at_instant.call_count == 2
    assert len(_series_events(context, series)) == 2


@pytest.mark.django_db
def test_materialize_next_occurrence(event_series_service, make_series, context):
    tomorrow = timezone.now().astimezone(datetime.UTC).date() + datetime.timedelta(days=1)
    anchor = datetime.datetime.combine(tomorrow, datetime.time(9), tzinfo=datetime.UTC)
    series = make_series(anchor, frequency="DAILY", count=2)

    event = event_series_service.materialize_next_occurrence(context, series.slug)

    assert event.start_date == anchor + datetime.timedelta(days=1)
    assert event_series_service.materialize_next_occurrence(context, series.slug) is None


@pytest.mark.django_db
def test_update_future_occurrences_from(event_series_service, make_series, context, user):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"])
    for day in (13, 20, 27):
        event_series_service.get_or_materialize_occurrence(
            context, series.slug, datetime.date(2025, 1, day)
        )

    result = event_series_service.update_future_occurrences_from(
        context, series.slug, datetime.date(2025, 1, 20), {"location": "Room 2"}, user
    )

    assert result.count == 2
    assert "2 occurrences" in result.message
    locations = {e.start_date.day: e.location for e in _series_events(context, series)}
    assert locations == {6: "Room 1", 13: "Room 1", 20: "Room 2", 27: "Room 2"}

    later = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 2, 3)
    )
    assert later.location == "Room 2"
    assert later.name == "Weekly Sync"

    revision = SeriesTemplateRevision.original_manager.get(series=series)
    assert revision.effective_from == _dt(2025, 1, 20, 0)
    assert revision.patch == {"location": "Room 2"}


@pytest.mark.django_db
def test_update_future_occurrences_leaves_earlier_unmaterialized_dates_alone(
    event_series_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6), by_weekday=["MO"])
    event_series_service.update_future_occurrences_from(
        context, series.slug, _dt(2025, 1, 20), {"name": "Renamed Sync"}, user
    )

    before = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )
    after = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 20)
    )

    assert before.name == "Weekly Sync"
    assert after.name == "Renamed Sync"


@pytest.mark.django_db
@pytest.mark.parametrize("patch", [{}, {"start_date": "2025-01-01T00:00:00Z"}, {"slug": "x"}])
def test_update_future_occurrences_rejects_invalid_patches(
    event_series_service, make_series, context, user, patch
):
    series = make_series(_dt(2025, 1, 6))

    with pytest.raises(SeriesValidationError):
        event_series_service.update_future_occurrences_from(
            context, series.slug, datetime.date(2025, 1, 20), patch, user
        )


@pytest.mark.django_db
def test_add_event_is_idempotent(
    event_series_service, event_management_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6))
    event = _standalone_event(event_management_service, context, user, _dt(2025, 1, 8, 15))

    first = event_series_service.add_event(context, series.slug, event.slug, actor=user)
    second = event_series_service.add_event(context, series.slug, event.slug, actor=user)

    assert first.series_id == series.slug
    assert second.pk == first.pk
    assert second.start_date == _dt(2025, 1, 8, 15)


@pytest.mark.django_db
def test_add_event_with_date_moves_it_preserving_duration(
    event_series_service, event_management_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6))
    event = _standalone_event(
        event_management_service,
        context,
        user,
        _dt(2025, 2, 1, 12),
        duration=datetime.timedelta(minutes=90),
    )

    event = event_series_service.add_event(
        context, series.slug, event.slug, datetime.date(2025, 1, 20), actor=user
    )

    assert event.start_date == _dt(2025, 1, 20)
    assert event.end_date == _dt(2025, 1, 20, 10, 30)


@pytest.mark.django_db
def test_add_event_from_another_series_conflicts(event_series_service, make_series, context, user):
    series = make_series(_dt(2025, 1, 6))
    other_series = make_series(_dt(2025, 1, 7), name="Other")

    with pytest.raises(EventAlreadyInSeriesError):
        event_series_service.add_event(
            context, series.slug, other_series.template_event_slug, actor=user
        )


@pytest.mark.django_db
def test_add_event_to_occupied_instant_conflicts(
    event_series_service, event_management_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6))
    event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )
    event = _standalone_event(event_management_service, context, user, _dt(2025, 3, 1))

    with pytest.raises(OccurrenceAlreadyMaterializedError):
        event_series_service.add_event(
            context, series.slug, event.slug, datetime.date(2025, 1, 13), actor=user
        )


@pytest.mark.django_db
def test_delete_series_detaches_events(event_series_service, make_series, context, user):
    series = make_series(_dt(2025, 1, 6))
    occurrence = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )

    result = event_series_service.delete_series(context, series.slug, user)

    assert set(result.detached_event_slugs) == {series.template_event_slug, occurrence.slug}
    assert result.deleted_event_slugs == []
    assert not result.is_partial_failure
    assert not EventSeries.original_manager.filter(pk=series.pk).exists()
    assert not RecurrenceRule.original_manager.filter(pk=series.recurrence_rule_id).exists()
    occurrence.refresh_from_db()
    assert occurrence.series_id is None


@pytest.mark.django_db
def test_delete_series_with_events(event_series_service, make_series, context, user):
    series = make_series(_dt(2025, 1, 6))
    event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )

    result = event_series_service.delete_series(context, series.slug, user, delete_events=True)

    assert len(result.deleted_event_slugs) == 2
    assert not Event.original_manager.exists()


@pytest.mark.django_db
def test_delete_series_reports_partial_failures(
    event_series_service, event_management_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6))
    occurrence = event_series_service.get_or_materialize_occurrence(
        context, series.slug, datetime.date(2025, 1, 13)
    )
    delete = event_management_service.delete

    def failing_delete(context, slug):
        if slug == occurrence.slug:
            raise DatabaseError("row is locked")
        return delete(context, slug)

    with mock.patch.object(event_management_service, "delete", side_effect=failing_delete):
        result = event_series_service.delete_series(
            context, series.slug, user, delete_events=True
        )

    assert result.is_partial_failure
    assert result.deleted_event_slugs == [series.template_event_slug]
    assert [(f.event_slug, f.error) for f in result.failures] == [
        (occurrence.slug, "row is locked")
    ]
    assert result.detached_event_slugs == [occurrence.slug]
    occurrence.refresh_from_db()
    assert occurrence.series_id is None


@pytest.mark.django_db
def test_delete_series_by_someone_else_is_denied(
    event_series_service, make_series, context, other_user
):
    series = make_series(_dt(2025, 1, 6))

    with pytest.raises(PermissionDenied):
        event_series_service.delete_series(context, series.slug, other_user)
    assert EventSeries.original_manager.filter(pk=series.pk).exists()


@pytest.mark.django_db
def test_long_running_series_keeps_upcoming_occurrences(
    event_series_service, make_series, context
):
    # Older than both the occurrence cap and the span horizon counted from the anchor
    today = timezone.now().astimezone(datetime.UTC).date()
    anchor = datetime.datetime.combine(
        today - datetime.timedelta(days=4 * 365), datetime.time(9), tzinfo=datetime.UTC
    )
    series = make_series(anchor, frequency="DAILY", name="Daily Standup")
    start_of_today = datetime.datetime.combine(today, datetime.time.min, tzinfo=datetime.UTC)

    occurrences = event_series_service.get_occurrences(context, series.slug, count=5)

    assert len(occurrences) == 5
    assert [o.date.date() for o in occurrences] == [
        today + datetime.timedelta(days=offset) for offset in range(5)
    ]
    assert all(o.date >= start_of_today and not o.materialized for o in occurrences)

    next_event = event_series_service.materialize_next_occurrence(context, series.slug)
    assert next_event is not None
    assert next_event.start_date > timezone.now()

    later = event_series_service.get_or_materialize_occurrence(
        context, series.slug, today + datetime.timedelta(days=30)
    )
    assert later.start_date == datetime.datetime.combine(
        today + datetime.timedelta(days=30), datetime.time(9), tzinfo=datetime.UTC
    )


@pytest.mark.django_db
def test_create_from_stale_event_does_not_move_it_between_series(
    event_series_service, event_query_service, event_management_service, context, user
):
    event = _standalone_event(event_management_service, context, user, _dt(2025, 2, 3))
    stale_event = Event.original_manager.get(pk=event.pk)
    first_series = event_series_service.create(
        context,
        EventSeriesInputData(
            name="First",
            recurrence_rule=RecurrenceRuleData(frequency="WEEKLY"),
            template_event_slug=event.slug,
        ),
        user,
    )

    with (
        mock.patch.object(event_query_service, "find_by_slug", return_value=stale_event),
        pytest.raises(EventAlreadyInSeriesError),
    ):
        event_series_service.create(
            context,
            EventSeriesInputData(
                name="Second",
                recurrence_rule=RecurrenceRuleData(frequency="DAILY"),
                template_event_slug=event.slug,
            ),
            user,
        )

    event.refresh_from_db()
    assert event.series_id == first_series.slug
    assert list(EventSeries.original_manager.values_list("slug", flat=True)) == [
        first_series.slug
    ]
    assert RecurrenceRule.original_manager.count() == 1


@pytest.mark.django_db
def test_add_stale_event_from_another_series_conflicts(
    event_series_service, event_query_service, make_series, context, user
):
    series = make_series(_dt(2025, 1, 6))
    other_series = make_series(_dt(2025, 1, 7), name="Other")
    stale_event = Event.original_manager.get(slug=other_series.template_event_slug)
    stale_event.series = None

    with (
        mock.patch.object(event_query_service, "find_by_slug", return_value=stale_event),
        pytest.raises(EventAlreadyInSeriesError),
    ):
        event_series_service.add_event(
            context, series.slug, stale_event.slug, datetime.date(2025, 1, 13), actor=user
        )

    event = Event.original_manager.get(pk=stale_event.pk)
    assert event.series_id == other_series.slug
    assert event.start_date == _dt(2025, 1, 7)
