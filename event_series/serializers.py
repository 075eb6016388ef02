import datetime
import zoneinfo
from typing import Annotated

from dateutil.parser import isoparse
from dependency_injector.wiring import Provide, inject
from rest_framework import serializers

from event_series.constants import RecurrenceFrequency, RecurrenceWeekday
from event_series.exceptions import InvalidRecurrenceRuleError
from event_series.models import EventSeries, RecurrenceRule
from event_series.services.dataclasses import (
    EventSeriesInputData,
    EventSeriesUpdateData,
    RecurrenceRuleData,
)
from event_series.services.event_series_service import EventSeriesService
from events.constants import EVENT_BUSINESS_FIELDS, EventStatus, EventType, EventVisibility
from events.models import Event
from events.services.dataclasses import EventTemplateData
from organizations.dataclasses import OrganizationContext


def validate_time_zone(time_zone: str) -> str:
    try:
        zoneinfo.ZoneInfo(time_zone)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
        raise serializers.ValidationError(f"Invalid timezone: {time_zone}") from e
    return time_zone


class OccurrenceDateField(serializers.Field):
    """
    Accepts a calendar date (YYYY-MM-DD) or a timezone-aware ISO 8601 instant.
    """

    default_error_messages = {
        "invalid": "Expected a YYYY-MM-DD date or an ISO 8601 instant with a UTC offset.",
        "naive": "Instants must include a UTC offset.",
    }

    def to_internal_value(self, data):
        if isinstance(data, datetime.datetime):
            value = data
        elif isinstance(data, datetime.date):
            return data
        else:
            data = str(data)
            if len(data) == 10:
                try:
                    return datetime.date.fromisoformat(data)
                except ValueError:
                    self.fail("invalid")
            try:
                value = isoparse(data)
            except ValueError:
                self.fail("invalid")

        if value.tzinfo is None:
            self.fail("naive")
        return value

    def to_representation(self, value):
        return value.isoformat()


class RecurrenceRuleSerializer(serializers.Serializer):
    """
    Wire shape of a recurrence rule:
    {frequency, interval, count?, until?, byweekday?, bymonthday?}
    Validated data is a RecurrenceRuleData.
    """

    frequency = serializers.ChoiceField(choices=RecurrenceFrequency.choices)
    interval = serializers.IntegerField(min_value=1, default=1)
    count = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    until = serializers.DateTimeField(required=False, allow_null=True)
    byweekday = serializers.ListField(
        child=serializers.ChoiceField(choices=RecurrenceWeekday.choices),
        required=False,
    )
    bymonthday = serializers.ListField(
        child=serializers.IntegerField(min_value=-31, max_value=31),
        required=False,
    )

    def validate(self, attrs) -> RecurrenceRuleData:
        rule = RecurrenceRuleData(
            frequency=attrs["frequency"],
            interval=attrs.get("interval", 1),
            count=attrs.get("count"),
            until=attrs.get("until"),
            by_weekday=list(attrs.get("byweekday") or []),
            by_month_day=list(attrs.get("bymonthday") or []),
        )
        try:
            rule.validate()
        except InvalidRecurrenceRuleError as e:
            raise serializers.ValidationError(str(e)) from e
        return rule

    def to_representation(self, instance):
        if isinstance(instance, RecurrenceRule):
            instance = instance.to_data()
        return instance.to_wire()


class EventTemplateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    type = serializers.ChoiceField(  # noqa: A003
        choices=EventType.choices, default=EventType.IN_PERSON
    )
    location = serializers.CharField(
        max_length=255, required=False, allow_blank=True, default=""
    )
    location_online = serializers.CharField(
        max_length=500, required=False, allow_blank=True, default=""
    )
    max_attendees = serializers.IntegerField(min_value=0, default=0)
    require_approval = serializers.BooleanField(default=False)
    approval_question = serializers.CharField(
        max_length=500, required=False, allow_blank=True, default=""
    )
    allow_waitlist = serializers.BooleanField(default=False)
    status = serializers.ChoiceField(choices=EventStatus.choices, default=EventStatus.PUBLISHED)
    visibility = serializers.ChoiceField(
        choices=EventVisibility.choices, default=EventVisibility.PUBLIC
    )


class EventSummarySerializer(serializers.ModelSerializer):
    series_slug = serializers.CharField(source="series_id", read_only=True, allow_null=True)

    class Meta:
        model = Event
        fields = (
            "slug",
            "series_slug",
            "start_date",
            "end_date",
            "time_zone",
            *EVENT_BUSINESS_FIELDS,
            "created",
            "modified",
        )
        read_only_fields = fields


class EventSeriesSerializer(serializers.ModelSerializer):
    recurrence_rule = RecurrenceRuleSerializer(read_only=True)
    recurrence_description = serializers.CharField(read_only=True)
    rrule_string = serializers.SerializerMethodField()

    class Meta:
        model = EventSeries
        fields = (
            "slug",
            "name",
            "description",
            "time_zone",
            "template_event_slug",
            "recurrence_rule",
            "recurrence_description",
            "rrule_string",
            "created_by",
            "created",
            "modified",
        )
        read_only_fields = fields

    def get_rrule_string(self, obj: EventSeries) -> str:
        return obj.recurrence_rule.to_rrule_string()


class EventSeriesServiceSerializerMixin:
    """Resolves the organization context and the actor from the request."""

    def get_organization_context(self) -> OrganizationContext:
        return OrganizationContext.for_user(self.context["request"].user)

    def get_actor(self):
        return self.context["request"].user


class EventSeriesCreateSerializer(EventSeriesServiceSerializerMixin, serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    time_zone = serializers.CharField(max_length=64, required=False, allow_null=True)
    recurrence_rule = RecurrenceRuleSerializer()
    template_event_slug = serializers.CharField(required=False, allow_null=True)
    template = EventTemplateSerializer(required=False, allow_null=True)
    template_start_date = serializers.DateTimeField(required=False, allow_null=True)
    template_end_date = serializers.DateTimeField(required=False, allow_null=True)

    @inject
    def __init__(
        self,
        *args,
        event_series_service: Annotated[
            "EventSeriesService | None", Provide["event_series_service"]
        ] = None,
        **kwargs,
    ):
        self.event_series_service = event_series_service
        super().__init__(*args, **kwargs)

    def validate_time_zone(self, time_zone):
        if time_zone is None:
            return time_zone
        return validate_time_zone(time_zone)

    def validate(self, attrs):
        has_template_slug = bool(attrs.get("template_event_slug"))
        has_inline_template = attrs.get("template") is not None
        if has_template_slug == has_inline_template:
            raise serializers.ValidationError(
                "Exactly one of `template_event_slug` or `template` must be provided."
            )

        if has_inline_template:
            start_date = attrs.get("template_start_date")
            end_date = attrs.get("template_end_date")
            if start_date is None:
                raise serializers.ValidationError(
                    {"template_start_date": "This field is required with an inline template."}
                )
            if end_date is not None and end_date < start_date:
                raise serializers.ValidationError(
                    {"template_end_date": "End date must be after the start date."}
                )
        return attrs

    def create(self, validated_data):
        if not self.event_series_service:
            raise ValueError(
                "event_series_service is not defined, please configure your DI container correctly"
            )

        template = validated_data.get("template")
        return self.event_series_service.create(
            self.get_organization_context(),
            EventSeriesInputData(
                name=validated_data["name"],
                description=validated_data.get("description", ""),
                time_zone=validated_data.get("time_zone"),
                recurrence_rule=validated_data["recurrence_rule"],
                template_event_slug=validated_data.get("template_event_slug"),
                template=EventTemplateData(**template) if template else None,
                template_start_date=validated_data.get("template_start_date"),
                template_end_date=validated_data.get("template_end_date"),
            ),
            actor=self.get_actor(),
        )


class EventSeriesUpdateSerializer(EventSeriesServiceSerializerMixin, serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    time_zone = serializers.CharField(max_length=64, required=False)
    recurrence_rule = RecurrenceRuleSerializer(required=False)

    @inject
    def __init__(
        self,
        *args,
        event_series_service: Annotated[
            "EventSeriesService | None", Provide["event_series_service"]
        ] = None,
        **kwargs,
    ):
        self.event_series_service = event_series_service
        super().__init__(*args, **kwargs)

    def validate_time_zone(self, time_zone):
        return validate_time_zone(time_zone)

    def update(self, instance: EventSeries, validated_data: dict) -> EventSeries:
        if not self.event_series_service:
            raise ValueError(
                "event_series_service is not defined, please configure your DI container correctly"
            )

        return self.event_series_service.update(
            self.get_organization_context(),
            instance.slug,
            EventSeriesUpdateData(
                name=validated_data.get("name"),
                description=validated_data.get("description"),
                time_zone=validated_data.get("time_zone"),
                recurrence_rule=validated_data.get("recurrence_rule"),
            ),
            actor=self.get_actor(),
        )


class OccurrenceSerializer(serializers.Serializer):
    date = serializers.DateTimeField()
    materialized = serializers.BooleanField()
    event = EventSummarySerializer(allow_null=True)


class OccurrenceListQuerySerializer(serializers.Serializer):
    count = serializers.IntegerField(min_value=1, required=False)
    include_past = serializers.BooleanField(default=False)


class EventSeriesListQuerySerializer(serializers.Serializer):
    mine = serializers.BooleanField(default=False)


class SeriesDeleteQuerySerializer(serializers.Serializer):
    delete_events = serializers.BooleanField(default=False)


class FutureOccurrencesUpdateSerializer(serializers.Serializer):
    """Partial set of business fields applied to this and future occurrences."""

    name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    type = serializers.ChoiceField(choices=EventType.choices, required=False)  # noqa: A003
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    location_online = serializers.CharField(max_length=500, required=False, allow_blank=True)
    max_attendees = serializers.IntegerField(min_value=0, required=False)
    require_approval = serializers.BooleanField(required=False)
    approval_question = serializers.CharField(max_length=500, required=False, allow_blank=True)
    allow_waitlist = serializers.BooleanField(required=False)
    status = serializers.ChoiceField(choices=EventStatus.choices, required=False)
    visibility = serializers.ChoiceField(choices=EventVisibility.choices, required=False)

    def validate(self, attrs):
        unknown_fields = set(self.initial_data) - set(self.fields)
        if unknown_fields:
            raise serializers.ValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown_fields))}"
            )
        if not attrs:
            raise serializers.ValidationError("No fields to update.")
        return attrs


class FutureOccurrencesUpdateResultSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    message = serializers.CharField()


class AddEventSerializer(serializers.Serializer):
    event_slug = serializers.CharField()
    date = OccurrenceDateField(required=False, allow_null=True)


class EventDeletionFailureSerializer(serializers.Serializer):
    event_slug = serializers.CharField()
    error = serializers.CharField()


class SeriesDeletionResultSerializer(serializers.Serializer):
    series_slug = serializers.CharField()
    deleted_event_slugs = serializers.ListField(child=serializers.CharField())
    detached_event_slugs = serializers.ListField(child=serializers.CharField())
    failures = EventDeletionFailureSerializer(many=True)
    is_partial_failure = serializers.BooleanField()
