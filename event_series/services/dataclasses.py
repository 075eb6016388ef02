import datetime
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any

from dateutil.parser import isoparse

from event_series.constants import FREQUENCY_UNITS, RecurrenceFrequency, RecurrenceWeekday
from event_series.exceptions import InvalidRecurrenceRuleError
from events.models import Event
from events.services.dataclasses import EventTemplateData


WEEKDAY_NAMES = {choice.value: choice.label for choice in RecurrenceWeekday}


@dataclass
class RecurrenceRuleData:
    """
    Storage-independent recurrence rule, the shape the expansion works on.
    """

    frequency: str
    interval: int = 1
    count: int | None = None
    until: datetime.datetime | None = None
    by_weekday: list[str] = dataclass_field(default_factory=list)
    by_month_day: list[int] = dataclass_field(default_factory=list)

    def validate(self) -> None:
        if not self.frequency:
            raise InvalidRecurrenceRuleError("Frequency is required in recurrence rule")
        if self.frequency not in RecurrenceFrequency.values:
            raise InvalidRecurrenceRuleError(
                f"Invalid frequency: {self.frequency}. "
                f"Must be one of: {', '.join(RecurrenceFrequency.values)}"
            )
        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise InvalidRecurrenceRuleError("Interval must be an integer")
        if self.interval < 1:
            raise InvalidRecurrenceRuleError("Interval must be at least 1.")
        if self.count is not None and self.count < 1:
            raise InvalidRecurrenceRuleError("Count must be greater than 0")
        if self.count is not None and self.until is not None:
            raise InvalidRecurrenceRuleError(
                "Cannot specify both 'count' and 'until' in a recurrence rule."
            )
        if self.until is not None and self.until.tzinfo is None:
            raise InvalidRecurrenceRuleError("'until' must be a timezone-aware instant")

        invalid_weekdays = [day for day in self.by_weekday if day not in WEEKDAY_NAMES]
        if invalid_weekdays:
            raise InvalidRecurrenceRuleError(
                f"Invalid weekdays: {', '.join(map(str, invalid_weekdays))}. "
                "Valid options are: MO, TU, WE, TH, FR, SA, SU"
            )

        invalid_days = [day for day in self.by_month_day if day == 0 or day > 31 or day < -31]
        if invalid_days:
            raise InvalidRecurrenceRuleError(
                f"Invalid month days: {', '.join(map(str, invalid_days))}. "
                "Must be between 1-31 or -1 to -31."
            )

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "RecurrenceRuleData":
        """
        Build from the wire/storage shape:
        {frequency, interval, count?, until?, byweekday?, bymonthday?}
        """
        if not isinstance(data, dict):
            raise InvalidRecurrenceRuleError("Recurrence rule is required")

        until = data.get("until")
        if isinstance(until, str):
            try:
                until = isoparse(until)
            except ValueError as e:
                raise InvalidRecurrenceRuleError("Invalid until date") from e

        rule = cls(
            frequency=data.get("frequency") or "",
            interval=data.get("interval") or 1,
            count=data.get("count"),
            until=until,
            by_weekday=list(data.get("byweekday") or []),
            by_month_day=list(data.get("bymonthday") or []),
        )
        rule.validate()
        return rule

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"frequency": self.frequency, "interval": self.interval}
        if self.count is not None:
            data["count"] = self.count
        if self.until is not None:
            data["until"] = self.until.astimezone(datetime.UTC).isoformat().replace("+00:00", "Z")
        if self.by_weekday:
            data["byweekday"] = list(self.by_weekday)
        if self.by_month_day:
            data["bymonthday"] = list(self.by_month_day)
        return data

    def describe(self) -> str:
        """
        Human-readable description, e.g. "Every 2 weeks on Monday and Wednesday, 5 times".
        """
        singular, plural = FREQUENCY_UNITS[RecurrenceFrequency(self.frequency)]
        text = f"Every {singular}" if self.interval == 1 else f"Every {self.interval} {plural}"

        if self.by_weekday:
            names = [WEEKDAY_NAMES[day] for day in self.by_weekday]
            joined = names[0] if len(names) == 1 else f"{', '.join(names[:-1])} and {names[-1]}"
            text += f" on {joined}"
        if self.by_month_day:
            text += f" on day {', '.join(map(str, self.by_month_day))}"

        if self.count is not None:
            text += ", 1 time" if self.count == 1 else f", {self.count} times"
        elif self.until is not None:
            text += f", until {self.until.date().isoformat()}"
        return text


@dataclass
class EventSeriesInputData:
    name: str
    recurrence_rule: RecurrenceRuleData
    description: str = ""
    time_zone: str | None = None
    # Exactly one of the two below
    template_event_slug: str | None = None
    template: EventTemplateData | None = None
    template_start_date: datetime.datetime | None = None
    template_end_date: datetime.datetime | None = None


@dataclass
class EventSeriesUpdateData:
    name: str | None = None
    description: str | None = None
    time_zone: str | None = None
    recurrence_rule: RecurrenceRuleData | None = None


@dataclass
class Occurrence:
    date: datetime.datetime
    materialized: bool
    event: Event | None = None


@dataclass
class FutureOccurrencesUpdateResult:
    count: int
    message: str


@dataclass
class EventDeletionFailure:
    event_slug: str
    error: str


@dataclass
class SeriesDeletionResult:
    series_slug: str
    deleted_event_slugs: list[str] = dataclass_field(default_factory=list)
    detached_event_slugs: list[str] = dataclass_field(default_factory=list)
    failures: list[EventDeletionFailure] = dataclass_field(default_factory=list)

    @property
    def is_partial_failure(self) -> bool:
        return bool(self.failures)
