"""Recurrence expansion: turning a rule anchored at a local wall-clock time into instants.

Expansion works in the series' local calendar, never in absolute time. The
anchor's wall-clock time is taken once, python-dateutil steps the *naive local*
date-time by frequency and interval (applying BYDAY/BYMONTHDAY filters), and only
then is each local date-time converted to an instant, using the UTC offset valid
at that local date. Adding fixed durations to previous instants would drift by an
hour every time a DST boundary is crossed.

DST policy for local times that do not map to exactly one instant:

- Nonexistent local time (spring-forward gap): resolved with the offset in effect
  before the transition, which lands the instant after the gap, so the result is
  expressed in the post-transition offset. 02:30 on 2023-03-12 in America/New_York
  becomes 03:30 EDT (07:30 UTC).
- Ambiguous local time (fall-back overlap): resolved to the first of the two
  instants. 01:30 on 2023-11-05 in America/New_York becomes 01:30 EDT (05:30 UTC).
"""

import datetime
import logging
import zoneinfo
from collections.abc import Iterable, Iterator
from functools import cached_property

from django.conf import settings

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, YEARLY, rrule

from event_series.constants import (
    DEFAULT_MAX_OCCURRENCES,
    DEFAULT_MAX_SPAN_YEARS,
    RecurrenceFrequency,
)
from event_series.exceptions import InvalidRecurrenceRuleError, InvalidTimezoneError
from event_series.services.dataclasses import RecurrenceRuleData
from events.utils import normalize_instant


logger = logging.getLogger(__name__)


FREQUENCY_MAP = {
    RecurrenceFrequency.DAILY: DAILY,
    RecurrenceFrequency.WEEKLY: WEEKLY,
    RecurrenceFrequency.MONTHLY: MONTHLY,
    RecurrenceFrequency.YEARLY: YEARLY,
}

WEEKDAY_MAP = {"MO": MO, "TU": TU, "WE": WE, "TH": TH, "FR": FR, "SA": SA, "SU": SU}

ExcludeDate = datetime.date | datetime.datetime | str


def get_zone(time_zone: str) -> zoneinfo.ZoneInfo:
    try:
        return zoneinfo.ZoneInfo(time_zone)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise InvalidTimezoneError(time_zone) from e


def localize(local_datetime: datetime.datetime, tz: zoneinfo.ZoneInfo) -> datetime.datetime:
    """
    Attach `tz` to a naive local date-time following the DST policy of this module.
    Returns an aware datetime in `tz`.
    """
    # fold=0: pre-transition offset for gaps, earlier instant for overlaps
    candidate = local_datetime.replace(tzinfo=tz, fold=0)
    round_trip = candidate.astimezone(datetime.UTC).astimezone(tz)
    if round_trip.replace(tzinfo=None) != local_datetime:
        # Wall-clock time inside a spring-forward gap
        return round_trip
    return candidate


def to_local_wall_clock(value: datetime.datetime, tz: zoneinfo.ZoneInfo) -> datetime.datetime:
    """Naive local date-time (whole seconds) for an aware or naive local `value`."""
    if value.tzinfo is not None:
        value = value.astimezone(tz).replace(tzinfo=None)
    return value.replace(microsecond=0)


class OccurrenceExpansion:
    """
    Lazy, restartable sequence of occurrence instants (aware UTC datetimes).

    Each call to iter() steps the rule again from the anchor, so count-bounded rules
    keep their phase, and yields the instants at or after `start_after`. Iteration
    never goes past the safety horizon: `max_occurrences` results from the window
    start and `horizon_end` (local wall clock).
    """

    def __init__(
        self,
        rule: RecurrenceRuleData,
        tz: zoneinfo.ZoneInfo,
        dtstart: datetime.datetime,
        count: int | None,
        until: datetime.datetime | None,
        exclude_dates: frozenset[datetime.date],
        max_occurrences: int,
        horizon_end: datetime.datetime,
        start_after: datetime.datetime | None = None,
    ):
        self.rule = rule
        self.tz = tz
        self.dtstart = dtstart
        self.count = count
        self.until = until
        self.exclude_dates = exclude_dates
        self.max_occurrences = max_occurrences
        self.horizon_end = horizon_end
        self.start_after = start_after

    @property
    def is_bounded(self) -> bool:
        """True when the rule (or the caller) gave an explicit end: count or until."""
        return self.count is not None or self.until is not None

    def _build_rrule(self, local_until: datetime.datetime | None) -> rrule:
        kwargs: dict = {
            "freq": FREQUENCY_MAP[RecurrenceFrequency(self.rule.frequency)],
            "dtstart": self.dtstart,
            "interval": self.rule.interval,
            "wkst": MO,
        }
        if self.rule.by_weekday:
            kwargs["byweekday"] = [WEEKDAY_MAP[day] for day in self.rule.by_weekday]
        if self.rule.by_month_day:
            kwargs["bymonthday"] = list(self.rule.by_month_day)
        if self.count is not None:
            kwargs["count"] = self.count
        else:
            kwargs["until"] = local_until
        return rrule(**kwargs)

    def _local_until(self) -> datetime.datetime | None:
        if self.until is None:
            return None
        return to_local_wall_clock(self.until, self.tz)

    def _in_window(
        self, local_dates: Iterable[datetime.datetime]
    ) -> Iterator[tuple[datetime.datetime, datetime.datetime]]:
        """(local date-time, instant) pairs inside the window, exclusions applied."""
        for local_datetime in local_dates:
            if local_datetime.date() in self.exclude_dates:
                continue
            instant = localize(local_datetime, self.tz).astimezone(datetime.UTC)
            if self.until is not None and instant > self.until:
                return
            if self.start_after is not None and instant < self.start_after:
                continue
            yield local_datetime, instant

    def __iter__(self) -> Iterator[datetime.datetime]:
        if self.count is not None:
            local_dates = self._build_rrule(None)
        else:
            local_until = self._local_until()
            capped_until = (
                self.horizon_end if local_until is None else min(local_until, self.horizon_end)
            )
            local_dates = self._build_rrule(capped_until)

        for emitted, (_, instant) in enumerate(self._in_window(local_dates)):
            if emitted >= self.max_occurrences:
                return
            yield instant

    @cached_property
    def truncated(self) -> bool:
        """
        True when the sequence the caller asked for (explicit count or until) is
        longer than what the safety horizon lets iteration return.
        Open-ended rules are bounded by definition and never report truncation.
        """
        if self.count is not None:
            if self.count <= self.max_occurrences:
                return False
            local_dates = self._build_rrule(None)
        elif self.until is not None:
            local_dates = self._build_rrule(self._local_until())
        else:
            return False

        for emitted, (local_datetime, _) in enumerate(self._in_window(local_dates), start=1):
            if self.count is None and local_datetime > self.horizon_end:
                return True
            if emitted > self.max_occurrences:
                return True
        return False

    def take(self, limit: int) -> list[datetime.datetime]:
        result = []
        for instant in self:
            if len(result) >= limit:
                break
            result.append(instant)
        return result


class RecurrencePatternService:
    """
    Pure recurrence expansion. No I/O, safe to share between threads.
    """

    def __init__(self, max_occurrences: int | None = None, max_span_years: int | None = None):
        self.max_occurrences = max_occurrences or getattr(
            settings, "EVENT_SERIES_MAX_OCCURRENCES", DEFAULT_MAX_OCCURRENCES
        )
        self.max_span_years = max_span_years or getattr(
            settings, "EVENT_SERIES_MAX_SPAN_YEARS", DEFAULT_MAX_SPAN_YEARS
        )

    def _parse_exclude_dates(
        self, exclude_dates: Iterable[ExcludeDate] | None, tz: zoneinfo.ZoneInfo
    ) -> frozenset[datetime.date]:
        parsed = set()
        for value in exclude_dates or ():
            if isinstance(value, str):
                try:
                    value = isoparse(value)
                except ValueError as e:
                    raise InvalidRecurrenceRuleError(f"Invalid excluded date: {value}") from e
            if isinstance(value, datetime.datetime):
                parsed.add(to_local_wall_clock(value, tz).date())
            else:
                parsed.add(value)
        return frozenset(parsed)

    def _build_expansion(
        self,
        rule: RecurrenceRuleData,
        time_zone: str,
        anchor: datetime.datetime,
        count: int | None,
        until: datetime.datetime | None,
        exclude_dates: Iterable[ExcludeDate] | None,
        start_after: datetime.datetime | None,
    ) -> OccurrenceExpansion:
        rule.validate()
        if count is not None and count < 1:
            raise InvalidRecurrenceRuleError("Count must be greater than 0")
        if until is not None and until.tzinfo is None:
            raise InvalidRecurrenceRuleError("'until' must be a timezone-aware instant")
        if start_after is not None and start_after.tzinfo is None:
            raise InvalidRecurrenceRuleError("'start_after' must be a timezone-aware instant")

        tz = get_zone(time_zone)
        dtstart = to_local_wall_clock(anchor, tz)

        if count is not None:
            effective_count, effective_until = count, until
        elif until is not None:
            effective_count, effective_until = None, until
        else:
            effective_count, effective_until = rule.count, rule.until

        # The horizon is measured from the window start, not from the anchor
        horizon_start = dtstart
        if start_after is not None:
            start_after = start_after.astimezone(datetime.UTC)
            horizon_start = max(dtstart, to_local_wall_clock(start_after, tz))

        return OccurrenceExpansion(
            rule=rule,
            tz=tz,
            dtstart=dtstart,
            count=effective_count,
            until=effective_until,
            exclude_dates=self._parse_exclude_dates(exclude_dates, tz),
            max_occurrences=self.max_occurrences,
            horizon_end=horizon_start + relativedelta(years=self.max_span_years),
            start_after=start_after,
        )

    def generate_occurrences(
        self,
        rule: RecurrenceRuleData,
        time_zone: str,
        anchor: datetime.datetime,
        count: int | None = None,
        until: datetime.datetime | None = None,
        exclude_dates: Iterable[ExcludeDate] | None = None,
        start_after: datetime.datetime | None = None,
    ) -> OccurrenceExpansion:
        """
        Expand `rule` anchored at `anchor` in `time_zone`.

        :param rule: the recurrence rule; validated before expanding.
        :param time_zone: IANA timezone the rule is evaluated in.
        :param anchor: first occurrence; naive values are local wall-clock time in
            `time_zone`, aware values are converted to it.
        :param count: overrides the rule's count.
        :param until: overrides the rule's until (aware instant, inclusive).
        :param exclude_dates: local calendar dates to skip.
        :param start_after: window start (aware instant, inclusive). Earlier occurrences
            are stepped over, still consuming `count`, and the safety horizon is
            measured from here.
        :return: a lazy, restartable OccurrenceExpansion of aware UTC instants.
        """
        expansion = self._build_expansion(
            rule, time_zone, anchor, count, until, exclude_dates, start_after
        )
        if expansion.truncated:
            logger.warning(
                "Recurrence %s anchored at %s (%s) exceeds the expansion horizon of %s "
                "occurrences / %s years; results are truncated",
                rule.describe(),
                expansion.dtstart.isoformat(),
                time_zone,
                self.max_occurrences,
                self.max_span_years,
            )
        return expansion

    def localize(self, local_datetime: datetime.datetime, time_zone: str) -> datetime.datetime:
        """Aware datetime in `time_zone` for a naive wall-clock time, applying the DST policy."""
        return localize(local_datetime.replace(microsecond=0), get_zone(time_zone))

    def resolve_local_date(
        self, occurrence_date: datetime.date, time_zone: str, anchor: datetime.datetime
    ) -> datetime.datetime:
        """
        Instant of `occurrence_date` at the anchor's local wall-clock time in `time_zone`.
        Used to turn a calendar date (YYYY-MM-DD) into an occurrence instant.
        """
        tz = get_zone(time_zone)
        local_time = to_local_wall_clock(anchor, tz).time()
        local_datetime = datetime.datetime.combine(occurrence_date, local_time)
        return localize(local_datetime, tz).astimezone(datetime.UTC)

    def is_date_in_recurrence_pattern(
        self,
        instant: datetime.datetime,
        rule: RecurrenceRuleData,
        time_zone: str,
        anchor: datetime.datetime,
        exclude_dates: Iterable[ExcludeDate] | None = None,
    ) -> bool:
        """
        True when `instant` (compared with whole-second precision) is one of the
        occurrences generated for `rule`, however far it is from the anchor.
        """
        target = normalize_instant(instant)
        expansion = self._build_expansion(
            rule, time_zone, anchor, None, None, exclude_dates, start_after=target
        )
        return next(iter(expansion), None) == target
