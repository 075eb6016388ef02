class EventSeriesError(Exception):
    """Base exception for event series errors"""

    default_message = ""

    def __init__(self, message: str | None = None):
        if message is None:
            message = self.default_message
        super().__init__(message)


# Validation errors: malformed input, surfaced to the caller as-is
class SeriesValidationError(EventSeriesError):
    default_message = "Invalid event series data."


class InvalidRecurrenceRuleError(SeriesValidationError):
    default_message = "Invalid recurrence rule."


class InvalidTimezoneError(SeriesValidationError):
    def __init__(self, iana_tz: str):
        super().__init__(f"Invalid IANA timezone: {iana_tz}")


class MissingTemplateError(SeriesValidationError):
    default_message = "Exactly one of `template_event_slug` or `template` must be provided."


class InvalidOccurrenceDateError(SeriesValidationError):
    def __init__(self, occurrence_date, series_slug: str):
        super().__init__(
            f"Invalid occurrence date: {occurrence_date} is not part of the recurrence "
            f"pattern of series {series_slug}"
        )


# Not found errors
class SeriesNotFoundError(EventSeriesError):
    default_message = "Not found."


class EventSeriesNotFoundError(SeriesNotFoundError):
    def __init__(self, slug: str):
        super().__init__(f"Event series with slug {slug} not found")


class EventNotFoundError(SeriesNotFoundError):
    def __init__(self, slug: str):
        super().__init__(f"Event with slug {slug} not found")


# Conflicts with existing state
class SeriesConflictError(EventSeriesError):
    default_message = "Conflict with the current state of the series."


class EventAlreadyInSeriesError(SeriesConflictError):
    def __init__(self, event_slug: str, series_slug: str):
        super().__init__(f"Event {event_slug} is already part of series {series_slug}")


class OccurrenceAlreadyMaterializedError(SeriesConflictError):
    def __init__(self, series_slug: str, occurrence_date, event_slug: str):
        super().__init__(
            f"Series {series_slug} already has event {event_slug} at {occurrence_date}"
        )
