import datetime
from dataclasses import asdict, dataclass

from events.constants import EventStatus, EventType, EventVisibility


@dataclass
class EventTemplateData:
    """Business fields shared by every occurrence of a series."""

    name: str
    description: str = ""
    type: str = EventType.IN_PERSON  # noqa: A003
    location: str = ""
    location_online: str = ""
    max_attendees: int = 0
    require_approval: bool = False
    approval_question: str = ""
    allow_waitlist: bool = False
    status: str = EventStatus.PUBLISHED
    visibility: str = EventVisibility.PUBLIC

    def as_fields(self) -> dict:
        return asdict(self)


@dataclass
class EventInputData:
    template: EventTemplateData
    start_date: datetime.datetime
    end_date: datetime.datetime | None = None
    time_zone: str = "UTC"
