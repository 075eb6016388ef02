import datetime
from typing import TYPE_CHECKING, Any, Protocol

from events.models import Event
from events.services.dataclasses import EventInputData, EventTemplateData
from organizations.dataclasses import OrganizationContext


if TYPE_CHECKING:
    from event_series.models import EventSeries


class EventManagement(Protocol):
    def create(self, context: OrganizationContext, data: EventInputData, actor=None) -> Event:
        ...

    def update(
        self, context: OrganizationContext, slug: str, patch: dict[str, Any], actor=None
    ) -> Event:
        ...

    def create_occurrence_event(
        self,
        context: OrganizationContext,
        series: "EventSeries",
        template: EventTemplateData,
        instant: datetime.datetime,
        duration: datetime.timedelta | None = None,
        actor=None,
    ) -> Event:
        ...

    def link_to_series(
        self,
        context: OrganizationContext,
        event: Event,
        series: "EventSeries",
        start_date: datetime.datetime | None = None,
    ) -> Event:
        ...

    def detach_from_series(self, context: OrganizationContext, series_slug: str) -> list[str]:
        ...

    def delete(self, context: OrganizationContext, slug: str) -> None:
        ...
