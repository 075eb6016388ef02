import datetime
from typing import Protocol

from events.models import Event
from organizations.dataclasses import OrganizationContext


class EventQuery(Protocol):
    def find_by_slug(self, context: OrganizationContext, slug: str) -> Event | None:
        ...

    def find_by_series(
        self,
        context: OrganizationContext,
        series_slug: str,
        start: datetime.datetime | None = None,
        end: datetime.datetime | None = None,
    ) -> list[Event]:
        ...

    def find_at_instant(
        self, context: OrganizationContext, series_slug: str, instant: datetime.datetime
    ) -> Event | None:
        ...
