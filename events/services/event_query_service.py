import datetime
import logging

from events.models import Event
from events.utils import normalize_instant
from organizations.dataclasses import OrganizationContext


logger = logging.getLogger(__name__)


class EventQueryService:
    """
    Read side of the events collaborator. Every lookup is scoped to the context's organization.
    """

    def _queryset(self, context: OrganizationContext):
        return Event.objects.filter_by_organization(context.organization_id)

    def find_by_slug(self, context: OrganizationContext, slug: str) -> Event | None:
        return self._queryset(context).filter(slug=slug).first()

    def find_by_series(
        self,
        context: OrganizationContext,
        series_slug: str,
        start: datetime.datetime | None = None,
        end: datetime.datetime | None = None,
    ) -> list[Event]:
        """
        Materialized events of a series ordered by start date.
        `start` is inclusive and `end` is exclusive.
        """
        qs = self._queryset(context).filter(series_id=series_slug)
        if start is not None:
            qs = qs.filter(start_date__gte=start)
        if end is not None:
            qs = qs.filter(start_date__lt=end)
        events = list(qs.order_by("start_date", "id"))
        logger.debug("Found %s events for series %s", len(events), series_slug)
        return events

    def find_at_instant(
        self, context: OrganizationContext, series_slug: str, instant: datetime.datetime
    ) -> Event | None:
        return (
            self._queryset(context)
            .filter(series_id=series_slug, start_date=normalize_instant(instant))
            .first()
        )
