from dependency_injector import containers, providers

from event_series.services.event_series_service import EventSeriesService
from event_series.services.recurrence_pattern_service import RecurrencePatternService
from events.services.event_management_service import EventManagementService
from events.services.event_query_service import EventQueryService


class AppContainer(containers.DeclarativeContainer):
    config = providers.Configuration()

    event_query_service = providers.Factory(
        EventQueryService,
    )

    event_management_service = providers.Factory(
        EventManagementService,
    )

    recurrence_pattern_service = providers.Singleton(
        RecurrencePatternService,
        max_occurrences=config.EVENT_SERIES_MAX_OCCURRENCES,
        max_span_years=config.EVENT_SERIES_MAX_SPAN_YEARS,
    )

    event_series_service = providers.Factory(
        EventSeriesService,
        event_query_service=event_query_service,
        event_management_service=event_management_service,
        recurrence_pattern_service=recurrence_pattern_service,
    )


container: AppContainer | None = None  # set during app startup
