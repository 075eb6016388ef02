from common.types import RouteDict

from .views import EventSeriesViewSet


routes: list[RouteDict] = [
    {
        "regex": r"event-series",
        "viewset": EventSeriesViewSet,
        "basename": "EventSeries",
    },
]
