from typing import TypedDict

from rest_framework.viewsets import GenericViewSet


class RouteDict(TypedDict):
    """
    A router registration: URL prefix, viewset and basename used to build URL names
    (e.g. basename "EventSeries" gives "api:EventSeries-list").
    """

    regex: str
    viewset: type[GenericViewSet]
    basename: str
