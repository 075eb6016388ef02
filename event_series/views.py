from typing import Annotated

from dependency_injector.wiring import Provide, inject
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.exceptions import APIException, NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.utils.view_utils import OrganizationModelViewSet
from event_series.exceptions import (
    SeriesConflictError,
    SeriesNotFoundError,
    SeriesValidationError,
)
from event_series.models import EventSeries
from event_series.serializers import (
    AddEventSerializer,
    EventSeriesCreateSerializer,
    EventSeriesListQuerySerializer,
    EventSeriesSerializer,
    EventSeriesUpdateSerializer,
    EventSummarySerializer,
    FutureOccurrencesUpdateResultSerializer,
    FutureOccurrencesUpdateSerializer,
    OccurrenceDateField,
    OccurrenceListQuerySerializer,
    OccurrenceSerializer,
    SeriesDeleteQuerySerializer,
    SeriesDeletionResultSerializer,
)
from event_series.services.event_series_service import EventSeriesService
from organizations.dataclasses import OrganizationContext
from organizations.models import OrganizationMembership
from organizations.permissions import OrganizationMemberPermission


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict with the current state of the series."
    default_code = "conflict"


class EventSeriesViewSet(OrganizationModelViewSet):
    """
    ViewSet for managing event series and their occurrences.
    """

    permission_classes = (IsAuthenticated, OrganizationMemberPermission)
    queryset = EventSeries.original_manager.none()
    serializer_class = EventSeriesSerializer
    create_serializer_class = EventSeriesCreateSerializer
    update_serializer_class = EventSeriesUpdateSerializer
    lookup_field = "slug"
    lookup_value_converter = "slug"
    http_method_names = ("get", "post", "patch", "delete", "head", "options")

    @inject
    def get_event_series_service(
        self,
        event_series_service: Annotated[
            "EventSeriesService", Provide["event_series_service"]
        ],
    ) -> EventSeriesService:
        return event_series_service

    def get_organization_context(self) -> OrganizationContext:
        return OrganizationContext.for_user(self.request.user)

    def get_queryset(self):
        """Series of the user's organization."""
        user = self.request.user
        if getattr(self, "swagger_fake_view", False) or not user.is_authenticated:
            return EventSeries.original_manager.none()

        try:
            context = self.get_organization_context()
        except OrganizationMembership.DoesNotExist:
            return EventSeries.original_manager.none()

        created_by = None
        if self.action == "list":
            query = EventSeriesListQuerySerializer(data=self.request.query_params)
            query.is_valid(raise_exception=True)
            if query.validated_data["mine"]:
                created_by = user
        return self.get_event_series_service().list_series(context, created_by=created_by)

    def handle_exception(self, exc):
        if isinstance(exc, SeriesValidationError):
            exc = ValidationError(str(exc))
        elif isinstance(exc, SeriesNotFoundError):
            exc = NotFound(str(exc))
        elif isinstance(exc, SeriesConflictError):
            exc = Conflict(str(exc))
        return super().handle_exception(exc)

    @extend_schema(
        parameters=[
            OpenApiParameter(
                name="mine",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Only series created by the current user",
                required=False,
            ),
        ],
    )
    def list(self, request, *args, **kwargs):  # noqa: A003
        return super().list(request, *args, **kwargs)

    @extend_schema(
        summary="Delete an event series",
        parameters=[
            OpenApiParameter(
                name="delete_events",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Also delete the materialized events instead of detaching them",
                required=False,
            ),
        ],
        responses={200: SeriesDeletionResultSerializer},
    )
    def destroy(self, request, *args, **kwargs):
        query = SeriesDeleteQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = self.get_event_series_service().delete_series(
            self.get_organization_context(),
            kwargs["slug"],
            request.user,
            delete_events=query.validated_data["delete_events"],
        )
        return Response(SeriesDeletionResultSerializer(result).data, status=status.HTTP_200_OK)

    @extend_schema(
        summary="List occurrences",
        description="Upcoming occurrences of the series, materialized or not, in ascending order.",
        parameters=[
            OpenApiParameter(
                name="count",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Number of occurrences to return (capped at 50)",
                required=False,
            ),
            OpenApiParameter(
                name="include_past",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Start at the first occurrence instead of the beginning of today",
                required=False,
            ),
        ],
        responses={200: OccurrenceSerializer(many=True)},
    )
    @action(methods=["get"], detail=True, url_path="occurrences", url_name="occurrences")
    def occurrences(self, request, slug=None):
        query = OccurrenceListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        occurrences = self.get_event_series_service().get_occurrences(
            self.get_organization_context(),
            slug,
            count=query.validated_data.get("count"),
            include_past=query.validated_data["include_past"],
        )
        return Response(OccurrenceSerializer(occurrences, many=True).data)

    @extend_schema(
        summary="Get or materialize an occurrence",
        description="Returns the event of the occurrence on the given date, creating it from "
        "the series template when needed.",
        request=None,
        responses={200: EventSummarySerializer},
    )
    @action(
        methods=["post"],
        detail=True,
        url_path="occurrences/<str:occurrence_date>",
        url_name="materialize-occurrence",
    )
    def materialize_occurrence(self, request, slug=None, occurrence_date=None):
        occurrence_date = OccurrenceDateField().run_validation(occurrence_date)

        event = self.get_event_series_service().get_or_materialize_occurrence(
            self.get_organization_context(), slug, occurrence_date, actor=request.user
        )
        return Response(EventSummarySerializer(event).data)

    @extend_schema(
        summary="Materialize the next occurrence",
        request=None,
        responses={200: EventSummarySerializer, 204: None},
    )
    @action(methods=["post"], detail=True, url_path="next-occurrence", url_name="next-occurrence")
    def next_occurrence(self, request, slug=None):
        event = self.get_event_series_service().materialize_next_occurrence(
            self.get_organization_context(), slug, actor=request.user
        )
        if event is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(EventSummarySerializer(event).data)

    @extend_schema(
        summary="Update this and future occurrences",
        request=FutureOccurrencesUpdateSerializer,
        responses={200: FutureOccurrencesUpdateResultSerializer},
    )
    @action(
        methods=["post"],
        detail=True,
        url_path="future-from/<str:from_date>",
        url_name="future-from",
    )
    def future_from(self, request, slug=None, from_date=None):
        from_date = OccurrenceDateField().run_validation(from_date)
        serializer = FutureOccurrencesUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.get_event_series_service().update_future_occurrences_from(
            self.get_organization_context(),
            slug,
            from_date,
            serializer.validated_data,
            actor=request.user,
        )
        return Response(FutureOccurrencesUpdateResultSerializer(result).data)

    @extend_schema(
        summary="Add an existing event to the series",
        request=AddEventSerializer,
        responses={200: EventSummarySerializer},
    )
    @action(methods=["post"], detail=True, url_path="events", url_name="events")
    def add_event(self, request, slug=None):
        serializer = AddEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = self.get_event_series_service().add_event(
            self.get_organization_context(),
            slug,
            serializer.validated_data["event_slug"],
            occurrence_date=serializer.validated_data.get("date"),
            actor=request.user,
        )
        return Response(EventSummarySerializer(event).data)
