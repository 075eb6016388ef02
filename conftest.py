import datetime

from django.contrib.auth import get_user_model

import pytest
from model_bakery import baker
from rest_framework.test import APIClient


DEFAULT_TEST_USER_PASSWORD = "test-password-123"  # noqa: S105


@pytest.fixture
def user_password():
    return DEFAULT_TEST_USER_PASSWORD


@pytest.fixture
def organization():
    return baker.make("organizations.Organization", name="Test Organization")


@pytest.fixture
def user(user_password, organization):
    user = get_user_model().objects.create_user(
        username="series-owner", email="owner@example.com", password=user_password
    )
    baker.make("organizations.OrganizationMembership", user=user, organization=organization)
    return user


@pytest.fixture
def other_user(user_password, organization):
    other_user = get_user_model().objects.create_user(
        username="other-member", email="other@example.com", password=user_password
    )
    baker.make("organizations.OrganizationMembership", user=other_user, organization=organization)
    return other_user


@pytest.fixture
def context(organization):
    from organizations.dataclasses import OrganizationContext

    return OrganizationContext(organization=organization)


@pytest.fixture
def auth_client(user, user_password):
    client = APIClient()
    client.login(username=user.username, password=user_password)
    return client


@pytest.fixture
def anonymous_client():
    client = APIClient()
    return client


@pytest.fixture
def di_container():
    """Fixture to create a DI container."""
    from di_core.containers import container

    return container


@pytest.fixture
def recurrence_pattern_service():
    from event_series.services.recurrence_pattern_service import RecurrencePatternService

    return RecurrencePatternService(max_occurrences=500, max_span_years=10)


@pytest.fixture
def event_query_service():
    from events.services.event_query_service import EventQueryService

    return EventQueryService()


@pytest.fixture
def event_management_service():
    from events.services.event_management_service import EventManagementService

    return EventManagementService()


@pytest.fixture
def event_series_service(
    event_query_service, event_management_service, recurrence_pattern_service
):
    from event_series.services.event_series_service import EventSeriesService

    return EventSeriesService(
        event_query_service=event_query_service,
        event_management_service=event_management_service,
        recurrence_pattern_service=recurrence_pattern_service,
    )


@pytest.fixture
def make_series(event_series_service, context, user):
    """
    Create a series with an inline template through the service.
    The template starts at `start` (aware) and lasts `duration`.
    """
    from event_series.services.dataclasses import EventSeriesInputData, RecurrenceRuleData
    from events.services.dataclasses import EventTemplateData

    def _make_series(
        start,
        frequency="WEEKLY",
        time_zone="UTC",
        duration=datetime.timedelta(hours=1),
        name="Weekly Sync",
        actor=None,
        **rule_kwargs,
    ):
        return event_series_service.create(
            context,
            EventSeriesInputData(
                name=name,
                recurrence_rule=RecurrenceRuleData(frequency=frequency, **rule_kwargs),
                time_zone=time_zone,
                template=EventTemplateData(name=name, location="Room 1"),
                template_start_date=start,
                template_end_date=start + duration if duration is not None else None,
            ),
            actor=actor or user,
        )

    return _make_series
