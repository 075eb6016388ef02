import datetime

from django.core.exceptions import ImproperlyConfigured

import pytest
from model_bakery import baker

from common.exceptions import OrganizationRequiredError
from events.models import Event
from organizations.dataclasses import OrganizationContext
from organizations.models import OrganizationMembership


@pytest.mark.django_db
class TestOrganizationModelQuerySet:
    """Tenant filtering enforced by the organization model managers."""

    @pytest.fixture
    def event(self, organization):
        return baker.make(
            Event,
            organization=organization,
            name="Standup",
            start_date=datetime.datetime(2025, 1, 6, 9, tzinfo=datetime.UTC),
        )

    def test_unfiltered_queryset_cannot_be_evaluated(self, event):
        with pytest.raises(ImproperlyConfigured):
            list(Event.objects.all())

        with pytest.raises(ImproperlyConfigured):
            Event.objects.filter(name="Standup").exists()

        with pytest.raises(ImproperlyConfigured):
            Event.objects.get(slug=event.slug)

    def test_filtered_queryset_only_returns_organization_rows(self, event):
        other_organization = baker.make("organizations.Organization")
        baker.make(
            Event,
            organization=other_organization,
            start_date=datetime.datetime(2025, 1, 6, 9, tzinfo=datetime.UTC),
        )

        assert list(Event.objects.filter_by_organization(event.organization_id)) == [event]
        assert Event.objects.filter_by_organization(other_organization.id).count() == 1
        assert Event.objects.get(organization_id=event.organization_id, slug=event.slug) == event

    def test_create_requires_organization(self):
        with pytest.raises(OrganizationRequiredError):
            Event.objects.create(
                name="Orphan", start_date=datetime.datetime(2025, 1, 6, tzinfo=datetime.UTC)
            )

    def test_organization_cannot_be_updated_in_bulk(self, event):
        other_organization = baker.make("organizations.Organization")

        with pytest.raises(ValueError):
            Event.objects.filter_by_organization(event.organization_id).update(
                organization=other_organization
            )


@pytest.mark.django_db
def test_context_for_user(user, organization):
    context = OrganizationContext.for_user(user)

    assert context.organization == organization
    assert context.organization_id == organization.id


@pytest.mark.django_db
def test_context_for_user_without_membership():
    user = baker.make("auth.User")

    with pytest.raises(OrganizationMembership.DoesNotExist):
        OrganizationContext.for_user(user)
