from django.db.models import Manager

from common.exceptions import OrganizationRequiredError
from organizations.querysets import BaseOrganizationModelQuerySet


class BaseOrganizationModelManager(Manager):
    """
    Base manager for organization-scoped models.
    """

    def get_queryset(self):
        return BaseOrganizationModelQuerySet(self.model, using=self._db)

    def filter_by_organization(self, organization_id: int):
        """
        Filters the queryset by the specified organization ID.
        :param organization_id: ID of the organization to filter by.
        :return: Filtered queryset.
        """
        return self.get_queryset().filter(organization_id=organization_id)

    def get(self, *args, **kwargs):
        return self.get_queryset().get(*args, **kwargs)

    def count(self):
        return self.get_queryset().count()

    def create(self, **kwargs):
        if "organization_id" not in kwargs and "organization" not in kwargs:
            raise OrganizationRequiredError()
        return super().create(**kwargs)
