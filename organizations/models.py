from django.conf import settings
from django.db import models

from common.models import BaseModel
from organizations.managers import BaseOrganizationModelManager


class Organization(BaseModel):
    """
    Represents the tenant that owns event series and events.
    """

    name = models.CharField(max_length=255)

    def __str__(self):
        return self.name


class OrganizationMembership(BaseModel):
    """
    Links a user to the organization whose series and events they work with.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="organization_membership",
    )
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="memberships",
    )

    def __str__(self):
        return f"{self.user} in {self.organization}"


class OrganizationModel(BaseModel):
    """
    Abstract base for rows that belong to exactly one organization.
    Default managers refuse to evaluate querysets that are not filtered by organization.
    """

    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="The organization this model is associated with.",
    )

    objects: BaseOrganizationModelManager = BaseOrganizationModelManager()
    original_manager = models.Manager()

    class Meta:
        abstract = True
