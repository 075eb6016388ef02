from dataclasses import dataclass

from organizations.models import Organization, OrganizationMembership


@dataclass(frozen=True)
class OrganizationContext:
    """
    Explicit tenant handle passed into every service call.
    """

    organization: Organization

    @property
    def organization_id(self) -> int:
        return self.organization.id

    @classmethod
    def for_user(cls, user) -> "OrganizationContext":
        """
        Build the context from the user's organization membership.
        Raises OrganizationMembership.DoesNotExist when the user has none.
        """
        membership = OrganizationMembership.objects.select_related("organization").get(user=user)
        return cls(organization=membership.organization)
