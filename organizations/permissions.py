from django.core.exceptions import ObjectDoesNotExist

from rest_framework.permissions import BasePermission

from organizations.models import OrganizationModel


class OrganizationMemberPermission(BasePermission):
    """
    Only members of an organization can reach its rows.
    """

    message = "You must belong to an organization to manage event series."

    def has_permission(self, request, view):
        try:
            return request.user.organization_membership is not None
        except (ObjectDoesNotExist, AttributeError):
            return False

    def has_object_permission(self, request, view, obj):
        try:
            membership = request.user.organization_membership
        except (ObjectDoesNotExist, AttributeError):
            return False
        return (
            isinstance(obj, OrganizationModel)
            and membership.organization_id == obj.organization_id
        )
