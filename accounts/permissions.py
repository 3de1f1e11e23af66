from rest_framework.permissions import BasePermission


class RolePermission(BasePermission):
    """
    Base permission class for role-based access control.
    Ensures user is authenticated, active in a flat and holds an allowed role.
    """
    allowed_roles = set()

    def has_permission(self, request, view):
        user = request.user

        if not user or not user.is_authenticated:
            return False

        if not user.is_active:
            return False

        # Every flat-scoped view needs a flat, superusers included
        if user.flat_id is None:
            return False

        # Superusers always bypass role checks
        if user.is_superuser:
            return True

        if getattr(user, "status", None) != "ACTIVE":
            return False

        return getattr(user, "role", None) in self.allowed_roles


class IsFlatAdmin(RolePermission):
    message = "Only flat admins can perform this action."
    allowed_roles = {"ADMIN", "CO_ADMIN"}


class IsActiveFlatmate(RolePermission):
    message = "You must be an active member of a flat to perform this action."
    allowed_roles = {"ADMIN", "CO_ADMIN", "USER"}


class IsSameFlat(BasePermission):
    def has_object_permission(self, request, view, obj):
        return request.user.is_superuser or obj.flat_id == request.user.flat_id
