from rest_framework.permissions import BasePermission

from apps.accounts.models import UserRole


ROLE_CAPABILITIES = {
    UserRole.ADMIN: {
        "customers.view",
        "customers.manage",
        "purchases.view",
        "purchases.create",
        "cards.view",
        "cards.reveal",
        "cards.issue",
        "activity.view",
        "shops.view.all",
    },
    UserRole.SHOPKEEPER: {
        "customers.view",
        "customers.manage",
        "purchases.view",
        "purchases.create",
        "cards.view",
        "cards.reveal",
        "cards.issue",
        "activity.view",
    },
}


def resolve_role(user):
    group_names = set(user.groups.values_list("name", flat=True))
    for role in (UserRole.ADMIN, UserRole.SHOPKEEPER):
        if role in group_names:
            return role
    return getattr(user, "role", UserRole.SHOPKEEPER)


def has_capability(user, capability):
    if user.is_superuser:
        return True
    return capability in ROLE_CAPABILITIES.get(resolve_role(user), set())


class RolePermission(BasePermission):
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        capability_map = getattr(view, "capability_map", {})
        action = getattr(view, "action", request.method.lower())
        required = capability_map.get(action) or capability_map.get(request.method.lower()) or set()
        if not required:
            return True

        return all(has_capability(request.user, cap) for cap in required)


def owned_by(queryset, user, owner_lookup="owner"):
    """Restrict ``queryset`` to rows of customers owned by ``user``; admins see every shop."""
    if has_capability(user, "shops.view.all"):
        return queryset
    return queryset.filter(**{owner_lookup: user})
