# civic_core/common/permissions.py

from __future__ import annotations

from typing import Set

from rest_framework.permissions import BasePermission, SAFE_METHODS

# Group/role names (Django auth Group names recommended)
ROLE_ADMIN = "ADMIN"
ROLE_BILLING = "BILLING"
ROLE_SALES = "SALES"
ROLE_READONLY = "READONLY"

ROLE_GROUPS = [ROLE_ADMIN, ROLE_BILLING, ROLE_SALES, ROLE_READONLY]


def _user_roles(user) -> Set[str]:
    """
    Resolve roles from Django groups.

    - superuser / is_staff -> ADMIN
    - authenticated user without any group -> READONLY
    """
    roles: Set[str] = set()

    if not user or not getattr(user, "is_authenticated", False):
        return roles

    if getattr(user, "is_superuser", False) or getattr(user, "is_staff", False):
        roles.add(ROLE_ADMIN)
        return roles

    if hasattr(user, "groups"):
        roles.update(user.groups.values_list("name", flat=True))

    if not roles:
        roles.add(ROLE_READONLY)

    return roles


class BaseRolePermission(BasePermission):
    """
    Role-based access control per viewset action.

    - ADMIN bypass.
    - Unknown SAFE actions fall back to list/retrieve.
    - Unknown unsafe actions fall back to `default_write_roles`.
    """
    message = "You do not have permission to perform this action."

    read_roles = {ROLE_ADMIN, ROLE_BILLING, ROLE_SALES, ROLE_READONLY}
    default_write_roles = {ROLE_ADMIN, ROLE_BILLING}

    # Override in subclasses: dict of action -> set of allowed roles
    allowed_roles_per_action: dict[str, set[str]] = {}

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        roles = _user_roles(user)
        if ROLE_ADMIN in roles:
            return True

        action = getattr(view, "action", None)
        allowed = self.allowed_roles_per_action.get(action) if action else None

        if allowed is None:
            allowed = self.read_roles if request.method in SAFE_METHODS else self.default_write_roles

        return bool(roles & allowed)


class BillingStaffPermission(BaseRolePermission):
    """Default for the API: billing staff write, everybody authenticated reads."""


class SalesPipelinePermission(BaseRolePermission):
    """Leads and draft quotes may also be handled by sales staff."""
    default_write_roles = {ROLE_ADMIN, ROLE_BILLING, ROLE_SALES}
    allowed_roles_per_action = {
        "approve_mandate": {ROLE_ADMIN, ROLE_BILLING},
        "reject_mandate": {ROLE_ADMIN, ROLE_BILLING},
    }
