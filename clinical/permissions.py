"""
Role based access control for staff endpoints.
"""
from rest_framework.permissions import BasePermission, SAFE_METHODS

from .models import User

STAFF_ROLES = {User.ROLE_ADMIN, User.ROLE_PHYSICIAN, User.ROLE_NURSE, User.ROLE_RECEPTIONIST}
CLINICIAN_ROLES = {User.ROLE_ADMIN, User.ROLE_PHYSICIAN, User.ROLE_NURSE}


def _role(request):
    user = getattr(request, "user", None)
    if not (user and user.is_authenticated and user.is_active):
        return None
    return getattr(user, "role", None)


class IsStaffRole(BasePermission):
    """Any active staff account; all staff roles may book appointments."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _role(request) in STAFF_ROLES


class IsClinicianRole(BasePermission):
    """Physicians, nurses and administrators write encounter data; staff may read it."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        role = _role(request)
        if request.method in SAFE_METHODS:
            return role in STAFF_ROLES
        return role in CLINICIAN_ROLES
