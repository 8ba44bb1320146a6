"""
Bearer token authentication for staff.

Tokens are issued by the hospital's identity service and verified here
with ``djangorestframework-simplejwt``; this backend never issues or
refreshes tokens itself.  The subclass only adds the check that the
resolved account carries a staff role, so that a valid token for a
role-less account is treated as unauthenticated rather than reaching
the permission layer.
"""
from __future__ import annotations

from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import AuthenticationFailed


class StaffJWTAuthentication(JWTAuthentication):
    def get_user(self, validated_token):
        user = super().get_user(validated_token)
        if not getattr(user, 'role', None):
            raise AuthenticationFailed('account has no staff role', code='no_role')
        return user
