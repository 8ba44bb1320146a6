"""
Bearer-token authentication for the event socket.

Browsers cannot set headers on a WebSocket handshake, so the access
token is read from ``?token=`` first and from an ``Authorization:
Bearer`` header second.  Tokens are verified the same way as on the
REST API (:class:`clinical.authentication.StaffJWTAuthentication`).
Without a usable token the session user set by ``AuthMiddlewareStack``
is left in place.
"""
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.exceptions import InvalidToken

from clinical.authentication import StaffJWTAuthentication


def _raw_token(scope):
    query = parse_qs(scope.get("query_string", b"").decode("latin1"))
    if query.get("token"):
        return query["token"][0]
    for name, value in scope.get("headers", []):
        if name == b"authorization":
            parts = value.decode("latin1").split()
            if len(parts) == 2 and parts[0] == "Bearer":
                return parts[1]
    return None


@database_sync_to_async
def _user_for_token(raw):
    auth = StaffJWTAuthentication()
    try:
        return auth.get_user(auth.get_validated_token(raw))
    except (InvalidToken, AuthenticationFailed):
        return None


class JWTAuthMiddleware(BaseMiddleware):
    async def __call__(self, scope, receive, send):
        raw = _raw_token(scope)
        if raw:
            user = await _user_for_token(raw)
            if user is not None:
                scope = dict(scope, user=user)
        return await super().__call__(scope, receive, send)
