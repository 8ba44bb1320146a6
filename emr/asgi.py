"""
ASGI config for the EMR scheduling backend.

Wires both HTTP (Django) and WebSocket (Channels).  The WebSocket side
only carries the clinical event feed published after committed
appointment and encounter changes.  Clients authenticate with the same
bearer token as the REST API (``?token=`` or an Authorization header);
a Django session login also works.
Order matters: configure Django before importing any Django-dependent modules.
"""
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "emr.settings")

import django  # noqa: E402
django.setup()  # noqa: E402

from django.core.asgi import get_asgi_application  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.auth import AuthMiddlewareStack  # noqa: E402
from django.urls import path  # noqa: E402

from clinical.realtime.consumers import ClinicalEventsConsumer  # noqa: E402
from clinical.realtime.middleware import JWTAuthMiddleware  # noqa: E402

django_asgi_app = get_asgi_application()

websocket_urlpatterns = [
    path("ws/events/", ClinicalEventsConsumer.as_asgi()),
]

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AuthMiddlewareStack(JWTAuthMiddleware(URLRouter(websocket_urlpatterns))),
})
