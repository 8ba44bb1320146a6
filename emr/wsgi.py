"""
WSGI config for the EMR scheduling backend.

Exposes the WSGI callable as ``application`` for servers that do not
need the WebSocket event feed (gunicorn, uwsgi).  Deployments that
serve ``ws/events/`` must use :mod:`emr.asgi` instead.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'emr.settings')

application = get_wsgi_application()
