import logging

from channels.layers import get_channel_layer
from django.conf import settings
from django.db import DatabaseError, connections
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def healthz(request):
    events = 'disabled'
    if getattr(settings, 'EVENTS_ENABLED', True):
        layer = get_channel_layer()
        events = type(layer).__name__ if layer else 'none'
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        return JsonResponse({'ok': True, 'db': bool(row and row[0] == 1), 'events': events})
    except DatabaseError as e:
        logger.error("health check failed: %s", e)
        return JsonResponse({'ok': False, 'error': str(e), 'events': events}, status=500)
