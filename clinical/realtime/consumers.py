import json

from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from clinical.permissions import STAFF_ROLES
from clinical.services.events import FIREHOSE_GROUP


class ClinicalEventsConsumer(AsyncWebsocketConsumer):
    """Relays committed appointment/encounter events to signed-in staff."""
    GROUP = FIREHOSE_GROUP

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated or getattr(user, "role", None) not in STAFF_ROLES:
            await self.close(code=4003)
            return
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def clinical_event(self, event):
        # event: {"type": "clinical.event", "subject": "...", "data": {...}}
        await self.send(json.dumps({"type": "event", "subject": event["subject"], "data": event["data"]}))
