from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.tokens import AccessToken

from clinical.models import User
from clinical.realtime.consumers import ClinicalEventsConsumer
from clinical.realtime.middleware import JWTAuthMiddleware
from clinical.services.events import FIREHOSE_GROUP


def test_anonymous_socket_is_closed():
    async def scenario():
        communicator = WebsocketCommunicator(ClinicalEventsConsumer.as_asgi(), "/ws/events/")
        communicator.scope["user"] = AnonymousUser()
        return await communicator.connect()

    connected, code = async_to_sync(scenario)()
    assert not connected
    assert code == 4003


def test_staff_socket_receives_events(nurse, settings):
    settings.CHANNEL_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}

    async def scenario():
        communicator = WebsocketCommunicator(ClinicalEventsConsumer.as_asgi(), "/ws/events/")
        communicator.scope["user"] = nurse
        connected, _ = await communicator.connect()
        assert connected
        welcome = await communicator.receive_json_from()
        await get_channel_layer().group_send(FIREHOSE_GROUP, {
            "type": "clinical.event",
            "subject": "encounter.created",
            "data": {"encounter_id": "e1"},
        })
        event = await communicator.receive_json_from()
        await communicator.disconnect()
        return welcome, event

    welcome, event = async_to_sync(scenario)()
    assert welcome["type"] == "welcome"
    assert event == {"type": "event", "subject": "encounter.created", "data": {"encounter_id": "e1"}}


def _connect_with(path, headers=None):
    async def scenario():
        app = JWTAuthMiddleware(ClinicalEventsConsumer.as_asgi())
        communicator = WebsocketCommunicator(app, path, headers=headers or [])
        communicator.scope["user"] = AnonymousUser()
        connected, code = await communicator.connect()
        if connected:
            await communicator.disconnect()
        return connected, code

    return async_to_sync(scenario)()


# database_sync_to_async closes connections left inside a transaction
def test_bearer_token_opens_socket(transactional_db, settings):
    settings.CHANNEL_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}
    nurse = User.objects.create_user(username="nightnurse", password="x", role="nurse")
    token = str(AccessToken.for_user(nurse))

    connected, _ = _connect_with(f"/ws/events/?token={token}")
    assert connected

    connected, _ = _connect_with("/ws/events/", headers=[(b"authorization", f"Bearer {token}".encode())])
    assert connected


def test_bad_or_roleless_token_is_rejected(transactional_db):
    clerk = User.objects.create_user(username="clerk", password="x", role="")
    assert _connect_with("/ws/events/?token=garbage") == (False, 4003)
    assert _connect_with(f"/ws/events/?token={AccessToken.for_user(clerk)}") == (False, 4003)
