"""
Tests for the chat WebSocket consumer and JWT middleware.

Covers:
- Connection authentication (scope user and JWT query string)
- Presence transitions on first connect and last disconnect
- join_conversation membership check, leave_conversation, ping
- Event delivery, duplicate suppression and forced room leave
"""

import pytest
import pytest_asyncio
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from rest_framework_simplejwt.tokens import RefreshToken

from chat.constants import conversation_group, user_group
from chat.consumers import ChatConsumer
from chat.fanout import ConnectionRegistry
from chat.middleware import JWTAuthMiddleware

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]


@pytest_asyncio.fixture
async def layer():
    channel_layer = get_channel_layer()
    await channel_layer.flush()
    yield channel_layer
    await channel_layer.flush()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def connect(registry, layer):
    """Open a communicator with the given user already on the scope."""

    async def _connect(user):
        communicator = WebsocketCommunicator(
            ChatConsumer.as_asgi(registry=registry), "/ws/chat/"
        )
        communicator.scope["user"] = user
        connected, _ = await communicator.connect()
        assert connected
        return communicator

    return _connect


def chat_event(event, data, event_id="evt-1"):
    return {"type": "chat.event", "event": event, "event_id": event_id, "data": data}


# =============================================================================
# Authentication
# =============================================================================


class TestAuthentication:
    async def test_anonymous_connection_is_closed(self, registry, layer):
        communicator = WebsocketCommunicator(ChatConsumer.as_asgi(registry=registry), "/ws/chat/")

        connected, code = await communicator.connect()

        assert connected is False
        assert code == 4001

    async def test_jwt_query_string(self, registry, layer, alice, publisher):
        token = str(RefreshToken.for_user(alice).access_token)
        application = JWTAuthMiddleware(ChatConsumer.as_asgi(registry=registry))
        communicator = WebsocketCommunicator(application, f"/ws/chat/?token={token}")

        connected, _ = await communicator.connect()

        assert connected is True
        assert registry.is_connected(alice.id)
        await communicator.disconnect()

    async def test_jwt_subprotocol_is_echoed(self, registry, layer, alice, publisher):
        token = str(RefreshToken.for_user(alice).access_token)
        application = JWTAuthMiddleware(ChatConsumer.as_asgi(registry=registry))
        communicator = WebsocketCommunicator(
            application, "/ws/chat/", subprotocols=["jwt", token]
        )

        connected, subprotocol = await communicator.connect()

        assert connected is True
        assert subprotocol == "jwt"
        await communicator.disconnect()

    async def test_invalid_token_is_rejected(self, registry, layer):
        application = JWTAuthMiddleware(ChatConsumer.as_asgi(registry=registry))
        communicator = WebsocketCommunicator(application, "/ws/chat/?token=not-a-jwt")

        connected, code = await communicator.connect()

        assert connected is False
        assert code == 4001


# =============================================================================
# Presence
# =============================================================================


class TestPresence:
    async def test_online_once_offline_once(self, connect, alice, publisher):
        """
        Why it matters: A second tab must not re-announce the user, and
        closing one of two tabs must not mark them offline.
        """
        first = await connect(alice)
        second = await connect(alice)

        assert [s.is_online for s in publisher.presence] == [True]

        await first.disconnect()
        assert [s.is_online for s in publisher.presence] == [True]

        await second.disconnect()
        assert [s.is_online for s in publisher.presence] == [True, False]

    async def test_registries_are_not_shared(self, connect, registry, alice, publisher):
        """
        Why it matters: Each application owns its registry; sessions
        tracked by one must never leak into another.
        """
        other = ConnectionRegistry()
        communicator = await connect(alice)

        assert registry.is_connected(alice.id)
        assert not other.is_connected(alice.id)
        await communicator.disconnect()

    async def test_registry_must_be_injected(self):
        with pytest.raises(TypeError):
            ChatConsumer()


# =============================================================================
# Frames from the client
# =============================================================================


class TestClientFrames:
    async def test_ping(self, connect, alice, publisher):
        communicator = await connect(alice)

        await communicator.send_json_to({"type": "ping"})

        assert await communicator.receive_json_from() == {"type": "pong"}
        await communicator.disconnect()

    async def test_unknown_frame(self, connect, alice, publisher):
        communicator = await connect(alice)

        await communicator.send_json_to({"type": "dance"})

        assert await communicator.receive_json_from() == {
            "type": "error",
            "message": "Unknown message type: dance",
        }
        await communicator.disconnect()

    async def test_join_requires_conversation_id(self, connect, alice, publisher):
        communicator = await connect(alice)

        await communicator.send_json_to({"type": "join_conversation"})

        response = await communicator.receive_json_from()
        assert response == {"type": "error", "message": "conversation_id is required"}
        await communicator.disconnect()

    async def test_join_requires_active_membership(self, connect, publisher, group, dave, layer):
        communicator = await connect(dave)

        await communicator.send_json_to({"type": "join_conversation", "conversation_id": group.id})
        response = await communicator.receive_json_from()

        assert response["type"] == "error"
        await layer.group_send(
            conversation_group(group.id), chat_event("new_message", {"id": 1})
        )
        assert await communicator.receive_nothing()
        await communicator.disconnect()

    async def test_join_then_receive_room_events(self, connect, publisher, group, bob, layer):
        communicator = await connect(bob)

        await communicator.send_json_to({"type": "join_conversation", "conversation_id": group.id})
        assert await communicator.receive_json_from() == {
            "type": "joined_conversation",
            "data": {"conversation_id": group.id},
        }

        await layer.group_send(
            conversation_group(group.id), chat_event("message_updated", {"id": 3})
        )
        assert await communicator.receive_json_from() == {
            "type": "message_updated",
            "data": {"id": 3},
        }
        await communicator.disconnect()

    async def test_leave_conversation(self, connect, publisher, group, bob, layer):
        communicator = await connect(bob)
        await communicator.send_json_to({"type": "join_conversation", "conversation_id": group.id})
        await communicator.receive_json_from()

        await communicator.send_json_to({"type": "leave_conversation", "conversation_id": group.id})
        await communicator.send_json_to({"type": "ping"})
        assert await communicator.receive_json_from() == {"type": "pong"}
        await layer.group_send(
            conversation_group(group.id), chat_event("message_updated", {"id": 3})
        )

        assert await communicator.receive_nothing()
        await communicator.disconnect()


# =============================================================================
# Events from the channel layer
# =============================================================================


class TestEventDelivery:
    async def test_duplicate_event_is_dropped(self, connect, publisher, group, bob, layer):
        """
        Why it matters: A session in both its user room and the
        conversation room gets every message twice from the layer.
        """
        communicator = await connect(bob)
        await communicator.send_json_to({"type": "join_conversation", "conversation_id": group.id})
        await communicator.receive_json_from()

        event = chat_event("new_message", {"id": 9}, event_id="same")
        await layer.group_send(conversation_group(group.id), event)
        await layer.group_send(user_group(bob.id), event)

        assert await communicator.receive_json_from() == {"type": "new_message", "data": {"id": 9}}
        assert await communicator.receive_nothing()
        await communicator.disconnect()

    async def test_force_leave_drops_room(self, connect, publisher, group, bob, layer):
        communicator = await connect(bob)
        await communicator.send_json_to({"type": "join_conversation", "conversation_id": group.id})
        await communicator.receive_json_from()

        await layer.group_send(
            user_group(bob.id),
            chat_event("force_leave", {"conversation_id": group.id}, event_id="kick"),
        )
        assert await communicator.receive_json_from() == {
            "type": "force_leave",
            "data": {"conversation_id": group.id},
        }

        await layer.group_send(
            conversation_group(group.id),
            chat_event("new_message", {"id": 10}, event_id="after-kick"),
        )
        assert await communicator.receive_nothing()
        await communicator.disconnect()
