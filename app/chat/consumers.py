"""
WebSocket consumer for the chat application.

One connection per client session. The consumer never mutates chat state;
it only routes events published by chat.fanout to the socket and keeps
presence in sync with the connection registry.

Consumers:
    ChatConsumer: Handles a user's WebSocket session

Authentication:
    Users are authenticated via JWT (see chat.middleware.JWTAuthMiddleware).
    Unauthenticated connections are closed with code 4001.

Channel Groups:
    user_<id>            joined on connect, receives events for the user
    presence             joined on connect, receives public presence changes
    conversation_<id>    joined on join_conversation after a membership check

Message Types (from client):
    - join_conversation: {"type": "join_conversation", "conversation_id": 1}
    - leave_conversation: {"type": "leave_conversation", "conversation_id": 1}
    - ping: {"type": "ping"}

Message Types (to client):
    - <event>: {"type": "new_message", "data": {...}} for every fan-out event
    - error: {"type": "error", "message": "..."}
    - pong: {"type": "pong"}
"""

from __future__ import annotations

import logging
from collections import deque

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from authentication.services import PresenceService
from chat.constants import PRESENCE_CONFIG, conversation_group, user_group
from chat.fanout import ChatEvent, ConnectionRegistry, get_publisher
from chat.models import Membership

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for one user session.

    Handles:
        - Connection authentication
        - Joining the user's personal room and the presence room
        - Joining/leaving conversation rooms on request
        - Presence transitions on first connect / last disconnect
        - Dropping duplicate deliveries of the same event

    Attributes:
        registry: ConnectionRegistry injected by the ASGI application
        conversation_ids: Conversation rooms this session has joined
    """

    def __init__(self, *args, registry: ConnectionRegistry, **kwargs):
        super().__init__(*args, **kwargs)
        self.registry = registry
        self.user = None
        self.conversation_ids: set[int] = set()
        self._seen_order: deque[str] = deque()
        self._seen: set[str] = set()

    async def connect(self):
        """
        Handle WebSocket connection.

        Rejects anonymous users, joins the personal and presence rooms,
        and marks the user online when this is their first session.
        """
        user = self.scope.get("user")

        if not user or isinstance(user, AnonymousUser) or not user.is_authenticated:
            logger.warning("Rejected unauthenticated websocket connection")
            await self.close(code=4001)
            return

        self.user = user
        await self.channel_layer.group_add(user_group(user.id), self.channel_name)
        await self.channel_layer.group_add(PRESENCE_CONFIG.PRESENCE_GROUP, self.channel_name)
        # Browsers passing the token as a subprotocol require it echoed back
        subprotocol = "jwt" if "jwt" in self.scope.get("subprotocols", []) else None
        await self.accept(subprotocol=subprotocol)

        if self.registry.add(user.id, self.channel_name):
            await self._publish_presence(online=True)

        logger.info(f"User {user.id} connected ({self.channel_name})")

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection.

        Leaves every joined room and marks the user offline when this was
        their last session.
        """
        if self.user is None:
            return

        for conversation_id in list(self.conversation_ids):
            await self.channel_layer.group_discard(
                conversation_group(conversation_id), self.channel_name
            )
        self.conversation_ids.clear()
        await self.channel_layer.group_discard(user_group(self.user.id), self.channel_name)
        await self.channel_layer.group_discard(
            PRESENCE_CONFIG.PRESENCE_GROUP, self.channel_name
        )

        if self.registry.remove(self.user.id, self.channel_name):
            await self._publish_presence(online=False)

        logger.info(f"User {self.user.id} disconnected (code {close_code})")

    async def receive_json(self, content):
        """
        Handle incoming WebSocket frames.

        Args:
            content: Parsed JSON frame from client
        """
        frame_type = content.get("type") if isinstance(content, dict) else None

        if frame_type == "join_conversation":
            await self._handle_join(content)
        elif frame_type == "leave_conversation":
            await self._handle_leave(content)
        elif frame_type == "ping":
            await self.send_json({"type": "pong"})
        else:
            await self._send_error(f"Unknown message type: {frame_type}")

    async def _handle_join(self, content):
        conversation_id = self._conversation_id(content)
        if conversation_id is None:
            await self._send_error("conversation_id is required")
            return

        if not await self._is_active_member(conversation_id):
            logger.warning(
                f"User {self.user.id} tried to join conversation {conversation_id} "
                f"without an active membership"
            )
            await self._send_error("You are not a member of this conversation")
            return

        await self.channel_layer.group_add(
            conversation_group(conversation_id), self.channel_name
        )
        self.conversation_ids.add(conversation_id)
        await self.send_json(
            {"type": "joined_conversation", "data": {"conversation_id": conversation_id}}
        )

    async def _handle_leave(self, content):
        conversation_id = self._conversation_id(content)
        if conversation_id is None:
            await self._send_error("conversation_id is required")
            return
        await self._leave_room(conversation_id)

    async def _leave_room(self, conversation_id: int):
        await self.channel_layer.group_discard(
            conversation_group(conversation_id), self.channel_name
        )
        self.conversation_ids.discard(conversation_id)

    async def chat_event(self, event):
        """
        Handle chat.event messages from the channel layer.

        A session in both a user room and a conversation room receives the
        same event twice; the second copy is dropped by event_id.
        """
        event_id = event.get("event_id")
        if event_id:
            if event_id in self._seen:
                return
            self._remember(event_id)

        event_type = event["event"]
        data = event.get("data", {})

        if event_type == ChatEvent.FORCE_LEAVE:
            conversation_id = data.get("conversation_id")
            if conversation_id is not None:
                await self._leave_room(conversation_id)

        await self.send_json({"type": event_type, "data": data})

    def _remember(self, event_id: str):
        self._seen.add(event_id)
        self._seen_order.append(event_id)
        if len(self._seen_order) > PRESENCE_CONFIG.DEDUP_WINDOW:
            self._seen.discard(self._seen_order.popleft())

    async def _send_error(self, message: str):
        await self.send_json({"type": "error", "message": message})

    @staticmethod
    def _conversation_id(content) -> int | None:
        try:
            return int(content.get("conversation_id"))
        except (TypeError, ValueError):
            return None

    @database_sync_to_async
    def _is_active_member(self, conversation_id: int) -> bool:
        """Check if the user has an active membership in the conversation."""
        return Membership.objects.filter(
            conversation_id=conversation_id,
            user_id=self.user.id,
            deleted_at__isnull=True,
        ).exists()

    @database_sync_to_async
    def _publish_presence(self, online: bool):
        """Persist the presence change and publish it."""
        if online:
            snapshot = PresenceService.set_online(self.user.id)
        else:
            snapshot = PresenceService.set_offline(self.user.id)
        get_publisher().publish_presence(snapshot)
