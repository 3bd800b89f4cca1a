"""
Real-time fan-out of chat events.

Services never talk to the websocket transport. They describe what
happened as Event objects and call emit(); the events are published
through the channel layer only after the surrounding transaction
commits, so a rolled-back mutation publishes nothing.

Pieces:
    Event: One event, addressed to user rooms and/or a conversation room
    emit: Queue events for publication on commit
    ChannelLayerPublisher: publish_to_user / publish_to_conversation /
        publish_presence over channels' group_send
    ConnectionRegistry: user -> live channel names, owned by the ASGI app

Delivery is at-most-once. Publish failures are logged and swallowed.

Group naming:
    user_<id>            every session of one user
    conversation_<id>    sessions that joined a conversation
    presence             every session

Channel layer message format:
    {"type": "chat.event", "event": "<name>", "event_id": "<hex>", "data": {...}}
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from authentication.models import Profile
from chat.constants import PRESENCE_CONFIG, conversation_group, user_group
from chat.models import Membership

if TYPE_CHECKING:
    from collections.abc import Iterable

    from authentication.services import PresenceSnapshot
    from chat.models import Conversation, Message

logger = logging.getLogger(__name__)


# =============================================================================
# Event names
# =============================================================================


class ChatEvent:
    """Event names sent to clients as the frame "type"."""

    NEW_MESSAGE = "new_message"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_DELETED = "message_deleted"
    MESSAGE_RECALLED = "message_recalled"
    MESSAGES_READ = "messages_read"
    NEW_CONVERSATION = "new_conversation"
    CONVERSATION_UPDATED = "conversation_updated"
    CONVERSATION_DELETED = "conversation_deleted"
    MEMBERS_ADDED = "members_added"
    MEMBER_LEFT_GROUP = "member_left_group"
    MEMBER_ROLE_UPDATED = "member_role_updated"
    GROUP_DISBANDED = "group_disbanded"
    USER_STATUS_CHANGED = "user_status_changed"
    FORCE_LEAVE = "force_leave"


# =============================================================================
# Events and outbox
# =============================================================================


@dataclass
class Event:
    """
    One state change to push to clients.

    Attributes:
        type: ChatEvent name
        data: JSON-serializable payload
        user_ids: Users whose personal room receives the event
        conversation_id: Conversation room that receives the event, if any
        event_id: Shared by every copy so sessions can drop duplicates
    """

    type: str
    data: dict
    user_ids: list[int] = field(default_factory=list)
    conversation_id: int | None = None
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def emit(*events: Event) -> None:
    """
    Publish events once the current transaction commits.

    Outside a transaction the events are published immediately. If the
    transaction rolls back the callback is discarded.
    """
    events = [event for event in events if event.user_ids or event.conversation_id]
    if not events:
        return
    transaction.on_commit(lambda: _flush(events))


def _flush(events: list[Event]) -> None:
    publisher = get_publisher()
    for event in events:
        publisher.deliver(event)


# =============================================================================
# Publisher
# =============================================================================


class ChannelLayerPublisher:
    """
    Publishes events through the configured channel layer.

    Every group_send is isolated: one failing group does not stop the
    others, and nothing propagates to the caller.
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def deliver(self, event: Event) -> None:
        if event.conversation_id is not None:
            self.publish_to_conversation(
                event.conversation_id, event.type, event.data, event_id=event.event_id
            )
        for user_id in event.user_ids:
            self.publish_to_user(user_id, event.type, event.data, event_id=event.event_id)

    def publish_to_user(self, user_id: int, event_type: str, data: dict, event_id: str | None = None) -> bool:
        return self._send(user_group(user_id), event_type, data, event_id)

    def publish_to_conversation(
        self, conversation_id: int, event_type: str, data: dict, event_id: str | None = None
    ) -> bool:
        return self._send(conversation_group(conversation_id), event_type, data, event_id)

    def publish_presence(self, snapshot: PresenceSnapshot) -> bool:
        """
        Publish an online/offline change according to the user's privacy.

        "everyone" goes to the presence group; "nobody" only reaches the
        user's own sessions.
        """
        if snapshot.show_last_seen == Profile.LastSeenVisibility.EVERYONE:
            group = PRESENCE_CONFIG.PRESENCE_GROUP
        else:
            group = user_group(snapshot.user_id)
        return self._send(group, ChatEvent.USER_STATUS_CHANGED, snapshot.to_payload(), None)

    def _send(self, group: str, event_type: str, data: dict, event_id: str | None) -> bool:
        message = {
            "type": "chat.event",
            "event": event_type,
            "event_id": event_id or uuid.uuid4().hex,
            "data": data,
        }
        try:
            async_to_sync(self.channel_layer.group_send)(group, message)
        except Exception:
            logger.exception(f"Failed to publish {event_type} to {group}")
            return False
        logger.debug(f"Published {event_type} to {group}")
        return True


_publisher: ChannelLayerPublisher | None = None


def get_publisher() -> ChannelLayerPublisher:
    global _publisher
    if _publisher is None:
        _publisher = ChannelLayerPublisher()
    return _publisher


def set_publisher(publisher) -> None:
    """Replace the publisher (tests install a recording one)."""
    global _publisher
    _publisher = publisher


# =============================================================================
# Connection registry
# =============================================================================


class ConnectionRegistry:
    """
    Live websocket sessions per user in this process.

    Constructed once by the ASGI application and handed to ChatConsumer.
    Only used for addressing and presence transitions; the database stays
    the authority for membership.
    """

    def __init__(self):
        self._channels: dict[int, set[str]] = {}

    def add(self, user_id: int, channel_name: str) -> bool:
        """Register a session. Returns True if it is the user's first."""
        channels = self._channels.setdefault(user_id, set())
        first = not channels
        channels.add(channel_name)
        return first

    def remove(self, user_id: int, channel_name: str) -> bool:
        """Drop a session. Returns True if it was the user's last."""
        channels = self._channels.get(user_id)
        if not channels or channel_name not in channels:
            return False
        channels.discard(channel_name)
        if channels:
            return False
        del self._channels[user_id]
        return True

    def channels_for(self, user_id: int) -> frozenset[str]:
        return frozenset(self._channels.get(user_id, ()))

    def is_connected(self, user_id: int) -> bool:
        return bool(self._channels.get(user_id))

    def connected_users(self) -> list[int]:
        return list(self._channels)

    def __len__(self) -> int:
        return sum(len(channels) for channels in self._channels.values())


# =============================================================================
# Payload builders
# =============================================================================


def _iso(value):
    return value.isoformat() if value else None


def message_payload(message: Message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "message_type": message.message_type,
        "content": message.content,
        "reply_to_id": message.reply_to_id,
        "is_forwarded": message.is_forwarded,
        "created_at": _iso(message.created_at),
        "edited_at": _iso(message.edited_at),
    }


def conversation_payload(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "conversation_type": conversation.conversation_type,
        "name": conversation.name,
        "avatar_url": conversation.avatar_url,
        "message_send_policy": conversation.message_send_policy,
        "member_add_policy": conversation.member_add_policy,
        "require_approval": conversation.require_approval,
        "disbanded_at": _iso(conversation.disbanded_at),
        "created_at": _iso(conversation.created_at),
    }


def membership_payload(membership: Membership) -> dict:
    return {
        "user_id": membership.user_id,
        "role": membership.role,
        "joined_at": _iso(membership.joined_at),
    }


def active_member_ids(conversation_id: int, exclude: Iterable[int] = ()) -> list[int]:
    return list(
        Membership.objects.filter(conversation_id=conversation_id, deleted_at__isnull=True)
        .exclude(user_id__in=list(exclude))
        .values_list("user_id", flat=True)
    )
