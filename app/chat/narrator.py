"""
System messages for group lifecycle events.

Every membership or group change that other members should see in the
timeline is recorded as a Message with message_type=system, the acting user as
sender, and JSON content {"event": ..., "data": {...}}. The message is pushed
to the active members' personal rooms after commit, optionally skipping
one user (the one who left or was removed).

Usage:
    from chat.narrator import Narrator

    Narrator.narrate(
        conversation,
        SystemMessageEvent.MEMBER_LEFT,
        {"user_id": user.id},
        actor=user,
        exclude_user_id=user.id,
    )

    text = format_system_message(message)  # "alice left the group"
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from authentication.models import User
from chat.fanout import ChatEvent, Event, active_member_ids, emit, message_payload
from chat.models import MemberRole, Message, MessageType, SystemMessageEvent

if TYPE_CHECKING:
    from chat.models import Conversation

logger = logging.getLogger(__name__)


class Narrator:
    """Creates and fans out system messages."""

    @classmethod
    def narrate(
        cls,
        conversation: Conversation,
        event: str,
        data: dict,
        actor: User | None = None,
        exclude_user_id: int | None = None,
    ) -> Message:
        """
        Persist a system message and queue its delivery.

        Must run inside the caller's transaction so the message and its
        delivery roll back with the mutation.

        Args:
            conversation: Conversation the event happened in
            event: SystemMessageEvent name
            data: Event data (user ids, roles, names)
            actor: User who caused the event; stored as sender so the event
                never counts as unread for them
            exclude_user_id: Active member who should not receive the push

        Returns:
            The created system message
        """
        message = Message.objects.create(
            conversation=conversation,
            sender=actor,
            message_type=MessageType.SYSTEM,
            content=json.dumps({"event": event, "data": data}),
        )
        conversation.last_message_at = message.created_at
        conversation.save(update_fields=["last_message_at", "updated_at"])

        exclude = [exclude_user_id] if exclude_user_id is not None else []
        recipients = active_member_ids(conversation.id, exclude=exclude)
        payload = message_payload(message)
        payload["display_text"] = format_system_message(message)
        emit(Event(ChatEvent.NEW_MESSAGE, payload, user_ids=recipients))

        logger.info(
            f"System message {message.id} ({event}) in conversation {conversation.id}"
        )
        return message


# =============================================================================
# Rendering
# =============================================================================


def _join(names: list[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return f"{', '.join(names[:-1])} and {names[-1]}"


def describe(event: str, data: dict, names: dict[int, str]) -> str:
    """
    Human-readable text for a system event.

    Args:
        event: SystemMessageEvent name
        data: Event data as stored in the message
        names: user id -> display name for every id the data mentions
    """

    def name(user_id):
        return names.get(user_id, "Someone")

    actor = name(data.get("actor_id"))
    target = name(data.get("user_id"))

    if event == SystemMessageEvent.GROUP_CREATED:
        invited = _join([name(uid) for uid in data.get("user_ids", [])])
        return f"{actor} created the group and invited {invited}"
    if event == SystemMessageEvent.MEMBERS_ADDED:
        return f"{actor} added {_join([name(uid) for uid in data.get('user_ids', [])])}"
    if event == SystemMessageEvent.MEMBER_REMOVED:
        return f"{actor} removed {target}"
    if event == SystemMessageEvent.MEMBER_LEFT:
        return f"{target} left the group"
    if event == SystemMessageEvent.ROLE_CHANGED:
        if data.get("new_role") == MemberRole.ADMIN:
            return f"{actor} made {target} an admin"
        return f"{actor} removed {target} as admin"
    if event == SystemMessageEvent.OWNERSHIP_TRANSFERRED:
        return f"{actor} transferred ownership to {target}"
    if event == SystemMessageEvent.GROUP_UPDATED:
        if data.get("name"):
            return f'{actor} renamed the group to "{data["name"]}"'
        return f"{actor} changed the group photo"
    if event == SystemMessageEvent.GROUP_DISBANDED:
        return f"{actor} disbanded the group"
    return ""


def mentioned_user_ids(data: dict) -> set[int]:
    ids = set(data.get("user_ids", []))
    for key in ("actor_id", "user_id"):
        if data.get(key) is not None:
            ids.add(data[key])
    return ids


def format_system_message(message: Message, names: dict[int, str] | None = None) -> str:
    """
    Render a system message for display.

    Looks up display names for the users the event mentions unless
    `names` already provides them. Returns "" for non-system messages.
    """
    parsed = message.get_system_event()
    if not parsed:
        return ""
    data = parsed.get("data", {})
    if names is None:
        users = User.objects.filter(id__in=mentioned_user_ids(data)).select_related("profile")
        names = {user.id: user.display_name for user in users}
    return describe(parsed.get("event", ""), data, names)
