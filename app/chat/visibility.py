"""
Per-member visibility of conversations and message history.

Each Membership carries two nullable timestamps:
    deleted_at: the conversation is out of the member's list
    hidden_until: messages created at or before this instant are invisible

A message is visible to a member when it is not deleted, is newer than
the member's hidden_until floor, and (if the member was removed) is not
newer than the removal.

Functions here write only the membership rows passed to them; callers
hold the row locks and the transaction.

Usage:
    from chat import visibility

    visibility.hide(membership)  # delete conversation
    visibility.remove(membership, removed_by=actor)  # removal or leave
    restored_ids = visibility.restore_on_activity(conversation)
    messages = visibility.visible_messages(membership)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from django.db.models import Q
from django.utils import timezone

from chat.models import MemberRole, Membership, Message

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from chat.models import Conversation

logger = logging.getLogger(__name__)


def is_active(membership: Membership) -> bool:
    return membership.deleted_at is None


def hide(
    membership: Membership,
    at: datetime | None = None,
    hidden_until: datetime | None = None,
) -> Membership:
    """
    Take the conversation out of the member's list and raise the floor.

    Args:
        membership: Locked membership row
        at: Hide instant (defaults to now)
        hidden_until: Floor to store instead of `at` (disband uses a far-future floor)
    """
    at = at or timezone.now()
    membership.deleted_at = at
    membership.hidden_until = hidden_until or at
    membership.save(update_fields=["deleted_at", "hidden_until", "updated_at"])
    logger.debug(
        f"Membership {membership.id} hidden at {at.isoformat()} "
        f"(user {membership.user_id}, conversation {membership.conversation_id})"
    )
    return membership


def remove(membership: Membership, removed_by=None, at: datetime | None = None) -> Membership:
    """
    Take a member out of a group without raising the floor.

    Used for leave and removal: history up to `at` stays readable, nothing
    after it is. removed_by is None when the member left on their own.
    """
    at = at or timezone.now()
    membership.deleted_at = at
    membership.removed_by = removed_by
    membership.save(update_fields=["deleted_at", "removed_by", "updated_at"])
    logger.debug(
        f"Membership {membership.id} removed at {at.isoformat()} "
        f"(user {membership.user_id}, conversation {membership.conversation_id})"
    )
    return membership


def restore_on_activity(conversation: Conversation, exclude_user_id: int | None = None) -> list[int]:
    """
    Bring hidden single-conversation members back into their lists.

    Only deleted_at is cleared; hidden_until stays, so history from before
    the hide is still invisible. Group conversations are left untouched.

    Returns:
        Ids of the users whose membership was restored
    """
    if not conversation.is_single:
        return []

    hidden = Membership.objects.select_for_update().filter(
        conversation=conversation, deleted_at__isnull=False
    )
    if exclude_user_id is not None:
        hidden = hidden.exclude(user_id=exclude_user_id)

    restored_ids = list(hidden.values_list("user_id", flat=True))
    if restored_ids:
        Membership.objects.filter(
            conversation=conversation, user_id__in=restored_ids
        ).update(deleted_at=None, updated_at=timezone.now())
        logger.info(
            f"Restored conversation {conversation.id} for users {restored_ids}"
        )
    return restored_ids


def readmit(membership: Membership, role: str = MemberRole.MEMBER) -> Membership:
    """
    Re-add a member who left or was removed.

    Clears both deleted_at and hidden_until, so the whole history is
    visible again, and resets the role.
    """
    membership.deleted_at = None
    membership.hidden_until = None
    membership.removed_by = None
    membership.role = role
    membership.joined_at = timezone.now()
    membership.save(
        update_fields=[
            "deleted_at",
            "hidden_until",
            "removed_by",
            "role",
            "joined_at",
            "updated_at",
        ]
    )
    return membership


def visibility_filter(membership: Membership) -> Q:
    """Q object selecting the messages `membership` can see."""
    condition = Q(conversation_id=membership.conversation_id, deleted_at__isnull=True)
    if membership.hidden_until is not None:
        condition &= Q(created_at__gt=membership.hidden_until)
    if membership.deleted_at is not None:
        condition &= Q(created_at__lte=membership.deleted_at)
    return condition


def visible_messages(membership: Membership) -> QuerySet[Message]:
    """Messages visible to the member, oldest first."""
    return Message.objects.filter(visibility_filter(membership)).order_by(
        "created_at", "id"
    )


def is_visible(membership: Membership, message: Message) -> bool:
    """Whether a single loaded message is visible to the member."""
    if message.conversation_id != membership.conversation_id:
        return False
    if message.deleted_at is not None:
        return False
    if membership.hidden_until is not None and message.created_at <= membership.hidden_until:
        return False
    if membership.deleted_at is not None and message.created_at > membership.deleted_at:
        return False
    return True
