"""
Unread counts and read markers.

The unread count for a member is the number of visible messages, not
authored by the member, that come strictly after the member's
last_read_message in (created_at, id) order.

When the marker is missing from that timeline (it predates the
hidden_until floor, was deleted, or is the member's own message) the
whole timeline counts as unread.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db.models import Q
from django.utils import timezone

from chat.constants import MEMBERSHIP_CONFIG
from chat.models import DeliveryState, DeliveryStatus, Message
from chat.visibility import visible_messages

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from chat.models import Membership

logger = logging.getLogger(__name__)


def unread_timeline(membership: Membership) -> QuerySet[Message]:
    """Visible messages from others (including system messages), oldest first."""
    return visible_messages(membership).exclude(sender_id=membership.user_id)


def unread_count(membership: Membership) -> int:
    timeline = unread_timeline(membership)
    if membership.last_read_message_id is None:
        return timeline.count()

    marker = (
        timeline.filter(pk=membership.last_read_message_id)
        .values("id", "created_at")
        .first()
    )
    if marker is None:
        return timeline.count()

    return timeline.filter(
        Q(created_at__gt=marker["created_at"])
        | Q(created_at=marker["created_at"], id__gt=marker["id"])
    ).count()


def format_unread(count: int) -> int | str:
    """Badge value: the count itself, or "99+" above the cap."""
    if count > MEMBERSHIP_CONFIG.UNREAD_DISPLAY_CAP:
        return f"{MEMBERSHIP_CONFIG.UNREAD_DISPLAY_CAP}+"
    return count


def latest_readable(membership: Membership) -> Message | None:
    """Most recent visible message the member did not author."""
    return unread_timeline(membership).order_by("-created_at", "-id").first()


def is_at_least_as_recent(message: Message, marker: Message | None) -> bool:
    if marker is None:
        return True
    return (message.created_at, message.id) >= (marker.created_at, marker.id)


def advance_marker(membership: Membership, message: Message) -> bool:
    """
    Move last_read_message forward to `message`.

    Never moves the marker backwards. Returns True when it moved.
    """
    if not is_at_least_as_recent(message, membership.last_read_message):
        return False
    return set_marker(membership, message)


def set_marker(membership: Membership, message: Message) -> bool:
    """
    Point last_read_message at `message` regardless of direction.

    Used by mark-all-read, where the current marker may be newer than the
    latest readable message (recalled, or the member's own message).
    """
    if membership.last_read_message_id == message.id:
        return False
    membership.last_read_message = message
    membership.save(update_fields=["last_read_message", "updated_at"])
    return True


def record_read_receipt(message: Message, user_id: int) -> DeliveryStatus:
    """
    Upsert a read DeliveryStatus for (message, user).

    An existing row only moves forward; a row already at read is left as is.
    """
    receipt, created = DeliveryStatus.objects.get_or_create(
        message=message,
        user_id=user_id,
        defaults={"status": DeliveryState.READ, "status_at": timezone.now()},
    )
    if not created and receipt.status != DeliveryState.READ:
        receipt.status = DeliveryState.READ
        receipt.status_at = timezone.now()
        receipt.save(update_fields=["status", "status_at"])
    return receipt
