"""
Tests for unread counts, read markers and read receipts.
"""

import pytest

from chat import unread, visibility
from chat.models import DeliveryState, DeliveryStatus, MemberRole
from chat.tests.factories import (
    ConversationFactory,
    MembershipFactory,
    MessageFactory,
    SystemMessageFactory,
)


@pytest.fixture
def room(clock, alice, bob):
    """Group with alice as owner and bob as member, no messages yet."""
    conversation = ConversationFactory(created_by=alice)
    MembershipFactory(conversation=conversation, user=alice, role=MemberRole.OWNER)
    return conversation, MembershipFactory(conversation=conversation, user=bob)


# =============================================================================
# unread_count
# =============================================================================


@pytest.mark.django_db
class TestUnreadCount:
    def test_counts_messages_from_others(self, room, alice, bob):
        conversation, bob_membership = room
        MessageFactory(conversation=conversation, sender=alice)
        MessageFactory(conversation=conversation, sender=alice)
        MessageFactory(conversation=conversation, sender=bob)

        assert unread.unread_count(bob_membership) == 2

    def test_system_messages_count(self, room):
        conversation, bob_membership = room
        SystemMessageFactory(conversation=conversation)

        assert unread.unread_count(bob_membership) == 1

    def test_counts_after_marker(self, room, clock, alice):
        conversation, bob_membership = room
        read = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        MessageFactory(conversation=conversation, sender=alice)
        MessageFactory(conversation=conversation, sender=alice)

        unread.advance_marker(bob_membership, read)

        assert unread.unread_count(bob_membership) == 2

    def test_same_timestamp_uses_id_order(self, room, alice):
        """
        Why it matters: Messages written in the same instant must still
        split cleanly around the marker.
        """
        conversation, bob_membership = room
        first = MessageFactory(conversation=conversation, sender=alice)
        MessageFactory(conversation=conversation, sender=alice)

        unread.advance_marker(bob_membership, first)

        assert unread.unread_count(bob_membership) == 1

    def test_marker_below_floor_counts_whole_timeline(self, room, clock, alice):
        """
        Why it matters: A marker the member can no longer see must not
        produce a negative or stale count.
        """
        conversation, bob_membership = room
        stale = MessageFactory(conversation=conversation, sender=alice)
        unread.advance_marker(bob_membership, stale)
        clock.tick(1)
        visibility.hide(bob_membership)
        bob_membership.deleted_at = None
        clock.tick(1)
        MessageFactory(conversation=conversation, sender=alice)
        MessageFactory(conversation=conversation, sender=alice)

        assert unread.unread_count(bob_membership) == 2

    def test_deleted_marker_counts_whole_timeline(self, room, clock, alice):
        conversation, bob_membership = room
        marker = MessageFactory(conversation=conversation, sender=alice)
        unread.advance_marker(bob_membership, marker)
        clock.tick(1)
        MessageFactory(conversation=conversation, sender=alice)
        marker.deleted_at = marker.created_at
        marker.save()

        assert unread.unread_count(bob_membership) == 1

    def test_deleted_messages_are_not_unread(self, room, alice):
        conversation, bob_membership = room
        message = MessageFactory(conversation=conversation, sender=alice)
        message.deleted_at = message.created_at
        message.save()

        assert unread.unread_count(bob_membership) == 0


# =============================================================================
# format_unread
# =============================================================================


class TestFormatUnread:
    @pytest.mark.parametrize("count,expected", [(0, 0), (7, 7), (99, 99), (100, "99+"), (5000, "99+")])
    def test_badge(self, count, expected):
        assert unread.format_unread(count) == expected


# =============================================================================
# Markers and receipts
# =============================================================================


@pytest.mark.django_db
class TestAdvanceMarker:
    def test_moves_forward(self, room, clock, alice):
        conversation, bob_membership = room
        first = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        second = MessageFactory(conversation=conversation, sender=alice)

        assert unread.advance_marker(bob_membership, first) is True
        assert unread.advance_marker(bob_membership, second) is True
        assert bob_membership.last_read_message_id == second.id

    def test_never_moves_backwards(self, room, clock, alice):
        conversation, bob_membership = room
        first = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        second = MessageFactory(conversation=conversation, sender=alice)
        unread.advance_marker(bob_membership, second)

        assert unread.advance_marker(bob_membership, first) is False
        bob_membership.refresh_from_db()
        assert bob_membership.last_read_message_id == second.id

    def test_same_message_is_not_a_move(self, room, alice):
        conversation, bob_membership = room
        message = MessageFactory(conversation=conversation, sender=alice)
        unread.advance_marker(bob_membership, message)

        assert unread.advance_marker(bob_membership, message) is False

    def test_latest_readable_skips_own_messages(self, room, clock, alice, bob):
        conversation, bob_membership = room
        theirs = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        MessageFactory(conversation=conversation, sender=bob)

        assert unread.latest_readable(bob_membership) == theirs


@pytest.mark.django_db
class TestReadReceipt:
    def test_creates_read_receipt(self, room, alice, bob):
        conversation, _ = room
        message = MessageFactory(conversation=conversation, sender=alice)

        receipt = unread.record_read_receipt(message, bob.id)

        assert receipt.status == DeliveryState.READ

    def test_upgrades_existing_receipt(self, room, alice, bob):
        conversation, _ = room
        message = MessageFactory(conversation=conversation, sender=alice)
        DeliveryStatus.objects.create(message=message, user=bob, status=DeliveryState.DELIVERED)

        unread.record_read_receipt(message, bob.id)

        assert DeliveryStatus.objects.get(message=message, user=bob).status == DeliveryState.READ
        assert DeliveryStatus.objects.filter(message=message).count() == 1
