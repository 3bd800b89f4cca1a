"""
Tests for per-member visibility.

Covers hide, remove, restore_on_activity, readmit and the message window each
membership sees. Timestamps are controlled with the clock fixture since
the floor comparison is strict.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from chat import visibility
from chat.models import ConversationType, MemberRole
from chat.tests.factories import ConversationFactory, MembershipFactory, MessageFactory


@pytest.fixture
def pair(clock, alice, bob):
    """A single conversation with both members active."""
    conversation = ConversationFactory(
        conversation_type=ConversationType.SINGLE, name="", created_by=alice
    )
    return (
        conversation,
        MembershipFactory(conversation=conversation, user=alice),
        MembershipFactory(conversation=conversation, user=bob),
    )


# =============================================================================
# hide
# =============================================================================


@pytest.mark.django_db
class TestHide:
    def test_sets_floor_at_hide_time(self, pair, clock):
        _, alice_membership, _ = pair
        clock.tick(10)

        visibility.hide(alice_membership)

        assert alice_membership.deleted_at == timezone.now()
        assert alice_membership.hidden_until == alice_membership.deleted_at
        assert not visibility.is_active(alice_membership)

    def test_messages_up_to_hide_time_disappear(self, pair, clock, alice):
        """
        Why it matters: Once hidden, nothing at or before the hide instant
        may come back in listings.
        """
        conversation, alice_membership, _ = pair
        clock.tick(1)
        earlier = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        at_hide = MessageFactory(conversation=conversation, sender=alice)

        visibility.hide(alice_membership)

        visible = list(visibility.visible_messages(alice_membership))
        assert earlier not in visible
        assert at_hide not in visible

    def test_explicit_floor(self, pair):
        _, alice_membership, _ = pair
        floor = timezone.now() + timedelta(days=365)

        visibility.hide(alice_membership, hidden_until=floor)

        assert alice_membership.hidden_until == floor
        assert alice_membership.deleted_at < floor


# =============================================================================
# restore_on_activity
# =============================================================================


@pytest.mark.django_db
class TestRestoreOnActivity:
    def test_clears_deleted_at_but_keeps_floor(self, pair, clock):
        conversation, _, bob_membership = pair
        visibility.hide(bob_membership)
        floor = bob_membership.hidden_until
        clock.tick(1)

        restored = visibility.restore_on_activity(conversation)

        assert restored == [bob_membership.user_id]
        bob_membership.refresh_from_db()
        assert bob_membership.deleted_at is None
        assert bob_membership.hidden_until == floor

    def test_skips_excluded_user(self, pair, alice):
        conversation, alice_membership, _ = pair
        visibility.hide(alice_membership)

        assert visibility.restore_on_activity(conversation, exclude_user_id=alice.id) == []
        alice_membership.refresh_from_db()
        assert alice_membership.deleted_at is not None

    def test_groups_never_restore(self, clock, alice, bob):
        conversation = ConversationFactory(created_by=alice)
        MembershipFactory(conversation=conversation, user=alice, role=MemberRole.OWNER)
        removed = MembershipFactory(conversation=conversation, user=bob)
        visibility.remove(removed, removed_by=alice)

        assert visibility.restore_on_activity(conversation) == []
        removed.refresh_from_db()
        assert removed.deleted_at is not None


# =============================================================================
# readmit
# =============================================================================


@pytest.mark.django_db
class TestReadmit:
    def test_clears_both_timestamps(self, clock, alice, bob):
        conversation = ConversationFactory(created_by=alice)
        membership = MembershipFactory(conversation=conversation, user=bob, role=MemberRole.ADMIN)
        clock.tick(1)
        old = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        visibility.remove(membership, removed_by=alice)
        clock.tick(1)

        visibility.readmit(membership)

        assert membership.deleted_at is None
        assert membership.hidden_until is None
        assert membership.removed_by is None
        assert membership.role == MemberRole.MEMBER
        assert old in list(visibility.visible_messages(membership))


# =============================================================================
# Message window
# =============================================================================


@pytest.mark.django_db
class TestVisibleMessages:
    def test_removed_member_sees_up_to_removal(self, pair, clock, alice):
        conversation, _, bob_membership = pair
        clock.tick(1)
        before = MessageFactory(conversation=conversation, sender=alice)
        clock.tick(1)
        visibility.remove(bob_membership, removed_by=alice)
        clock.tick(1)
        after = MessageFactory(conversation=conversation, sender=alice)

        assert list(visibility.visible_messages(bob_membership)) == [before]
        assert visibility.is_visible(bob_membership, before)
        assert not visibility.is_visible(bob_membership, after)

    def test_deleted_messages_are_excluded(self, pair, alice):
        conversation, alice_membership, _ = pair
        message = MessageFactory(conversation=conversation, sender=alice)
        message.deleted_at = timezone.now()
        message.save()

        assert list(visibility.visible_messages(alice_membership)) == []
        assert not visibility.is_visible(alice_membership, message)

    def test_other_conversation_is_never_visible(self, pair, alice):
        _, alice_membership, _ = pair
        elsewhere = MessageFactory(sender=alice)

        assert not visibility.is_visible(alice_membership, elsewhere)

    def test_oldest_first_with_id_tie_break(self, pair, alice, bob):
        conversation, alice_membership, _ = pair
        first = MessageFactory(conversation=conversation, sender=alice)
        second = MessageFactory(conversation=conversation, sender=bob)

        assert first.created_at == second.created_at
        assert list(visibility.visible_messages(alice_membership)) == [first, second]
