"""
Tests for chat services.

Covers:
- ConversationService: single/group creation, listing, hide, read markers,
  pin, mute, group settings
- GroupService: add, remove, leave, roles, ownership transfer, disband
- MessageService: send, history, edit, delete, batch delete, recall
- Fan-out queued by each mutation (published after commit)
"""

import pytest
from django.db import transaction

from authentication.models import Friendship
from chat import unread, visibility
from chat.constants import MEMBERSHIP_CONFIG
from chat.models import (
    GroupPolicy,
    MemberRole,
    Membership,
    Message,
    MessageType,
    SystemMessageEvent,
)
from chat.services import ConversationService, GroupService, MessageService
from chat.tests.factories import MessageFactory
from core.exceptions import NotFoundError, PermissionDeniedError, ValidationError


def member(conversation, user):
    return Membership.objects.get(conversation=conversation, user=user)


def owner_count(conversation):
    return Membership.objects.filter(conversation=conversation, role=MemberRole.OWNER).count()


def system_events(conversation):
    return [
        m.get_system_event()["event"]
        for m in Message.objects.filter(
            conversation=conversation, message_type=MessageType.SYSTEM
        ).order_by("created_at", "id")
    ]


# =============================================================================
# Scenarios
# =============================================================================


@pytest.mark.django_db
class TestScenarios:
    """End-to-end flows through several services."""

    def test_single_conversation_restore_and_read(self, clock, alice, bob, friends):
        """
        Opening a chat hides it for the friend until the first message.

        Why it matters: The friend must get the conversation back when a
        message arrives, but never the history from before their floor.
        """
        conversation, created = ConversationService.get_or_create_single(alice, bob.id)

        assert created is True
        assert member(conversation, alice).deleted_at is None
        bob_membership = member(conversation, bob)
        assert bob_membership.deleted_at is not None
        assert bob_membership.hidden_until == bob_membership.deleted_at

        # Written at the creation instant, so it sits on bob's floor
        early = MessageFactory(conversation=conversation, sender=alice, content="early")

        clock.tick(1)
        message, restored = MessageService.send_message(conversation.id, alice, "hi")

        assert restored == [bob.id]
        bob_membership = member(conversation, bob)
        assert bob_membership.deleted_at is None
        assert bob_membership.hidden_until is not None
        assert unread.unread_count(bob_membership) == 1
        visible_ids = list(visibility.visible_messages(bob_membership).values_list("id", flat=True))
        assert visible_ids == [message.id]
        assert early.id not in visible_ids

        ConversationService.mark_as_read(conversation.id, bob)

        assert unread.unread_count(member(conversation, bob)) == 0

    def test_policy_then_ownership_transfer(self, alice, bob, carol, dave):
        """
        Why it matters: After a transfer the former owner keeps admin
        rights but loses every owner-only operation.
        """
        group = ConversationService.create_group(alice, [bob.id, carol.id], name="Team")
        ConversationService.update_policies(
            group.id, alice, member_add_policy=GroupPolicy.OWNER_ONLY
        )

        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.add_members(group.id, bob, [dave.id])
        assert exc_info.value.error_code == "ADD_NOT_ALLOWED"

        GroupService.transfer_ownership(group.id, alice, bob.id)

        assert member(group, bob).role == MemberRole.OWNER
        assert member(group, alice).role == MemberRole.ADMIN
        assert owner_count(group) == 1

        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.disband(group.id, alice)
        assert exc_info.value.error_code == "NOT_OWNER"


# =============================================================================
# ConversationService.get_or_create_single
# =============================================================================


@pytest.mark.django_db
class TestGetOrCreateSingle:
    def test_second_call_reuses_conversation(self, single, alice, bob):
        conversation, created = ConversationService.get_or_create_single(alice, bob.id)

        assert conversation.id == single.id
        assert created is False

    def test_other_side_reopens_without_history(self, clock, alice, bob, friends):
        """
        Why it matters: Reopening clears deleted_at only; the floor stays.
        """
        conversation, _ = ConversationService.get_or_create_single(alice, bob.id)
        floor = member(conversation, bob).hidden_until

        clock.tick(5)
        reopened, created = ConversationService.get_or_create_single(bob, alice.id)

        assert reopened.id == conversation.id
        assert created is True
        bob_membership = member(conversation, bob)
        assert bob_membership.deleted_at is None
        assert bob_membership.hidden_until == floor

    def test_reopen_notifies_caller_only(self, single, alice, bob, commit, publisher):
        with commit():
            ConversationService.get_or_create_single(bob, alice.id)

        [event] = publisher.of_type("new_conversation")
        assert event.user_ids == [bob.id]

    def test_new_conversation_notifies_creator_only(self, alice, bob, friends, commit, publisher):
        with commit():
            ConversationService.get_or_create_single(alice, bob.id)

        [event] = publisher.of_type("new_conversation")
        assert event.user_ids == [alice.id]

    def test_self_conversation_rejected(self, alice):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.get_or_create_single(alice, alice.id)

        assert exc_info.value.error_code == "SELF_CONVERSATION"

    def test_unknown_user(self, alice):
        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.get_or_create_single(alice, 999999)

        assert exc_info.value.error_code == "USER_NOT_FOUND"

    def test_requires_friendship(self, alice, carol):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.get_or_create_single(alice, carol.id)

        assert exc_info.value.error_code == "NOT_FRIENDS"


# =============================================================================
# ConversationService.create_group
# =============================================================================


@pytest.mark.django_db
class TestCreateGroup:
    def test_roles_and_creation_message(self, group, alice, bob, carol):
        assert group.is_group
        assert group.name == "Team"
        assert member(group, alice).role == MemberRole.OWNER
        assert member(group, bob).role == MemberRole.MEMBER
        assert member(group, carol).role == MemberRole.MEMBER
        assert system_events(group) == [SystemMessageEvent.GROUP_CREATED]

    def test_owner_in_member_ids_is_ignored(self, alice, bob):
        group = ConversationService.create_group(alice, [alice.id, bob.id, bob.id])

        assert group.memberships.count() == 2
        assert owner_count(group) == 1

    def test_needs_another_member(self, alice):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.create_group(alice, [alice.id])

        assert exc_info.value.error_code == "NOT_ENOUGH_MEMBERS"

    def test_unknown_member_lists_missing_ids(self, alice, bob):
        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.create_group(alice, [bob.id, 999999])

        assert exc_info.value.error_code == "USER_NOT_FOUND"
        assert exc_info.value.details == {"user_ids": [999999]}

    def test_member_limit(self, alice, monkeypatch):
        monkeypatch.setattr(MEMBERSHIP_CONFIG, "MAX_GROUP_MEMBERS", 3)

        with pytest.raises(ValidationError) as exc_info:
            ConversationService.create_group(alice, [101, 102, 103])

        assert exc_info.value.error_code == "TOO_MANY_MEMBERS"

    def test_everyone_gets_new_conversation(self, alice, bob, carol, commit, publisher):
        with commit():
            ConversationService.create_group(alice, [bob.id, carol.id])

        [event] = publisher.of_type("new_conversation")
        assert set(event.user_ids) == {alice.id, bob.id, carol.id}


# =============================================================================
# ConversationService listing
# =============================================================================


@pytest.mark.django_db
class TestListConversations:
    def test_orders_by_last_activity(self, clock, alice, bob):
        first = ConversationService.create_group(alice, [bob.id], name="First")
        clock.tick(1)
        second = ConversationService.create_group(alice, [bob.id], name="Second")
        clock.tick(1)
        MessageService.send_message(first.id, bob, "bump")

        ids = [s.conversation.id for s in ConversationService.list_conversations(alice)]

        assert ids == [first.id, second.id]

    def test_pinned_first(self, clock, alice, bob):
        first = ConversationService.create_group(alice, [bob.id], name="First")
        clock.tick(1)
        second = ConversationService.create_group(alice, [bob.id], name="Second")
        ConversationService.toggle_pin(first.id, alice)

        ids = [s.conversation.id for s in ConversationService.list_conversations(alice)]

        assert ids == [first.id, second.id]

    def test_hidden_conversations_are_excluded(self, single, alice, bob):
        assert ConversationService.list_conversations(bob) == []
        assert [s.conversation.id for s in ConversationService.list_conversations(alice)] == [
            single.id
        ]

    def test_summary_counts_creation_message_as_unread(self, group, bob):
        summary = ConversationService.get_conversation(group.id, bob)

        assert summary.unread_count == 1
        assert summary.last_message.message_type == MessageType.SYSTEM

    def test_own_narrated_events_are_not_unread(self, clock, group, alice, bob):
        """
        Why it matters: The member who created or renamed the group must not
        see their own action as something new to read.
        """
        clock.tick(1)
        ConversationService.update_group(group.id, alice, name="Renamed")

        assert ConversationService.get_conversation(group.id, alice).unread_count == 0
        assert ConversationService.get_conversation(group.id, bob).unread_count == 2

    def test_get_conversation_requires_membership(self, group, dave):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.get_conversation(group.id, dave)

        assert exc_info.value.error_code == "NOT_A_MEMBER"

    def test_get_unknown_conversation(self, alice):
        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.get_conversation(999999, alice)

        assert exc_info.value.error_code == "CONVERSATION_NOT_FOUND"


# =============================================================================
# ConversationService.delete_conversation
# =============================================================================


@pytest.mark.django_db
class TestDeleteConversation:
    def test_hide_then_restore_on_new_message(self, clock, single, alice, bob):
        """
        Why it matters: Hiding is a personal "clear chat"; the next
        message brings the conversation back without the old history.
        """
        clock.tick(1)
        MessageService.send_message(single.id, alice, "hi")
        clock.tick(1)
        old, _ = MessageService.send_message(single.id, bob, "old")
        clock.tick(1)
        ConversationService.delete_conversation(single.id, alice)

        alice_membership = member(single, alice)
        assert alice_membership.deleted_at is not None
        assert alice_membership.last_read_message_id == old.id

        clock.tick(1)
        new, restored = MessageService.send_message(single.id, bob, "new")

        assert restored == [alice.id]
        alice_membership = member(single, alice)
        assert list(visibility.visible_messages(alice_membership)) == [new]
        assert unread.unread_count(alice_membership) == 1

    def test_events_go_to_caller(self, single, alice, commit, publisher):
        with commit():
            ConversationService.delete_conversation(single.id, alice)

        assert publisher.types() == ["conversation_deleted", "force_leave"]
        assert all(event.user_ids == [alice.id] for event in publisher.events)

    def test_group_owner_cannot_delete(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.delete_conversation(group.id, alice)

        assert exc_info.value.error_code == "OWNER_CANNOT_DELETE"

    def test_hidden_member_cannot_delete_again(self, single, bob):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.delete_conversation(single.id, bob)

        assert exc_info.value.error_code == "NOT_A_MEMBER"


# =============================================================================
# ConversationService.mark_as_read
# =============================================================================


@pytest.mark.django_db
class TestMarkAsRead:
    def test_full_read_zeroes_unread(self, clock, group, alice, bob):
        for text in ("one", "two", "three"):
            clock.tick(1)
            MessageService.send_message(group.id, alice, text)
        assert unread.unread_count(member(group, bob)) == 4

        ConversationService.mark_as_read(group.id, bob)

        assert unread.unread_count(member(group, bob)) == 0

    def test_marker_never_moves_backwards(self, clock, group, alice, bob):
        clock.tick(1)
        first, _ = MessageService.send_message(group.id, alice, "first")
        clock.tick(1)
        second, _ = MessageService.send_message(group.id, alice, "second")

        ConversationService.mark_as_read(group.id, bob, second.id)
        ConversationService.mark_as_read(group.id, bob, first.id)

        assert member(group, bob).last_read_message_id == second.id

    def test_full_read_after_marker_was_recalled(self, clock, group, alice, bob):
        """
        Why it matters: A marker on a recalled message is newer than anything
        still readable; reading everything must still bring unread to zero.
        """
        clock.tick(1)
        MessageService.send_message(group.id, alice, "one")
        clock.tick(1)
        two, _ = MessageService.send_message(group.id, alice, "two")
        ConversationService.mark_as_read(group.id, bob, two.id)
        MessageService.recall_message(two.id, alice)

        ConversationService.mark_as_read(group.id, bob)

        assert unread.unread_count(member(group, bob)) == 0

    def test_full_read_after_marking_own_message(self, clock, group, alice, bob):
        clock.tick(1)
        MessageService.send_message(group.id, alice, "question")
        clock.tick(1)
        mine, _ = MessageService.send_message(group.id, bob, "answer")
        ConversationService.mark_as_read(group.id, bob, mine.id)
        assert unread.unread_count(member(group, bob)) == 2

        ConversationService.mark_as_read(group.id, bob)

        assert unread.unread_count(member(group, bob)) == 0

    def test_records_read_receipt(self, group, alice, bob):
        message, _ = MessageService.send_message(group.id, alice, "hello")

        ConversationService.mark_as_read(group.id, bob, message.id)

        assert message.delivery_statuses.filter(user=bob, status="read").exists()

    def test_messages_read_only_when_marker_moves(self, group, alice, bob, commit, publisher):
        message, _ = MessageService.send_message(group.id, alice, "hello")

        with commit():
            ConversationService.mark_as_read(group.id, bob, message.id)
            ConversationService.mark_as_read(group.id, bob, message.id)

        [event] = publisher.of_type("messages_read")
        assert event.conversation_id == group.id
        assert event.data == {
            "conversation_id": group.id,
            "user_id": bob.id,
            "message_id": message.id,
        }

    def test_message_from_other_conversation(self, group, single, alice):
        message, _ = MessageService.send_message(single.id, alice, "elsewhere")

        with pytest.raises(NotFoundError) as exc_info:
            ConversationService.mark_as_read(group.id, alice, message.id)

        assert exc_info.value.error_code == "MESSAGE_NOT_FOUND"

    def test_nothing_to_read_is_a_no_op(self, single, alice):
        membership = ConversationService.mark_as_read(single.id, alice)

        assert membership.last_read_message_id is None


# =============================================================================
# Pin and mute
# =============================================================================


@pytest.mark.django_db
class TestPinAndMute:
    def test_toggle_twice_restores_state(self, group, bob):
        pinned = ConversationService.toggle_pin(group.id, bob)
        assert pinned.is_pinned is True
        assert pinned.pinned_at is not None

        unpinned = ConversationService.toggle_pin(group.id, bob)

        assert unpinned.is_pinned is False
        assert unpinned.pinned_at is None

    def test_sixth_pin_rejected(self, alice, bob):
        groups = [ConversationService.create_group(alice, [bob.id]) for _ in range(6)]
        for group in groups[:5]:
            ConversationService.toggle_pin(group.id, alice)

        with pytest.raises(ValidationError) as exc_info:
            ConversationService.toggle_pin(groups[5].id, alice)

        assert exc_info.value.error_code == "PIN_LIMIT_REACHED"
        assert member(groups[5], alice).is_pinned is False

    def test_mute_for_duration(self, clock, group, bob):
        membership = ConversationService.set_mute(group.id, bob, duration_seconds=3600)

        assert membership.is_muted
        assert (membership.muted_until - membership.updated_at).total_seconds() == 3600

    def test_mute_without_duration_is_indefinite(self, group, bob):
        membership = ConversationService.set_mute(group.id, bob)

        assert membership.muted_until == MEMBERSHIP_CONFIG.INDEFINITE_MUTE_UNTIL

    def test_non_positive_duration(self, group, bob):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.set_mute(group.id, bob, duration_seconds=0)

        assert exc_info.value.error_code == "INVALID_DURATION"

    def test_unmute(self, group, bob):
        ConversationService.set_mute(group.id, bob)

        membership = ConversationService.unmute(group.id, bob)

        assert membership.muted_until is None
        assert not membership.is_muted


# =============================================================================
# Group settings
# =============================================================================


@pytest.mark.django_db
class TestGroupSettings:
    def test_admin_renames_group(self, group, alice, bob, commit, publisher):
        GroupService.update_role(group.id, alice, bob.id, MemberRole.ADMIN)

        with commit():
            updated = ConversationService.update_group(group.id, bob, name="  Renamed ")

        assert updated.name == "Renamed"
        assert system_events(group)[-1] == SystemMessageEvent.GROUP_UPDATED
        [event] = publisher.of_type("conversation_updated")
        assert event.data["name"] == "Renamed"

    def test_unchanged_values_are_not_narrated(self, group, alice):
        before = system_events(group)

        ConversationService.update_group(group.id, alice, name="Team")

        assert system_events(group) == before

    def test_member_cannot_rename(self, group, bob):
        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.update_group(group.id, bob, name="Mine")

        assert exc_info.value.error_code == "NOT_ADMIN"

    def test_single_has_no_settings(self, single, alice):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.update_group(single.id, alice, name="x")

        assert exc_info.value.error_code == "NOT_A_GROUP"

    def test_only_owner_changes_policies(self, group, alice, bob):
        GroupService.update_role(group.id, alice, bob.id, MemberRole.ADMIN)

        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.update_policies(
                group.id, bob, message_send_policy=GroupPolicy.ADMIN_ONLY
            )

        assert exc_info.value.error_code == "NOT_OWNER"

    def test_unknown_policy_value(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            ConversationService.update_policies(group.id, alice, message_send_policy="anyone")

        assert exc_info.value.error_code == "INVALID_POLICY"

    def test_require_approval(self, group, alice, bob):
        updated = ConversationService.update_require_approval(group.id, alice, True)
        assert updated.require_approval is True

        with pytest.raises(PermissionDeniedError) as exc_info:
            ConversationService.update_require_approval(group.id, bob, False)
        assert exc_info.value.error_code == "NOT_ADMIN"


# =============================================================================
# GroupService.add_members
# =============================================================================


@pytest.mark.django_db
class TestAddMembers:
    def test_member_adds_under_open_policy(self, group, alice, bob, dave, commit, publisher):
        ConversationService.update_policies(
            group.id, alice, member_add_policy=GroupPolicy.ALL_MEMBERS
        )

        with commit():
            added = GroupService.add_members(group.id, bob, [dave.id])

        assert [m.user_id for m in added] == [dave.id]
        assert member(group, dave).role == MemberRole.MEMBER
        assert system_events(group)[-1] == SystemMessageEvent.MEMBERS_ADDED
        [new_conversation] = publisher.of_type("new_conversation")
        assert new_conversation.user_ids == [dave.id]
        [members_added] = publisher.of_type("members_added")
        assert dave.id not in members_added.user_ids

    def test_readmit_clears_floor_and_role(self, clock, group, alice, carol):
        """
        Why it matters: A re-admitted member sees the whole history again.
        """
        GroupService.update_role(group.id, alice, carol.id, MemberRole.ADMIN)
        clock.tick(1)
        GroupService.remove_member(group.id, alice, carol.id)
        clock.tick(1)

        [readmitted] = GroupService.add_members(group.id, alice, [carol.id])

        assert readmitted.id == member(group, carol).id
        assert readmitted.deleted_at is None
        assert readmitted.hidden_until is None
        assert readmitted.removed_by is None
        assert readmitted.role == MemberRole.MEMBER

    def test_all_already_members(self, group, alice, bob):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.add_members(group.id, alice, [bob.id])

        assert exc_info.value.error_code == "ALREADY_MEMBERS"

    def test_active_members_are_skipped(self, group, alice, bob, dave):
        added = GroupService.add_members(group.id, alice, [bob.id, dave.id])

        assert [m.user_id for m in added] == [dave.id]

    def test_members_cannot_add_by_default(self, group, bob, dave):
        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.add_members(group.id, bob, [dave.id])

        assert exc_info.value.error_code == "ADD_NOT_ALLOWED"

    def test_group_size_limit(self, group, alice, dave, monkeypatch):
        monkeypatch.setattr(MEMBERSHIP_CONFIG, "MAX_GROUP_MEMBERS", 3)

        with pytest.raises(ValidationError) as exc_info:
            GroupService.add_members(group.id, alice, [dave.id])

        assert exc_info.value.error_code == "TOO_MANY_MEMBERS"

    def test_disbanded_group(self, group, alice, dave):
        GroupService.disband(group.id, alice)

        with pytest.raises(ValidationError) as exc_info:
            GroupService.add_members(group.id, alice, [dave.id])

        assert exc_info.value.error_code == "GROUP_DISBANDED"

    def test_single_conversation(self, single, alice, carol):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.add_members(single.id, alice, [carol.id])

        assert exc_info.value.error_code == "NOT_A_GROUP"


# =============================================================================
# GroupService.remove_member / leave
# =============================================================================


@pytest.mark.django_db
class TestRemoveAndLeave:
    def test_removed_member_keeps_bounded_history(self, clock, group, alice, bob, carol):
        """
        Why it matters: A removed member can still read what happened
        while they were in the group, and nothing after.
        """
        clock.tick(1)
        before, _ = MessageService.send_message(group.id, bob, "before")
        clock.tick(1)
        GroupService.remove_member(group.id, alice, carol.id)
        clock.tick(1)
        after, restored = MessageService.send_message(group.id, bob, "after")

        assert restored == []
        carol_membership = member(group, carol)
        assert carol_membership.deleted_at is not None
        assert carol_membership.removed_by_id == alice.id

        page = MessageService.list_messages(group.id, carol)
        ids = [m.id for m in page.messages]
        assert before.id in ids
        assert after.id not in ids

    def test_remove_events(self, group, alice, bob, carol, commit, publisher):
        with commit():
            GroupService.remove_member(group.id, alice, carol.id)

        [force_leave] = publisher.of_type("force_leave")
        assert force_leave.user_ids == [carol.id]
        [left] = publisher.of_type("member_left_group")
        assert set(left.user_ids) == {alice.id, bob.id}
        [narrated] = publisher.of_type("new_message")
        assert carol.id not in narrated.user_ids

    def test_member_cannot_remove(self, group, bob, carol):
        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.remove_member(group.id, bob, carol.id)

        assert exc_info.value.error_code == "NOT_ADMIN"

    def test_admin_cannot_remove_admin(self, group, alice, bob, carol):
        GroupService.update_role(group.id, alice, bob.id, MemberRole.ADMIN)
        GroupService.update_role(group.id, alice, carol.id, MemberRole.ADMIN)

        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.remove_member(group.id, bob, carol.id)

        assert exc_info.value.error_code == "CANNOT_REMOVE_ADMIN"

    def test_nobody_removes_owner(self, group, alice, bob):
        GroupService.update_role(group.id, alice, bob.id, MemberRole.ADMIN)

        with pytest.raises(ValidationError) as exc_info:
            GroupService.remove_member(group.id, bob, alice.id)

        assert exc_info.value.error_code == "CANNOT_REMOVE_OWNER"

    def test_cannot_remove_self(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.remove_member(group.id, alice, alice.id)

        assert exc_info.value.error_code == "CANNOT_REMOVE_SELF"

    def test_unknown_target(self, group, alice, dave):
        with pytest.raises(NotFoundError) as exc_info:
            GroupService.remove_member(group.id, alice, dave.id)

        assert exc_info.value.error_code == "MEMBER_NOT_FOUND"

    def test_leave(self, group, alice, bob, commit, publisher):
        with commit():
            membership = GroupService.leave(group.id, bob)

        assert membership.deleted_at is not None
        assert membership.removed_by is None
        assert system_events(group)[-1] == SystemMessageEvent.MEMBER_LEFT
        [force_leave] = publisher.of_type("force_leave")
        assert force_leave.user_ids == [bob.id]

    def test_owner_cannot_leave(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.leave(group.id, alice)

        assert exc_info.value.error_code == "OWNER_CANNOT_LEAVE"

    def test_leave_twice(self, group, bob):
        GroupService.leave(group.id, bob)

        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.leave(group.id, bob)

        assert exc_info.value.error_code == "NOT_A_MEMBER"


# =============================================================================
# Roles and ownership
# =============================================================================


@pytest.mark.django_db
class TestRolesAndOwnership:
    def test_promote_and_demote(self, group, alice, bob):
        GroupService.update_role(group.id, alice, bob.id, MemberRole.ADMIN)
        assert member(group, bob).role == MemberRole.ADMIN

        GroupService.update_role(group.id, alice, bob.id, MemberRole.MEMBER)
        assert member(group, bob).role == MemberRole.MEMBER
        assert system_events(group)[-2:] == [
            SystemMessageEvent.ROLE_CHANGED,
            SystemMessageEvent.ROLE_CHANGED,
        ]

    def test_same_role_is_a_no_op(self, group, alice, bob):
        before = system_events(group)

        GroupService.update_role(group.id, alice, bob.id, MemberRole.MEMBER)

        assert system_events(group) == before

    def test_owner_role_only_by_transfer(self, group, alice, bob):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.update_role(group.id, alice, bob.id, MemberRole.OWNER)

        assert exc_info.value.error_code == "INVALID_ROLE"

    def test_admin_cannot_change_roles(self, group, alice, bob, carol):
        GroupService.update_role(group.id, alice, bob.id, MemberRole.ADMIN)

        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.update_role(group.id, bob, carol.id, MemberRole.ADMIN)

        assert exc_info.value.error_code == "NOT_OWNER"

    def test_cannot_change_own_role(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.update_role(group.id, alice, alice.id, MemberRole.MEMBER)

        assert exc_info.value.error_code == "CANNOT_CHANGE_OWN_ROLE"

    def test_transfer_keeps_single_owner(self, group, alice, carol, commit, publisher):
        with commit():
            new_owner = GroupService.transfer_ownership(group.id, alice, carol.id)

        assert new_owner.role == MemberRole.OWNER
        assert member(group, alice).role == MemberRole.ADMIN
        assert owner_count(group) == 1
        assert system_events(group)[-1] == SystemMessageEvent.OWNERSHIP_TRANSFERRED
        roles = {e.data["user_id"]: e.data["role"] for e in publisher.of_type("member_role_updated")}
        assert roles == {carol.id: MemberRole.OWNER, alice.id: MemberRole.ADMIN}

    def test_transfer_to_self(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            GroupService.transfer_ownership(group.id, alice, alice.id)

        assert exc_info.value.error_code == "CANNOT_TRANSFER_TO_SELF"

    def test_transfer_to_non_member(self, group, alice, dave):
        with pytest.raises(NotFoundError) as exc_info:
            GroupService.transfer_ownership(group.id, alice, dave.id)

        assert exc_info.value.error_code == "MEMBER_NOT_FOUND"
        assert member(group, alice).role == MemberRole.OWNER


# =============================================================================
# GroupService.disband
# =============================================================================


@pytest.mark.django_db
class TestDisband:
    def test_disband_hides_everyone(self, group, alice, bob, carol, commit, publisher):
        with commit():
            disbanded = GroupService.disband(group.id, alice)

        assert disbanded.is_disbanded
        assert system_events(group)[-1] == SystemMessageEvent.GROUP_DISBANDED
        for user in (alice, bob, carol):
            membership = member(group, user)
            assert membership.deleted_at is not None
            assert membership.hidden_until == MEMBERSHIP_CONFIG.DISBANDED_HIDDEN_UNTIL
            assert ConversationService.list_conversations(user) == []
        [force_leave] = publisher.of_type("force_leave")
        assert set(force_leave.user_ids) == {alice.id, bob.id, carol.id}

    def test_disband_is_terminal(self, group, alice):
        GroupService.disband(group.id, alice)

        with pytest.raises(ValidationError) as exc_info:
            GroupService.disband(group.id, alice)

        assert exc_info.value.error_code == "ALREADY_DISBANDED"

    def test_messages_are_kept(self, group, alice):
        count = Message.objects.filter(conversation=group).count()

        GroupService.disband(group.id, alice)

        assert Message.objects.filter(conversation=group).count() == count + 1

    def test_member_cannot_disband(self, group, bob):
        with pytest.raises(PermissionDeniedError) as exc_info:
            GroupService.disband(group.id, bob)

        assert exc_info.value.error_code == "NOT_OWNER"


# =============================================================================
# MessageService.send_message
# =============================================================================


@pytest.mark.django_db
class TestSendMessage:
    def test_send_updates_activity_and_fans_out(self, group, alice, bob, carol, commit, publisher):
        with commit():
            message, restored = MessageService.send_message(group.id, bob, "hello")

        group.refresh_from_db()
        assert group.last_message_at == message.created_at
        assert restored == []
        [event] = publisher.of_type("new_message")
        assert set(event.user_ids) == {alice.id, bob.id, carol.id}
        assert event.conversation_id == group.id
        assert event.data["content"] == "hello"

    def test_group_never_restores_removed_member(self, clock, group, alice, bob, carol):
        clock.tick(1)
        GroupService.leave(group.id, carol)
        clock.tick(1)

        _, restored = MessageService.send_message(group.id, bob, "still here")

        assert restored == []
        assert member(group, carol).deleted_at is not None

    def test_restored_user_gets_new_conversation(self, clock, single, alice, bob, commit, publisher):
        clock.tick(1)
        with commit():
            MessageService.send_message(single.id, alice, "hi")

        [event] = publisher.of_type("new_conversation")
        assert event.user_ids == [bob.id]

    def test_rollback_publishes_nothing(self, group, bob, commit, publisher):
        with commit():
            with pytest.raises(RuntimeError):
                with transaction.atomic():
                    MessageService.send_message(group.id, bob, "lost")
                    raise RuntimeError("boom")

        assert publisher.events == []

    def test_send_policy(self, group, alice, bob):
        ConversationService.update_policies(
            group.id, alice, message_send_policy=GroupPolicy.ADMIN_ONLY
        )

        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.send_message(group.id, bob, "hello")
        assert exc_info.value.error_code == "SEND_NOT_ALLOWED"

        MessageService.send_message(group.id, alice, "owner can")

    def test_single_requires_friendship(self, single, alice):
        Friendship.objects.all().delete()

        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.send_message(single.id, alice, "hi")

        assert exc_info.value.error_code == "NOT_FRIENDS"

    def test_non_member(self, group, dave):
        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.send_message(group.id, dave, "hi")

        assert exc_info.value.error_code == "NOT_A_MEMBER"

    @pytest.mark.parametrize(
        "content,code",
        [("", "CONTENT_EMPTY"), ("   ", "CONTENT_EMPTY"), ("x" * 10001, "CONTENT_TOO_LONG")],
    )
    def test_content_limits(self, group, bob, content, code):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(group.id, bob, content)

        assert exc_info.value.error_code == code

    def test_users_cannot_send_system_messages(self, group, bob):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(group.id, bob, "{}", message_type=MessageType.SYSTEM)

        assert exc_info.value.error_code == "INVALID_MESSAGE_TYPE"

    def test_reply_must_be_in_conversation(self, group, single, alice):
        elsewhere, _ = MessageService.send_message(single.id, alice, "elsewhere")

        with pytest.raises(ValidationError) as exc_info:
            MessageService.send_message(group.id, alice, "re", reply_to_id=elsewhere.id)

        assert exc_info.value.error_code == "INVALID_REPLY"

    def test_reply_and_forward(self, group, alice, bob):
        original, _ = MessageService.send_message(group.id, alice, "question")

        reply, _ = MessageService.send_message(
            group.id, bob, "answer", reply_to_id=original.id, is_forwarded=True
        )

        assert reply.reply_to_id == original.id
        assert reply.is_forwarded is True


# =============================================================================
# MessageService history
# =============================================================================


@pytest.mark.django_db
class TestListMessages:
    def test_pages_count_back_from_newest(self, clock, group, alice):
        sent = []
        for i in range(5):
            clock.tick(1)
            message, _ = MessageService.send_message(group.id, alice, f"m{i}")
            sent.append(message.id)

        first = MessageService.list_messages(group.id, alice, page=1, page_size=2)
        last = MessageService.list_messages(group.id, alice, page=3, page_size=2)

        assert [m.id for m in first.messages] == sent[3:]
        assert first.total == 6
        assert first.has_more is True
        assert [m.id for m in last.messages][1:] == sent[:1]
        assert last.has_more is False

    def test_page_size_is_capped(self, group, alice):
        page = MessageService.list_messages(group.id, alice, page_size=1000)

        assert page.page_size == 100

    def test_invalid_page(self, group, alice):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.list_messages(group.id, alice, page=0)

        assert exc_info.value.error_code == "INVALID_PAGE"

    def test_deleted_messages_are_hidden(self, group, alice):
        message, _ = MessageService.send_message(group.id, alice, "oops")
        MessageService.delete_message(message.id, alice)

        page = MessageService.list_messages(group.id, alice)

        assert message.id not in [m.id for m in page.messages]

    def test_get_message_outside_visibility(self, clock, group, alice, bob, carol):
        clock.tick(1)
        GroupService.remove_member(group.id, alice, carol.id)
        clock.tick(1)
        message, _ = MessageService.send_message(group.id, bob, "after")

        assert MessageService.get_message(message.id, bob).id == message.id
        with pytest.raises(NotFoundError) as exc_info:
            MessageService.get_message(message.id, carol)
        assert exc_info.value.error_code == "MESSAGE_NOT_FOUND"


# =============================================================================
# MessageService edit / delete / recall
# =============================================================================


@pytest.mark.django_db
class TestModifyMessages:
    def test_edit(self, group, alice, commit, publisher):
        message, _ = MessageService.send_message(group.id, alice, "draft")

        with commit():
            edited = MessageService.edit_message(message.id, alice, "final")

        assert edited.content == "final"
        assert edited.edited_at is not None
        [event] = publisher.of_type("message_updated")
        assert event.conversation_id == group.id
        assert event.user_ids == []

    def test_only_sender_edits(self, group, alice, bob):
        message, _ = MessageService.send_message(group.id, alice, "mine")

        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.edit_message(message.id, bob, "yours")

        assert exc_info.value.error_code == "NOT_MESSAGE_OWNER"

    def test_system_messages_cannot_be_edited(self, group, alice):
        system = Message.objects.get(conversation=group, message_type=MessageType.SYSTEM)

        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.edit_message(system.id, alice, "rewrite")

        assert exc_info.value.error_code == "SYSTEM_MESSAGE"

    def test_actor_cannot_delete_or_recall_their_system_message(self, group, alice):
        """
        Why it matters: Narrated events carry the actor as sender, so
        ownership alone must not unlock changes to the audit trail.
        """
        system = Message.objects.get(conversation=group, message_type=MessageType.SYSTEM)
        assert system.sender_id == alice.id

        for modify in (
            MessageService.delete_message,
            MessageService.recall_message,
            lambda message_id, user: MessageService.batch_delete([message_id], user),
        ):
            with pytest.raises(PermissionDeniedError) as exc_info:
                modify(system.id, alice)
            assert exc_info.value.error_code == "SYSTEM_MESSAGE"

        assert Message.objects.get(id=system.id).deleted_at is None

    def test_deleted_message_cannot_be_edited(self, group, alice):
        message, _ = MessageService.send_message(group.id, alice, "gone")
        MessageService.delete_message(message.id, alice)

        with pytest.raises(ValidationError) as exc_info:
            MessageService.edit_message(message.id, alice, "back")

        assert exc_info.value.error_code == "MESSAGE_DELETED"

    def test_unknown_message(self, alice):
        with pytest.raises(NotFoundError) as exc_info:
            MessageService.delete_message(999999, alice)

        assert exc_info.value.error_code == "MESSAGE_NOT_FOUND"

    def test_batch_delete_own_recent_messages(self, clock, group, alice, commit, publisher):
        first, _ = MessageService.send_message(group.id, alice, "one")
        second, _ = MessageService.send_message(group.id, alice, "two")
        clock.tick(300)

        with commit():
            deleted = MessageService.batch_delete([second.id, first.id, 999999], alice)

        assert deleted == [first.id, second.id]
        assert publisher.types() == ["message_deleted", "message_deleted"]

    def test_batch_delete_after_window(self, clock, group, alice):
        """
        Why it matters: An expired message fails the whole batch instead of
        being silently left in place.
        """
        old, _ = MessageService.send_message(group.id, alice, "old")
        clock.tick(360)
        recent, _ = MessageService.send_message(group.id, alice, "recent")

        with pytest.raises(ValidationError) as exc_info:
            MessageService.batch_delete([old.id, recent.id], alice)

        assert exc_info.value.error_code == "DELETE_WINDOW_EXPIRED"
        assert exc_info.value.details == {"message_id": old.id}
        assert Message.objects.get(id=recent.id).deleted_at is None

    def test_batch_delete_foreign_message(self, group, alice, bob):
        mine, _ = MessageService.send_message(group.id, alice, "mine")
        theirs, _ = MessageService.send_message(group.id, bob, "bob's")

        with pytest.raises(PermissionDeniedError) as exc_info:
            MessageService.batch_delete([mine.id, theirs.id], alice)

        assert exc_info.value.error_code == "NOT_MESSAGE_OWNER"
        assert Message.objects.get(id=mine.id).deleted_at is None

    def test_batch_delete_limits(self, alice):
        with pytest.raises(ValidationError) as exc_info:
            MessageService.batch_delete([], alice)
        assert exc_info.value.error_code == "NO_MESSAGES"

        with pytest.raises(ValidationError) as exc_info:
            MessageService.batch_delete(list(range(1, 102)), alice)
        assert exc_info.value.error_code == "TOO_MANY_MESSAGES"

    def test_recall_within_window(self, clock, group, alice, commit, publisher):
        message, _ = MessageService.send_message(group.id, alice, "wrong chat")
        clock.tick(299)

        with commit():
            recalled = MessageService.recall_message(message.id, alice)

        assert recalled.is_deleted
        assert publisher.types() == ["message_recalled"]

    def test_recall_after_window(self, clock, group, alice):
        message, _ = MessageService.send_message(group.id, alice, "too late")
        clock.tick(301)

        with pytest.raises(ValidationError) as exc_info:
            MessageService.recall_message(message.id, alice)

        assert exc_info.value.error_code == "RECALL_WINDOW_EXPIRED"
