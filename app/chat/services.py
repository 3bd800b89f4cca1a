"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on conversations, memberships, and messages.

Services:
    ConversationService: Conversation lifecycle and per-member state
        (create, list, hide, read markers, pin, mute, group settings)
    GroupService: Group membership (add, remove, leave, roles, ownership, disband)
    MessageService: Message operations (send, list, edit, delete, recall)

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures raise core.exceptions subclasses with an error_code
    - Every mutation runs inside cls.atomic() and locks the rows it changes
    - System messages are generated for group lifecycle events
    - Real-time events are queued with fanout.emit() and published on commit

Usage:
    from chat.services import ConversationService, GroupService, MessageService

    conversation, created = ConversationService.get_or_create_single(alice, bob.id)

    conversation = ConversationService.create_group(
        owner=alice,
        member_ids=[bob.id, carol.id],
        name="Project Team",
    )

    message, restored_user_ids = MessageService.send_message(
        conversation.id, alice, "Hello everyone!"
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from authentication.models import User
from authentication.services import FriendshipService
from core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from core.services import BaseService

from chat import unread, visibility
from chat.constants import MEMBERSHIP_CONFIG, MESSAGE_CONFIG
from chat.fanout import (
    ChatEvent,
    Event,
    active_member_ids,
    conversation_payload,
    emit,
    membership_payload,
    message_payload,
)
from chat.models import (
    Conversation,
    ConversationType,
    GroupPolicy,
    MemberRole,
    Membership,
    Message,
    MessageType,
    SystemMessageEvent,
)
from chat.narrator import Narrator
from chat.policies import can_add_member, can_manage_group, can_remove, can_send

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


USER_MESSAGE_TYPES = (
    MessageType.TEXT,
    MessageType.IMAGE,
    MessageType.VIDEO,
    MessageType.VOICE,
    MessageType.FILE,
)


@dataclass
class ConversationSummary:
    """A conversation as seen by one member."""

    conversation: Conversation
    membership: Membership
    unread_count: int
    last_message: Message | None

    @property
    def last_activity_at(self):
        if self.last_message is not None:
            return self.last_message.created_at
        return self.conversation.created_at


@dataclass
class MessagePage:
    """One page of history, oldest first."""

    messages: list[Message]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return (self.page - 1) * self.page_size + len(self.messages) < self.total


class ChatServiceMixin:
    """Lookups shared by the chat services."""

    @classmethod
    def _get_conversation(cls, conversation_id: int, lock: bool = False) -> Conversation:
        queryset = Conversation.objects.filter(id=conversation_id)
        if lock:
            queryset = queryset.select_for_update()
        conversation = queryset.first()
        if conversation is None:
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": conversation_id},
            )
        return conversation

    @classmethod
    def _get_membership(
        cls,
        conversation_id: int,
        user_id: int,
        active: bool = True,
        lock: bool = False,
    ) -> Membership:
        """
        The caller's own membership.

        Raises PermissionDeniedError when the user has no membership (or
        only an inactive one while `active` is required).
        """
        queryset = Membership.objects.filter(conversation_id=conversation_id, user_id=user_id)
        if active:
            queryset = queryset.filter(deleted_at__isnull=True)
        if lock:
            queryset = queryset.select_for_update()
        membership = queryset.select_related("conversation", "last_read_message").first()
        if membership is None:
            raise PermissionDeniedError(
                "You are not a member of this conversation",
                error_code="NOT_A_MEMBER",
                details={"conversation_id": conversation_id},
            )
        return membership

    @classmethod
    def _get_target_membership(cls, conversation_id: int, user_id: int) -> Membership:
        """Another user's active membership, locked. NotFoundError if absent."""
        membership = (
            Membership.objects.select_for_update()
            .filter(conversation_id=conversation_id, user_id=user_id, deleted_at__isnull=True)
            .first()
        )
        if membership is None:
            raise NotFoundError(
                "User is not a member of this group",
                error_code="MEMBER_NOT_FOUND",
                details={"user_id": user_id},
            )
        return membership

    @classmethod
    def _require_group(cls, conversation: Conversation) -> None:
        if not conversation.is_group:
            raise ValidationError(
                "This operation is only available for group conversations",
                error_code="NOT_A_GROUP",
            )

    @classmethod
    def _require_not_disbanded(cls, conversation: Conversation) -> None:
        if conversation.is_disbanded:
            raise PermissionDeniedError(
                "This group has been disbanded",
                error_code="GROUP_DISBANDED",
            )

    @classmethod
    def _validate_content(cls, content: str) -> str:
        if content is None or not content.strip():
            raise ValidationError("Message content cannot be empty", error_code="CONTENT_EMPTY")
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            raise ValidationError(
                f"Message content cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
                details={"max_length": MESSAGE_CONFIG.MAX_CONTENT_LENGTH},
            )
        return content

    @classmethod
    def _existing_user_ids(cls, user_ids: Iterable[int]) -> list[int]:
        """Dedupe ids and ensure every one is an active user."""
        wanted = list(dict.fromkeys(user_ids))
        found = set(
            User.objects.filter(id__in=wanted, is_active=True).values_list("id", flat=True)
        )
        missing = [user_id for user_id in wanted if user_id not in found]
        if missing:
            raise NotFoundError(
                "One or more users were not found",
                error_code="USER_NOT_FOUND",
                details={"user_ids": missing},
            )
        return wanted


# =============================================================================
# Conversations
# =============================================================================


class ConversationService(ChatServiceMixin, BaseService):
    """
    Service for conversation lifecycle and per-member state.

    Methods:
        get_or_create_single: Open (or reopen) the single conversation with a friend
        create_group: Create a group with an owner and initial members
        get_conversation: One conversation as seen by a member
        list_conversations: The member's active conversations, pinned first
        delete_conversation: Hide a conversation from the member's list
        mark_as_read: Advance the read marker
        toggle_pin: Pin or unpin
        set_mute / unmute: Notification muting
        update_group: Name and avatar
        update_policies: Send and add-member policies
        update_require_approval: Approval flag
    """

    @classmethod
    def get_or_create_single(cls, user: User, other_user_id: int) -> tuple[Conversation, bool]:
        """
        Get or create the single conversation between user and a friend.

        An existing conversation is reused even when either side hid it.
        Reopening restores only the caller's visibility (deleted_at); the
        caller's hidden_until floor stays, and the other side stays hidden
        until a message arrives.

        A brand-new conversation is visible only to the caller: the other
        member starts hidden with hidden_until=now.

        Returns:
            (conversation, created) where created is also True when the
            conversation was hidden for the caller and has just reappeared.

        Error codes:
            SELF_CONVERSATION: Cannot chat with yourself
            USER_NOT_FOUND: Other user does not exist or is inactive
            NOT_FRIENDS: Single conversations require an accepted friendship
        """
        if user.id == other_user_id:
            raise ValidationError(
                "Cannot create a conversation with yourself",
                error_code="SELF_CONVERSATION",
            )
        if not User.objects.filter(id=other_user_id, is_active=True).exists():
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": other_user_id},
            )
        if not FriendshipService.are_friends(user.id, other_user_id):
            raise PermissionDeniedError(
                "You can only chat with friends",
                error_code="NOT_FRIENDS",
            )

        with cls.atomic():
            # Serialize concurrent opens for the same pair
            list(
                User.objects.select_for_update()
                .filter(id__in=sorted([user.id, other_user_id]))
                .order_by("id")
            )

            existing = (
                Conversation.objects.filter(
                    conversation_type=ConversationType.SINGLE,
                    memberships__user_id=user.id,
                )
                .filter(memberships__user_id=other_user_id)
                .first()
            )

            if existing is not None:
                membership = cls._get_membership(existing.id, user.id, active=False, lock=True)
                if membership.is_active:
                    return existing, False
                membership.deleted_at = None
                membership.save(update_fields=["deleted_at", "updated_at"])
                emit(
                    Event(
                        ChatEvent.NEW_CONVERSATION,
                        conversation_payload(existing),
                        user_ids=[user.id],
                    )
                )
                cls.get_logger().info(
                    f"User {user.id} reopened single conversation {existing.id}"
                )
                return existing, True

            now = timezone.now()
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.SINGLE,
                created_by=user,
            )
            Membership.objects.create(conversation=conversation, user=user)
            Membership.objects.create(
                conversation=conversation,
                user_id=other_user_id,
                deleted_at=now,
                hidden_until=now,
            )
            emit(
                Event(
                    ChatEvent.NEW_CONVERSATION,
                    conversation_payload(conversation),
                    user_ids=[user.id],
                )
            )

        cls.get_logger().info(
            f"Created single conversation {conversation.id} "
            f"between users {user.id} and {other_user_id}"
        )
        return conversation, True

    @classmethod
    def create_group(
        cls,
        owner: User,
        member_ids: list[int],
        name: str = "",
        avatar_url: str = "",
    ) -> Conversation:
        """
        Create a group conversation.

        The owner gets role owner, everyone else role member. One system
        message records the creation and the invited members.

        Error codes:
            NOT_ENOUGH_MEMBERS: At least one member besides the owner
            TOO_MANY_MEMBERS: More than MAX_GROUP_MEMBERS including the owner
            USER_NOT_FOUND: Unknown or inactive user ids
        """
        member_ids = [uid for uid in dict.fromkeys(member_ids) if uid != owner.id]
        if len(member_ids) + 1 < MEMBERSHIP_CONFIG.MIN_GROUP_MEMBERS:
            raise ValidationError(
                "A group needs at least one other member",
                error_code="NOT_ENOUGH_MEMBERS",
            )
        if len(member_ids) + 1 > MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS:
            raise ValidationError(
                f"A group cannot have more than {MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS} members",
                error_code="TOO_MANY_MEMBERS",
                details={"max_members": MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS},
            )
        member_ids = cls._existing_user_ids(member_ids)

        with cls.atomic():
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.GROUP,
                name=(name or "").strip(),
                avatar_url=avatar_url or "",
                created_by=owner,
            )
            Membership.objects.create(
                conversation=conversation, user=owner, role=MemberRole.OWNER
            )
            Membership.objects.bulk_create(
                [
                    Membership(conversation=conversation, user_id=uid, role=MemberRole.MEMBER)
                    for uid in member_ids
                ]
            )

            Narrator.narrate(
                conversation,
                SystemMessageEvent.GROUP_CREATED,
                {"actor_id": owner.id, "user_ids": member_ids},
                actor=owner,
            )
            emit(
                Event(
                    ChatEvent.NEW_CONVERSATION,
                    conversation_payload(conversation),
                    user_ids=[owner.id, *member_ids],
                )
            )

        cls.get_logger().info(
            f"User {owner.id} created group {conversation.id} with {len(member_ids)} members"
        )
        return conversation

    @classmethod
    def _summarize(cls, membership: Membership) -> ConversationSummary:
        last_message = (
            visibility.visible_messages(membership)
            .select_related("sender__profile")
            .order_by("-created_at", "-id")
            .first()
        )
        return ConversationSummary(
            conversation=membership.conversation,
            membership=membership,
            unread_count=unread.unread_count(membership),
            last_message=last_message,
        )

    @classmethod
    def get_conversation(cls, conversation_id: int, user: User) -> ConversationSummary:
        """
        One conversation as seen by the caller.

        Removed members keep read access to their bounded history, so any
        membership row is enough.

        Error codes:
            CONVERSATION_NOT_FOUND: No such conversation
            NOT_A_MEMBER: Caller was never a member
        """
        cls._get_conversation(conversation_id)
        membership = cls._get_membership(conversation_id, user.id, active=False)
        return cls._summarize(membership)

    @classmethod
    def list_conversations(cls, user: User) -> list[ConversationSummary]:
        """
        The caller's active conversations.

        Ordering: pinned first (most recently pinned first), then by last
        visible activity, newest first.
        """
        memberships = Membership.objects.filter(
            user=user, deleted_at__isnull=True
        ).select_related("conversation", "last_read_message")

        summaries = [cls._summarize(membership) for membership in memberships]
        pinned = sorted(
            (s for s in summaries if s.membership.is_pinned),
            key=lambda s: s.membership.pinned_at or s.last_activity_at,
            reverse=True,
        )
        others = sorted(
            (s for s in summaries if not s.membership.is_pinned),
            key=lambda s: (s.last_activity_at, s.conversation.id),
            reverse=True,
        )
        return pinned + others

    @classmethod
    def delete_conversation(cls, conversation_id: int, user: User) -> Membership:
        """
        Hide a conversation from the caller's list.

        Everything up to now becomes invisible to the caller, and the read
        marker moves to the latest message so nothing shows as unread if
        the conversation comes back.

        Error codes:
            NOT_A_MEMBER: Caller has no active membership
            OWNER_CANNOT_DELETE: A group owner must transfer or disband instead
        """
        with cls.atomic():
            membership = cls._get_membership(conversation_id, user.id, lock=True)
            if membership.conversation.is_group and membership.is_owner:
                raise ValidationError(
                    "The group owner cannot delete the conversation; transfer ownership or disband",
                    error_code="OWNER_CANNOT_DELETE",
                )

            latest = unread.latest_readable(membership)
            if latest is not None:
                unread.advance_marker(membership, latest)
            visibility.hide(membership)

            emit(
                Event(
                    ChatEvent.CONVERSATION_DELETED,
                    {"conversation_id": conversation_id},
                    user_ids=[user.id],
                ),
                Event(
                    ChatEvent.FORCE_LEAVE,
                    {"conversation_id": conversation_id},
                    user_ids=[user.id],
                ),
            )

        cls.get_logger().info(f"User {user.id} hid conversation {conversation_id}")
        return membership

    @classmethod
    def mark_as_read(
        cls, conversation_id: int, user: User, message_id: int | None = None
    ) -> Membership:
        """
        Advance the caller's read marker.

        Without message_id the marker is set to the newest visible message
        the caller did not write, even when the current marker points at a
        newer message that was since deleted. With message_id it moves there only if
        that message is at least as recent as the current marker.

        A read receipt (DeliveryStatus=read) is recorded for the message
        and messages_read goes to the conversation room.

        Error codes:
            NOT_A_MEMBER: Caller has no membership
            MESSAGE_NOT_FOUND: message_id is not in this conversation
        """
        with cls.atomic():
            membership = cls._get_membership(conversation_id, user.id, active=False, lock=True)

            if message_id is None:
                target = unread.latest_readable(membership)
                if target is None:
                    return membership
            else:
                target = Message.objects.filter(
                    id=message_id, conversation_id=conversation_id
                ).first()
                if target is None:
                    raise NotFoundError(
                        "Message not found in this conversation",
                        error_code="MESSAGE_NOT_FOUND",
                        details={"message_id": message_id},
                    )

            if message_id is None:
                moved = unread.set_marker(membership, target)
            else:
                moved = unread.advance_marker(membership, target)
            unread.record_read_receipt(target, user.id)

            if moved:
                emit(
                    Event(
                        ChatEvent.MESSAGES_READ,
                        {
                            "conversation_id": conversation_id,
                            "user_id": user.id,
                            "message_id": target.id,
                        },
                        conversation_id=conversation_id,
                    )
                )

        cls.get_logger().debug(
            f"User {user.id} read conversation {conversation_id} up to {target.id}"
        )
        return membership

    @classmethod
    def toggle_pin(cls, conversation_id: int, user: User) -> Membership:
        """
        Pin or unpin a conversation for the caller.

        Error codes:
            NOT_A_MEMBER: Caller has no active membership
            PIN_LIMIT_REACHED: Already MAX_PINNED pinned conversations
        """
        with cls.atomic():
            membership = cls._get_membership(conversation_id, user.id, lock=True)

            if membership.is_pinned:
                membership.is_pinned = False
                membership.pinned_at = None
            else:
                pinned_count = Membership.objects.filter(
                    user=user, is_pinned=True, deleted_at__isnull=True
                ).count()
                if pinned_count >= MEMBERSHIP_CONFIG.MAX_PINNED:
                    raise ValidationError(
                        f"You can pin at most {MEMBERSHIP_CONFIG.MAX_PINNED} conversations",
                        error_code="PIN_LIMIT_REACHED",
                        details={"max_pinned": MEMBERSHIP_CONFIG.MAX_PINNED},
                    )
                membership.is_pinned = True
                membership.pinned_at = timezone.now()
            membership.save(update_fields=["is_pinned", "pinned_at", "updated_at"])

        return membership

    @classmethod
    def set_mute(
        cls, conversation_id: int, user: User, duration_seconds: int | None = None
    ) -> Membership:
        """
        Mute notifications for a duration, or indefinitely when no duration is given.

        Error codes:
            NOT_A_MEMBER: Caller has no active membership
            INVALID_DURATION: duration_seconds must be positive
        """
        if duration_seconds is not None and duration_seconds <= 0:
            raise ValidationError(
                "Mute duration must be positive",
                error_code="INVALID_DURATION",
            )

        with cls.atomic():
            membership = cls._get_membership(conversation_id, user.id, lock=True)
            if duration_seconds is None:
                membership.muted_until = MEMBERSHIP_CONFIG.INDEFINITE_MUTE_UNTIL
            else:
                membership.muted_until = timezone.now() + timedelta(seconds=duration_seconds)
            membership.save(update_fields=["muted_until", "updated_at"])

        return membership

    @classmethod
    def unmute(cls, conversation_id: int, user: User) -> Membership:
        with cls.atomic():
            membership = cls._get_membership(conversation_id, user.id, lock=True)
            membership.muted_until = None
            membership.save(update_fields=["muted_until", "updated_at"])
        return membership

    @classmethod
    def _load_group_for_update(cls, conversation_id: int, user: User):
        conversation = cls._get_conversation(conversation_id, lock=True)
        cls._require_group(conversation)
        cls._require_not_disbanded(conversation)
        membership = cls._get_membership(conversation_id, user.id)
        return conversation, membership

    @classmethod
    def _broadcast_update(cls, conversation: Conversation) -> None:
        emit(
            Event(
                ChatEvent.CONVERSATION_UPDATED,
                conversation_payload(conversation),
                user_ids=active_member_ids(conversation.id),
            )
        )

    @classmethod
    def update_group(
        cls,
        conversation_id: int,
        user: User,
        name: str | None = None,
        avatar_url: str | None = None,
    ) -> Conversation:
        """
        Change the group name and/or avatar.

        Error codes:
            NOT_A_GROUP: Single conversations have no name or avatar
            GROUP_DISBANDED: Group no longer accepts changes
            NOT_A_MEMBER: Caller has no active membership
            NOT_ADMIN: Only admins and the owner can edit the group
        """
        with cls.atomic():
            conversation, membership = cls._load_group_for_update(conversation_id, user)
            if not can_manage_group(membership.role):
                raise PermissionDeniedError(
                    "Only admins and the owner can edit the group",
                    error_code="NOT_ADMIN",
                )

            fields = []
            if name is not None and name.strip() != conversation.name:
                conversation.name = name.strip()
                fields.append("name")
            if avatar_url is not None and avatar_url != conversation.avatar_url:
                conversation.avatar_url = avatar_url
                fields.append("avatar_url")
            if not fields:
                return conversation

            conversation.save(update_fields=[*fields, "updated_at"])
            Narrator.narrate(
                conversation,
                SystemMessageEvent.GROUP_UPDATED,
                {
                    "actor_id": user.id,
                    "name": conversation.name if "name" in fields else None,
                    "avatar_changed": "avatar_url" in fields,
                },
                actor=user,
            )
            cls._broadcast_update(conversation)

        cls.get_logger().info(f"User {user.id} updated group {conversation_id}: {fields}")
        return conversation

    @classmethod
    def update_policies(
        cls,
        conversation_id: int,
        user: User,
        message_send_policy: str | None = None,
        member_add_policy: str | None = None,
    ) -> Conversation:
        """
        Change who may send messages and who may add members.

        Error codes:
            INVALID_POLICY: Unknown policy value
            NOT_OWNER: Only the owner changes policies
        """
        for policy in (message_send_policy, member_add_policy):
            if policy is not None and policy not in GroupPolicy.values:
                raise ValidationError(
                    f"Unknown policy: {policy}",
                    error_code="INVALID_POLICY",
                    details={"allowed": GroupPolicy.values},
                )

        with cls.atomic():
            conversation, membership = cls._load_group_for_update(conversation_id, user)
            if not membership.is_owner:
                raise PermissionDeniedError(
                    "Only the owner can change group policies",
                    error_code="NOT_OWNER",
                )

            fields = []
            if message_send_policy is not None:
                conversation.message_send_policy = message_send_policy
                fields.append("message_send_policy")
            if member_add_policy is not None:
                conversation.member_add_policy = member_add_policy
                fields.append("member_add_policy")
            if fields:
                conversation.save(update_fields=[*fields, "updated_at"])
                cls._broadcast_update(conversation)

        return conversation

    @classmethod
    def update_require_approval(
        cls, conversation_id: int, user: User, require_approval: bool
    ) -> Conversation:
        """
        Toggle the approval flag.

        Error codes:
            NOT_ADMIN: Only admins and the owner can change it
        """
        with cls.atomic():
            conversation, membership = cls._load_group_for_update(conversation_id, user)
            if not can_manage_group(membership.role):
                raise PermissionDeniedError(
                    "Only admins and the owner can change this setting",
                    error_code="NOT_ADMIN",
                )
            if conversation.require_approval != require_approval:
                conversation.require_approval = require_approval
                conversation.save(update_fields=["require_approval", "updated_at"])
                cls._broadcast_update(conversation)

        return conversation


# =============================================================================
# Group membership
# =============================================================================


class GroupService(ChatServiceMixin, BaseService):
    """
    Service for group membership and lifecycle.

    Methods:
        list_members: Active members of a group
        add_members: Add or re-admit users
        remove_member: Admin/owner removes a member
        leave: Non-owner leaves
        update_role: Owner promotes/demotes between admin and member
        transfer_ownership: Owner hands the group to another member
        disband: Owner ends the group (terminal)

    Invariant:
        Every group has exactly one owner membership. Ownership only moves
        through transfer_ownership, which demotes and promotes in one
        transaction.
    """

    @classmethod
    def list_members(cls, conversation_id: int, user: User) -> list[Membership]:
        """
        Active members, owner first, then admins, then by join time.

        Error codes:
            NOT_A_GROUP: Single conversations have no member list
            NOT_A_MEMBER: Caller has no active membership
        """
        conversation = cls._get_conversation(conversation_id)
        cls._require_group(conversation)
        cls._get_membership(conversation_id, user.id)

        rank = {MemberRole.OWNER: 0, MemberRole.ADMIN: 1, MemberRole.MEMBER: 2}
        members = list(
            conversation.get_active_memberships().select_related("user__profile")
        )
        return sorted(members, key=lambda m: (rank.get(m.role, 3), m.joined_at, m.id))

    @classmethod
    def add_members(cls, conversation_id: int, actor: User, user_ids: list[int]) -> list[Membership]:
        """
        Add users to a group.

        Users who left or were removed are re-admitted on their existing
        membership (both visibility timestamps cleared, role reset to
        member). Users who are already active are skipped.

        Returns:
            Memberships that were created or re-admitted

        Error codes:
            NOT_A_GROUP: Single conversations have a fixed pair
            GROUP_DISBANDED: Disbanded groups cannot grow
            NOT_A_MEMBER: Actor has no active membership
            ADD_NOT_ALLOWED: member_add_policy does not allow the actor's role
            USER_NOT_FOUND: Unknown or inactive user ids
            ALREADY_MEMBERS: Every user is already an active member
            TOO_MANY_MEMBERS: Group would exceed MAX_GROUP_MEMBERS
        """
        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            cls._require_group(conversation)
            if conversation.is_disbanded:
                raise ValidationError(
                    "Cannot add members to a disbanded group",
                    error_code="GROUP_DISBANDED",
                )
            actor_membership = cls._get_membership(conversation_id, actor.id)
            if not can_add_member(conversation.member_add_policy, actor_membership.role):
                raise PermissionDeniedError(
                    "You do not have permission to add members",
                    error_code="ADD_NOT_ALLOWED",
                )

            user_ids = cls._existing_user_ids(user_ids)
            existing = {
                m.user_id: m
                for m in Membership.objects.select_for_update().filter(
                    conversation=conversation, user_id__in=user_ids
                )
            }
            to_add = [
                uid for uid in user_ids if uid not in existing or not existing[uid].is_active
            ]
            if not to_add:
                raise ValidationError(
                    "All users are already members of this group",
                    error_code="ALREADY_MEMBERS",
                )

            active_count = conversation.get_active_memberships().count()
            if active_count + len(to_add) > MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS:
                raise ValidationError(
                    f"A group cannot have more than {MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS} members",
                    error_code="TOO_MANY_MEMBERS",
                    details={"max_members": MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS},
                )

            added = []
            for uid in to_add:
                if uid in existing:
                    added.append(visibility.readmit(existing[uid]))
                else:
                    added.append(
                        Membership.objects.create(
                            conversation=conversation, user_id=uid, role=MemberRole.MEMBER
                        )
                    )

            Narrator.narrate(
                conversation,
                SystemMessageEvent.MEMBERS_ADDED,
                {"actor_id": actor.id, "user_ids": to_add},
                actor=actor,
            )
            emit(
                Event(
                    ChatEvent.NEW_CONVERSATION,
                    conversation_payload(conversation),
                    user_ids=to_add,
                ),
                Event(
                    ChatEvent.MEMBERS_ADDED,
                    {
                        "conversation_id": conversation.id,
                        "added_by": actor.id,
                        "members": [membership_payload(m) for m in added],
                    },
                    user_ids=active_member_ids(conversation.id, exclude=to_add),
                ),
            )

        cls.get_logger().info(
            f"User {actor.id} added {to_add} to group {conversation_id}"
        )
        return added

    @classmethod
    def remove_member(cls, conversation_id: int, actor: User, target_user_id: int) -> Membership:
        """
        Remove a member from a group.

        The target is taken out of the group with removed_by set; they keep
        read access to history up to the removal.

        Error codes:
            NOT_A_MEMBER: Actor has no active membership
            NOT_ADMIN: Only admins and the owner can remove members
            CANNOT_REMOVE_SELF: Use leave instead
            MEMBER_NOT_FOUND: Target is not an active member
            CANNOT_REMOVE_OWNER: The owner cannot be removed
            CANNOT_REMOVE_ADMIN: Admins cannot remove other admins
        """
        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            cls._require_group(conversation)
            cls._require_not_disbanded(conversation)
            actor_membership = cls._get_membership(conversation_id, actor.id)
            if not can_manage_group(actor_membership.role):
                raise PermissionDeniedError(
                    "Only admins and the owner can remove members",
                    error_code="NOT_ADMIN",
                )
            if actor.id == target_user_id:
                raise ValidationError(
                    "You cannot remove yourself; leave the group instead",
                    error_code="CANNOT_REMOVE_SELF",
                )
            target = cls._get_target_membership(conversation_id, target_user_id)
            if target.is_owner:
                raise ValidationError(
                    "The owner cannot be removed",
                    error_code="CANNOT_REMOVE_OWNER",
                )
            if not can_remove(actor_membership.role, target.role):
                raise PermissionDeniedError(
                    "Admins cannot remove other admins",
                    error_code="CANNOT_REMOVE_ADMIN",
                )

            visibility.remove(target, removed_by=actor)
            Narrator.narrate(
                conversation,
                SystemMessageEvent.MEMBER_REMOVED,
                {"actor_id": actor.id, "user_id": target_user_id},
                actor=actor,
                exclude_user_id=target_user_id,
            )
            emit(
                Event(
                    ChatEvent.CONVERSATION_DELETED,
                    {"conversation_id": conversation_id, "removed_by": actor.id},
                    user_ids=[target_user_id],
                ),
                Event(
                    ChatEvent.FORCE_LEAVE,
                    {"conversation_id": conversation_id},
                    user_ids=[target_user_id],
                ),
                Event(
                    ChatEvent.MEMBER_LEFT_GROUP,
                    {
                        "conversation_id": conversation_id,
                        "user_id": target_user_id,
                        "removed_by": actor.id,
                    },
                    user_ids=active_member_ids(conversation_id),
                ),
            )

        cls.get_logger().info(
            f"User {actor.id} removed {target_user_id} from group {conversation_id}"
        )
        return target

    @classmethod
    def leave(cls, conversation_id: int, user: User) -> Membership:
        """
        Leave a group.

        Error codes:
            NOT_A_GROUP: Hide single conversations with delete instead
            NOT_A_MEMBER: Caller has no active membership
            OWNER_CANNOT_LEAVE: Transfer ownership or disband first
        """
        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            cls._require_group(conversation)
            membership = cls._get_membership(conversation_id, user.id, lock=True)
            if membership.is_owner:
                raise ValidationError(
                    "The owner must transfer ownership before leaving",
                    error_code="OWNER_CANNOT_LEAVE",
                )

            visibility.remove(membership)
            Narrator.narrate(
                conversation,
                SystemMessageEvent.MEMBER_LEFT,
                {"user_id": user.id},
                actor=user,
                exclude_user_id=user.id,
            )
            emit(
                Event(
                    ChatEvent.MEMBER_LEFT_GROUP,
                    {"conversation_id": conversation_id, "user_id": user.id, "removed_by": None},
                    user_ids=active_member_ids(conversation_id),
                ),
                Event(
                    ChatEvent.FORCE_LEAVE,
                    {"conversation_id": conversation_id},
                    user_ids=[user.id],
                ),
            )

        cls.get_logger().info(f"User {user.id} left group {conversation_id}")
        return membership

    @classmethod
    def update_role(
        cls, conversation_id: int, actor: User, target_user_id: int, role: str
    ) -> Membership:
        """
        Change a member's role between admin and member.

        Error codes:
            INVALID_ROLE: Role must be admin or member (use transfer for owner)
            NOT_OWNER: Only the owner changes roles
            CANNOT_CHANGE_OWN_ROLE: Nobody changes their own role
            MEMBER_NOT_FOUND: Target is not an active member
            CANNOT_CHANGE_OWNER_ROLE: The owner's role only changes by transfer
        """
        if role not in (MemberRole.ADMIN, MemberRole.MEMBER):
            raise ValidationError(
                "Role must be admin or member; use ownership transfer for owner",
                error_code="INVALID_ROLE",
            )

        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            cls._require_group(conversation)
            cls._require_not_disbanded(conversation)
            actor_membership = cls._get_membership(conversation_id, actor.id)
            if not actor_membership.is_owner:
                raise PermissionDeniedError(
                    "Only the owner can change member roles",
                    error_code="NOT_OWNER",
                )
            if actor.id == target_user_id:
                raise ValidationError(
                    "You cannot change your own role",
                    error_code="CANNOT_CHANGE_OWN_ROLE",
                )
            target = cls._get_target_membership(conversation_id, target_user_id)
            if target.is_owner:
                raise ValidationError(
                    "The owner's role cannot be changed",
                    error_code="CANNOT_CHANGE_OWNER_ROLE",
                )
            if target.role == role:
                return target

            old_role = target.role
            target.role = role
            target.save(update_fields=["role", "updated_at"])

            Narrator.narrate(
                conversation,
                SystemMessageEvent.ROLE_CHANGED,
                {
                    "actor_id": actor.id,
                    "user_id": target_user_id,
                    "old_role": old_role,
                    "new_role": role,
                },
                actor=actor,
            )
            emit(
                Event(
                    ChatEvent.MEMBER_ROLE_UPDATED,
                    {
                        "conversation_id": conversation_id,
                        "user_id": target_user_id,
                        "role": role,
                        "old_role": old_role,
                    },
                    user_ids=active_member_ids(conversation_id),
                )
            )

        cls.get_logger().info(
            f"User {actor.id} changed role of {target_user_id} in group "
            f"{conversation_id}: {old_role} -> {role}"
        )
        return target

    @classmethod
    def transfer_ownership(cls, conversation_id: int, actor: User, new_owner_id: int) -> Membership:
        """
        Make another active member the owner; the previous owner becomes admin.

        Both memberships are locked and updated in one transaction so the
        group never has zero or two owners.

        Returns:
            The new owner's membership

        Error codes:
            CANNOT_TRANSFER_TO_SELF: Target is the actor
            NOT_OWNER: Actor is not the owner
            MEMBER_NOT_FOUND: Target is not an active member
        """
        if actor.id == new_owner_id:
            raise ValidationError(
                "You already own this group",
                error_code="CANNOT_TRANSFER_TO_SELF",
            )

        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            cls._require_group(conversation)
            cls._require_not_disbanded(conversation)

            rows = {
                m.user_id: m
                for m in Membership.objects.select_for_update()
                .filter(conversation_id=conversation_id, user_id__in=[actor.id, new_owner_id])
                .order_by("id")
            }
            current = rows.get(actor.id)
            if current is None or not current.is_active or not current.is_owner:
                raise PermissionDeniedError(
                    "Only the owner can transfer ownership",
                    error_code="NOT_OWNER",
                )
            target = rows.get(new_owner_id)
            if target is None or not target.is_active:
                raise NotFoundError(
                    "User is not a member of this group",
                    error_code="MEMBER_NOT_FOUND",
                    details={"user_id": new_owner_id},
                )

            target_old_role = target.role
            # Demote first so the one-owner constraint holds at every statement
            current.role = MemberRole.ADMIN
            current.save(update_fields=["role", "updated_at"])
            target.role = MemberRole.OWNER
            target.save(update_fields=["role", "updated_at"])

            Narrator.narrate(
                conversation,
                SystemMessageEvent.OWNERSHIP_TRANSFERRED,
                {"actor_id": actor.id, "user_id": new_owner_id},
                actor=actor,
            )
            recipients = active_member_ids(conversation_id)
            emit(
                Event(
                    ChatEvent.MEMBER_ROLE_UPDATED,
                    {
                        "conversation_id": conversation_id,
                        "user_id": new_owner_id,
                        "role": MemberRole.OWNER,
                        "old_role": target_old_role,
                    },
                    user_ids=recipients,
                ),
                Event(
                    ChatEvent.MEMBER_ROLE_UPDATED,
                    {
                        "conversation_id": conversation_id,
                        "user_id": actor.id,
                        "role": MemberRole.ADMIN,
                        "old_role": MemberRole.OWNER,
                    },
                    user_ids=recipients,
                ),
            )

        cls.get_logger().info(
            f"Ownership of group {conversation_id} transferred from {actor.id} to {new_owner_id}"
        )
        return target

    @classmethod
    def disband(cls, conversation_id: int, actor: User) -> Conversation:
        """
        Disband a group. Terminal.

        The disband is narrated first, then every active membership is
        hidden with a far-future hidden_until, so no member sees the group
        or its history in their list again. Rows and messages are kept.

        Error codes:
            NOT_A_GROUP: Only groups can be disbanded
            ALREADY_DISBANDED: Group is already disbanded
            NOT_OWNER: Only the owner can disband
        """
        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            cls._require_group(conversation)
            if conversation.is_disbanded:
                raise ValidationError(
                    "This group has already been disbanded",
                    error_code="ALREADY_DISBANDED",
                )
            actor_membership = (
                Membership.objects.filter(
                    conversation=conversation, user=actor, deleted_at__isnull=True
                ).first()
            )
            if actor_membership is None or not actor_membership.is_owner:
                raise PermissionDeniedError(
                    "Only the owner can disband the group",
                    error_code="NOT_OWNER",
                )

            now = timezone.now()
            conversation.disbanded_at = now
            conversation.save(update_fields=["disbanded_at", "updated_at"])

            Narrator.narrate(
                conversation,
                SystemMessageEvent.GROUP_DISBANDED,
                {"actor_id": actor.id},
                actor=actor,
            )

            active = list(
                Membership.objects.select_for_update().filter(
                    conversation=conversation, deleted_at__isnull=True
                )
            )
            for membership in active:
                visibility.hide(
                    membership,
                    at=now,
                    hidden_until=MEMBERSHIP_CONFIG.DISBANDED_HIDDEN_UNTIL,
                )

            former_ids = [m.user_id for m in active]
            emit(
                Event(
                    ChatEvent.GROUP_DISBANDED,
                    {"conversation_id": conversation_id, "disbanded_by": actor.id},
                    user_ids=former_ids,
                ),
                Event(
                    ChatEvent.FORCE_LEAVE,
                    {"conversation_id": conversation_id},
                    user_ids=former_ids,
                ),
            )

        cls.get_logger().info(f"User {actor.id} disbanded group {conversation_id}")
        return conversation


# =============================================================================
# Messages
# =============================================================================


class MessageService(ChatServiceMixin, BaseService):
    """
    Service for message operations.

    Methods:
        send_message: Post a message (restores hidden single-chat members)
        list_messages: Paginated history within the caller's visibility
        get_message: One visible message
        edit_message: Edit own message
        delete_message: Soft delete own message
        batch_delete: Soft delete several own recent messages
        recall_message: Take back own message shortly after sending
    """

    @classmethod
    def send_message(
        cls,
        conversation_id: int,
        sender: User,
        content: str,
        message_type: str = MessageType.TEXT,
        reply_to_id: int | None = None,
        is_forwarded: bool = False,
    ) -> tuple[Message, list[int]]:
        """
        Send a message.

        In a single conversation, a member who had hidden it gets it back
        in their list (deleted_at cleared) but keeps their hidden_until
        floor. Groups never auto-restore.

        Returns:
            (message, ids of users whose single conversation was restored)

        Error codes:
            CONTENT_EMPTY / CONTENT_TOO_LONG: Content limits
            INVALID_MESSAGE_TYPE: System messages cannot be sent by users
            CONVERSATION_NOT_FOUND: No such conversation
            NOT_A_MEMBER: Sender has no active membership
            NOT_FRIENDS: Single conversation partner is no longer a friend
            GROUP_DISBANDED: Group no longer accepts messages
            SEND_NOT_ALLOWED: message_send_policy does not allow the sender's role
            INVALID_REPLY: reply_to is not a message in this conversation
        """
        cls._validate_content(content)
        if message_type not in USER_MESSAGE_TYPES:
            raise ValidationError(
                f"Invalid message type: {message_type}",
                error_code="INVALID_MESSAGE_TYPE",
            )

        with cls.atomic():
            conversation = cls._get_conversation(conversation_id, lock=True)
            membership = cls._get_membership(conversation_id, sender.id)

            if conversation.is_single:
                other_id = (
                    Membership.objects.filter(conversation=conversation)
                    .exclude(user_id=sender.id)
                    .values_list("user_id", flat=True)
                    .first()
                )
                if other_id is None or not FriendshipService.are_friends(sender.id, other_id):
                    raise PermissionDeniedError(
                        "You can only message friends",
                        error_code="NOT_FRIENDS",
                    )
            else:
                if not can_send(
                    conversation.message_send_policy,
                    membership.role,
                    disbanded=conversation.is_disbanded,
                ):
                    if conversation.is_disbanded:
                        raise PermissionDeniedError(
                            "This group has been disbanded",
                            error_code="GROUP_DISBANDED",
                        )
                    raise PermissionDeniedError(
                        "You do not have permission to send messages in this group",
                        error_code="SEND_NOT_ALLOWED",
                    )

            reply_to = None
            if reply_to_id is not None:
                reply_to = Message.objects.filter(
                    id=reply_to_id, conversation=conversation
                ).first()
                if reply_to is None:
                    raise ValidationError(
                        "Reply target is not a message in this conversation",
                        error_code="INVALID_REPLY",
                        details={"reply_to_id": reply_to_id},
                    )

            message = Message.objects.create(
                conversation=conversation,
                sender=sender,
                message_type=message_type,
                content=content,
                reply_to=reply_to,
                is_forwarded=is_forwarded,
            )
            conversation.last_message_at = message.created_at
            conversation.save(update_fields=["last_message_at", "updated_at"])

            restored = visibility.restore_on_activity(conversation, exclude_user_id=sender.id)

            emit(
                Event(
                    ChatEvent.NEW_MESSAGE,
                    message_payload(message),
                    user_ids=active_member_ids(conversation.id),
                    conversation_id=conversation.id,
                )
            )
            if restored:
                emit(
                    Event(
                        ChatEvent.NEW_CONVERSATION,
                        conversation_payload(conversation),
                        user_ids=restored,
                    )
                )

        cls.get_logger().debug(
            f"User {sender.id} sent message {message.id} to conversation {conversation_id}"
        )
        return message, restored

    @classmethod
    def list_messages(
        cls,
        conversation_id: int,
        user: User,
        page: int = 1,
        page_size: int = MESSAGE_CONFIG.DEFAULT_PAGE_SIZE,
    ) -> MessagePage:
        """
        Paginated history within the caller's visibility.

        Pages count back from the newest message; each page is returned
        oldest first.

        Error codes:
            INVALID_PAGE: page and page_size must be positive
            CONVERSATION_NOT_FOUND / NOT_A_MEMBER: Access checks
        """
        if page < 1 or page_size < 1:
            raise ValidationError(
                "page and page_size must be positive integers",
                error_code="INVALID_PAGE",
            )
        page_size = min(page_size, MESSAGE_CONFIG.MAX_PAGE_SIZE)

        cls._get_conversation(conversation_id)
        membership = cls._get_membership(conversation_id, user.id, active=False)

        queryset = visibility.visible_messages(membership)
        total = queryset.count()
        offset = (page - 1) * page_size
        window = list(
            queryset.select_related("sender__profile").order_by("-created_at", "-id")[
                offset : offset + page_size
            ]
        )
        window.reverse()
        return MessagePage(messages=window, total=total, page=page, page_size=page_size)

    @classmethod
    def get_message(cls, message_id: int, user: User) -> Message:
        """
        One message, if the caller can see it.

        Error codes:
            MESSAGE_NOT_FOUND: Missing, deleted or outside the caller's visibility
        """
        message = (
            Message.objects.select_related("sender__profile").filter(id=message_id).first()
        )
        not_found = NotFoundError(
            "Message not found",
            error_code="MESSAGE_NOT_FOUND",
            details={"message_id": message_id},
        )
        if message is None:
            raise not_found
        membership = Membership.objects.filter(
            conversation_id=message.conversation_id, user=user
        ).first()
        if membership is None or not visibility.is_visible(membership, message):
            raise not_found
        return message

    @classmethod
    def _check_own_message(cls, message: Message, user: User) -> None:
        """Narrated messages carry their actor as sender but are never editable."""
        if message.is_system:
            raise PermissionDeniedError(
                "System messages cannot be modified",
                error_code="SYSTEM_MESSAGE",
            )
        if message.sender_id != user.id:
            raise PermissionDeniedError(
                "You can only modify your own messages",
                error_code="NOT_MESSAGE_OWNER",
            )

    @classmethod
    def _lock_own_message(cls, message_id: int, user: User) -> Message:
        message = cls.lock(
            Message.objects.filter(id=message_id),
            NotFoundError(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
                details={"message_id": message_id},
            ),
        )
        cls._check_own_message(message, user)
        if message.is_deleted:
            raise ValidationError(
                "Message has been deleted",
                error_code="MESSAGE_DELETED",
            )
        return message

    @classmethod
    def edit_message(cls, message_id: int, user: User, content: str) -> Message:
        """
        Edit the content of an own message.

        Error codes:
            MESSAGE_NOT_FOUND: No such message
            NOT_MESSAGE_OWNER: Not the sender
            SYSTEM_MESSAGE: Narrated messages cannot be changed
            MESSAGE_DELETED: Deleted messages cannot be edited
            NOT_A_MEMBER: Sender is no longer an active member
        """
        cls._validate_content(content)

        with cls.atomic():
            message = cls._lock_own_message(message_id, user)
            cls._get_membership(message.conversation_id, user.id)

            message.content = content
            message.edited_at = timezone.now()
            message.save(update_fields=["content", "edited_at", "updated_at"])

            emit(
                Event(
                    ChatEvent.MESSAGE_UPDATED,
                    message_payload(message),
                    conversation_id=message.conversation_id,
                )
            )

        cls.get_logger().debug(f"User {user.id} edited message {message_id}")
        return message

    @classmethod
    def delete_message(cls, message_id: int, user: User) -> Message:
        """
        Soft delete an own message.

        Error codes:
            MESSAGE_NOT_FOUND / NOT_MESSAGE_OWNER / SYSTEM_MESSAGE / MESSAGE_DELETED
        """
        with cls.atomic():
            message = cls._lock_own_message(message_id, user)
            message.deleted_at = timezone.now()
            message.save(update_fields=["deleted_at", "updated_at"])

            emit(
                Event(
                    ChatEvent.MESSAGE_DELETED,
                    {"message_id": message.id, "conversation_id": message.conversation_id},
                    conversation_id=message.conversation_id,
                )
            )

        cls.get_logger().info(f"User {user.id} deleted message {message_id}")
        return message

    @classmethod
    def batch_delete(cls, message_ids: list[int], user: User) -> list[int]:
        """
        Soft delete several own messages sent within the delete window.

        Every message is checked before anything is written, so one bad id
        fails the whole batch. Ids that do not exist and messages that are
        already deleted are skipped.

        Returns:
            Ids of the messages that were deleted

        Error codes:
            NO_MESSAGES: Empty id list
            TOO_MANY_MESSAGES: More than MAX_BATCH_DELETE ids
            NOT_MESSAGE_OWNER: A message belongs to someone else
            SYSTEM_MESSAGE: A message is a narrated system message
            DELETE_WINDOW_EXPIRED: A message is older than DELETE_RECALL_WINDOW_SECONDS
        """
        message_ids = list(dict.fromkeys(message_ids))
        if not message_ids:
            raise ValidationError("No messages to delete", error_code="NO_MESSAGES")
        if len(message_ids) > MESSAGE_CONFIG.MAX_BATCH_DELETE:
            raise ValidationError(
                f"Cannot delete more than {MESSAGE_CONFIG.MAX_BATCH_DELETE} messages at once",
                error_code="TOO_MANY_MESSAGES",
            )

        now = timezone.now()
        window = timedelta(seconds=MESSAGE_CONFIG.DELETE_RECALL_WINDOW_SECONDS)

        with cls.atomic():
            messages = list(
                Message.objects.select_for_update().filter(id__in=message_ids).order_by("id")
            )
            for message in messages:
                cls._check_own_message(message, user)
                if now - message.created_at > window:
                    raise ValidationError(
                        f"Message {message.id} is older than "
                        f"{MESSAGE_CONFIG.DELETE_RECALL_WINDOW_SECONDS // 60} minutes and cannot be deleted",
                        error_code="DELETE_WINDOW_EXPIRED",
                        details={"message_id": message.id},
                    )

            deletable = [m for m in messages if not m.is_deleted]
            if deletable:
                Message.objects.filter(id__in=[m.id for m in deletable]).update(
                    deleted_at=now, updated_at=now
                )
                emit(
                    *(
                        Event(
                            ChatEvent.MESSAGE_DELETED,
                            {"message_id": m.id, "conversation_id": m.conversation_id},
                            conversation_id=m.conversation_id,
                        )
                        for m in deletable
                    )
                )

        deleted_ids = [m.id for m in deletable]
        cls.get_logger().info(
            f"User {user.id} batch deleted {len(deleted_ids)}/{len(message_ids)} messages"
        )
        return deleted_ids

    @classmethod
    def recall_message(cls, message_id: int, user: User) -> Message:
        """
        Recall an own message within DELETE_RECALL_WINDOW_SECONDS of sending.

        Error codes:
            MESSAGE_NOT_FOUND / NOT_MESSAGE_OWNER / SYSTEM_MESSAGE / MESSAGE_DELETED
            RECALL_WINDOW_EXPIRED: Too late to recall
        """
        with cls.atomic():
            message = cls._lock_own_message(message_id, user)
            now = timezone.now()
            if now - message.created_at > timedelta(
                seconds=MESSAGE_CONFIG.DELETE_RECALL_WINDOW_SECONDS
            ):
                raise ValidationError(
                    "Messages can only be recalled within "
                    f"{MESSAGE_CONFIG.DELETE_RECALL_WINDOW_SECONDS // 60} minutes of sending",
                    error_code="RECALL_WINDOW_EXPIRED",
                )

            message.deleted_at = now
            message.save(update_fields=["deleted_at", "updated_at"])

            emit(
                Event(
                    ChatEvent.MESSAGE_RECALLED,
                    {"message_id": message.id, "conversation_id": message.conversation_id},
                    conversation_id=message.conversation_id,
                )
            )

        cls.get_logger().info(f"User {user.id} recalled message {message_id}")
        return message
