"""
Chat system models.

This module defines the data models for the chat system supporting:
- Single (1:1) conversations between two friends
- Group conversations with role-based permissions and send/add policies

Models:
    Conversation: Container for messages between members
    Membership: One user's state in one conversation (role, visibility, read marker)
    Message: Individual message within a conversation
    DeliveryStatus: Per-recipient read receipt for a message

Design Decisions:
    - Membership rows are never deleted. Hiding, leaving and removal set
      deleted_at; hidden_until is a floor below which history stays
      invisible to that member.
    - A single conversation always has exactly two memberships, both with
      role member. Group conversations have exactly one owner.
    - Messages are soft deleted and ordered by (created_at, id).
    - System messages have no sender and store {"event", "data"} JSON.
"""

from __future__ import annotations

import json

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.models import BaseModel


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    SINGLE: Exactly two members who are friends, no roles, no policies
    GROUP: Owner plus members, role-based permissions, can be disbanded
    """

    SINGLE = "single", "Single"
    GROUP = "group", "Group"


class GroupPolicy(models.TextChoices):
    """
    Who may perform a gated group action (send a message, add members).

    ALL_MEMBERS: Any active member
    ADMIN_ONLY: Admins and the owner
    OWNER_ONLY: Only the owner
    """

    ALL_MEMBERS = "all_members", "All members"
    ADMIN_ONLY = "admin_only", "Admins only"
    OWNER_ONLY = "owner_only", "Owner only"


class MemberRole(models.TextChoices):
    """
    Role within a conversation.

    Hierarchy: OWNER > ADMIN > MEMBER

    OWNER: Exactly one per group. Changes roles, policies, transfers, disbands
    ADMIN: Adds and removes members, edits name/avatar
    MEMBER: Sends messages (subject to policy), leaves

    Note: Both members of a single conversation have role MEMBER.
    """

    OWNER = "owner", "Owner"
    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    """
    Type of message content.

    Attachment types carry a URL or reference in content; blob storage
    is handled elsewhere.
    """

    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    VIDEO = "video", "Video"
    VOICE = "voice", "Voice"
    FILE = "file", "File"
    SYSTEM = "system", "System"


class SystemMessageEvent:
    """
    System message event types.

    System messages store structured event data as JSON in the content field.
    Format: {"event": "<event_type>", "data": {...event-specific data...}}

    Events:
        GROUP_CREATED: Group was created with initial members
            data: {"actor_id": int, "user_ids": [int]}

        MEMBERS_ADDED: Users were added to the group
            data: {"actor_id": int, "user_ids": [int]}

        MEMBER_REMOVED: A member was removed by an admin/owner
            data: {"actor_id": int, "user_id": int}

        MEMBER_LEFT: A member left on their own
            data: {"user_id": int}

        ROLE_CHANGED: A member's role was changed by the owner
            data: {"actor_id": int, "user_id": int, "old_role": str, "new_role": str}

        OWNERSHIP_TRANSFERRED: Owner handed the group to another member
            data: {"actor_id": int, "user_id": int}

        GROUP_UPDATED: Name or avatar changed
            data: {"actor_id": int, "name": str|None, "avatar_changed": bool}

        GROUP_DISBANDED: Owner disbanded the group
            data: {"actor_id": int}
    """

    GROUP_CREATED = "group_created"
    MEMBERS_ADDED = "members_added"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"
    ROLE_CHANGED = "role_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    GROUP_UPDATED = "group_updated"
    GROUP_DISBANDED = "group_disbanded"


class DeliveryState(models.TextChoices):
    """Delivery progress of a message for one recipient. Never regresses."""

    SENT = "sent", "Sent"
    DELIVERED = "delivered", "Delivered"
    READ = "read", "Read"


class Conversation(BaseModel):
    """
    A conversation between two or more users.

    Conversation Types:
        SINGLE: Two friends. Reused when either side opens it again, even
                after hiding it.

        GROUP: Owner and members. Policies gate who may send messages and
               who may add members. Disbanding is terminal.

    Fields:
        conversation_type: Single or group
        name: Group name (empty for single)
        avatar_url: Group avatar (empty for single)
        message_send_policy: Who may send messages in a group
        member_add_policy: Who may add members to a group
        require_approval: Stored flag, editable by admins
        disbanded_at: When the group was disbanded (terminal)
        created_by: User who created the conversation
        last_message_at: Timestamp of most recent message (for sorting)
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        default=ConversationType.GROUP,
        db_index=True,
        help_text="Type of conversation (single or group)",
    )

    name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name for group conversations (empty for single)",
    )

    avatar_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Avatar for group conversations",
    )

    message_send_policy = models.CharField(
        max_length=20,
        choices=GroupPolicy.choices,
        default=GroupPolicy.ALL_MEMBERS,
        help_text="Who may send messages (groups only)",
    )

    member_add_policy = models.CharField(
        max_length=20,
        choices=GroupPolicy.choices,
        default=GroupPolicy.ADMIN_ONLY,
        help_text="Who may add members (groups only)",
    )

    require_approval = models.BooleanField(
        default=False,
        help_text="Whether new members need admin approval (groups only)",
    )

    disbanded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the group was disbanded (null while active)",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who created this conversation",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of most recent message (for sorting conversation lists)",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.conversation_type == ConversationType.SINGLE:
            return f"Single({self.pk})"
        if self.name:
            return f"Group: {self.name}"
        return f"Group({self.pk})"

    @property
    def is_single(self) -> bool:
        return self.conversation_type == ConversationType.SINGLE

    @property
    def is_group(self) -> bool:
        return self.conversation_type == ConversationType.GROUP

    @property
    def is_disbanded(self) -> bool:
        return self.disbanded_at is not None

    def get_active_memberships(self):
        """
        Get queryset of active memberships.

        Returns:
            QuerySet of Membership objects where deleted_at is NULL
        """
        return self.memberships.filter(deleted_at__isnull=True)


class Membership(BaseModel):
    """
    One user's state in one conversation.

    Visibility:
        deleted_at: Set when the member hides the conversation, leaves or
                    is removed. The conversation drops out of their list.
        hidden_until: Messages created at or before this instant are never
                      shown to this member. Survives auto-restore; only an
                      explicit re-add clears it.

    Lifecycle:
        active -> hidden (hide) -> active (new message, single only)
        active -> removed (leave/remove/disband) -> active (explicit add)

    Fields:
        conversation: Conversation this membership belongs to
        user: The member
        role: owner/admin/member
        joined_at: When the user (re)joined
        last_read_message: Newest message the member has read
        muted_until: Notifications muted until this instant
        deleted_at: Soft removal from the member's list
        hidden_until: Visibility floor for history
        is_pinned / pinned_at: Pinned to the top of the member's list
        removed_by: Admin/owner who removed the member
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="memberships",
        help_text="Conversation this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_memberships",
        help_text="Member of the conversation",
    )

    role = models.CharField(
        max_length=10,
        choices=MemberRole.choices,
        default=MemberRole.MEMBER,
        db_index=True,
        help_text="Role in the conversation",
    )

    joined_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user joined or was re-admitted",
    )

    last_read_message = models.ForeignKey(
        "Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent message this member has read",
    )

    muted_until = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Muted until this instant (far-future value means indefinitely)",
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the member hid, left or was removed (null if active)",
    )

    hidden_until = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Messages created at or before this instant are invisible to the member",
    )

    is_pinned = models.BooleanField(
        default=False,
        help_text="Whether the member pinned this conversation",
    )

    pinned_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the conversation was pinned",
    )

    removed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="removed_memberships",
        help_text="User who removed this member (if removed by someone)",
    )

    class Meta:
        db_table = "chat_membership"
        ordering = ["joined_at"]
        indexes = [
            # Active members of a conversation
            models.Index(
                fields=["conversation", "deleted_at"],
                name="chat_member_conv_active_idx",
            ),
            # A user's conversation list
            models.Index(
                fields=["user", "deleted_at"],
                name="chat_member_user_active_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="unique_conversation_membership",
            ),
            # One owner per conversation
            models.UniqueConstraint(
                fields=["conversation"],
                condition=Q(role="owner"),
                name="unique_conversation_owner",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        status = "active" if self.is_active else "hidden"
        return f"Membership: {self.user_id} in {self.conversation_id} ({self.role}) [{status}]"

    @property
    def is_active(self) -> bool:
        """Check if this membership is currently active."""
        return self.deleted_at is None

    @property
    def is_owner(self) -> bool:
        return self.role == MemberRole.OWNER

    @property
    def is_admin_or_owner(self) -> bool:
        return self.role in (MemberRole.OWNER, MemberRole.ADMIN)

    @property
    def is_muted(self) -> bool:
        return self.muted_until is not None and self.muted_until > timezone.now()


class Message(BaseModel):
    """
    A message within a conversation.

    Soft Delete Behavior:
        deleted_at set: content kept for audit, excluded from listings,
        unread counts and last-message previews.

    Fields:
        conversation: Conversation this message belongs to
        sender: User who sent the message (NULL for system messages)
        message_type: text/image/video/voice/file/system
        content: Message text, attachment reference or system event JSON
        reply_to: Message this one replies to (same conversation)
        edited_at: Last edit time
        deleted_at: Soft delete time (delete or recall)
        is_forwarded: Whether the content was forwarded from elsewhere

    System Message Content Format:
        {"event": "<event_type>", "data": {...}}
        See SystemMessageEvent class for event types.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        help_text="Type of message content",
    )

    content = models.TextField(
        help_text="Message text or system event JSON",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to",
    )

    edited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the message was last edited",
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the message was deleted or recalled",
    )

    is_forwarded = models.BooleanField(
        default=False,
        help_text="Whether the message was forwarded",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            # History window per conversation
            models.Index(
                fields=["conversation", "created_at", "id"],
                name="chat_msg_conv_created_idx",
            ),
            # Own-message lookups (batch delete, unread exclusion)
            models.Index(
                fields=["sender", "created_at"],
                name="chat_msg_sender_created_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        sender = "system" if self.is_system else self.sender_id
        return f"Message {self.pk} from {sender} in {self.conversation_id}"

    @property
    def is_system(self) -> bool:
        return self.message_type == MessageType.SYSTEM

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def get_system_event(self) -> dict | None:
        """
        Parse system message content.

        Returns:
            {"event": str, "data": dict} for system messages, None otherwise
            or when content is not valid JSON.
        """
        if not self.is_system:
            return None
        try:
            return json.loads(self.content)
        except (json.JSONDecodeError, TypeError):
            return None


class DeliveryStatus(models.Model):
    """
    Read receipt for one message and one recipient.

    Created lazily on the first read receipt. Status only moves forward
    (sent -> delivered -> read).

    Fields:
        message: Message the receipt is for
        user: Recipient
        status: sent/delivered/read
        status_at: When the current status was reached
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="delivery_statuses",
        help_text="Message this receipt is for",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_delivery_statuses",
        help_text="Recipient of the message",
    )

    status = models.CharField(
        max_length=10,
        choices=DeliveryState.choices,
        default=DeliveryState.SENT,
        help_text="Delivery progress",
    )

    status_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the current status was reached",
    )

    class Meta:
        db_table = "chat_delivery_status"
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_message_delivery_status",
            ),
        ]

    def __str__(self) -> str:
        return f"DeliveryStatus({self.message_id}, {self.user_id}) [{self.status}]"
