"""
Serializers for chat API.

This module provides serializers for the chat system:
- Message serializers (read, send, edit, batch delete)
- Membership serializers (read, add, role change)
- Conversation serializers (summary, create, update, policies, mute)

Serializer Hierarchy:
    MessageSerializer: Message with soft-delete and system-message handling
    MessagePreviewSerializer: Minimal message for list preview
    MessageCreateSerializer / MessageUpdateSerializer / BatchDeleteSerializer

    MembershipSerializer: Member with user info and role
    MembersAddSerializer / MemberRoleSerializer / TransferOwnershipSerializer

    ConversationSummarySerializer: ConversationSummary for list and detail views
    SingleConversationCreateSerializer / GroupCreateSerializer
    GroupUpdateSerializer / PolicyUpdateSerializer / MuteSerializer / MarkReadSerializer

Design Decisions:
    - Read and write serializers are separate for clarity
    - Write serializers only check shape; business rules live in chat.services
    - Soft-deleted message content is replaced with placeholder
    - System messages show formatted event description
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import MEMBERSHIP_CONFIG, MESSAGE_CONFIG
from chat.models import GroupPolicy, MemberRole, Membership, Message, MessageType
from chat.narrator import format_system_message
from chat.unread import format_unread

DELETED_PLACEHOLDER = "[Message deleted]"


def display_content(message: Message) -> str:
    """
    Get display content.

    - Deleted messages: "[Message deleted]"
    - System messages: Formatted event description
    - Other messages: Original content
    """
    if message.is_deleted:
        return DELETED_PLACEHOLDER
    if message.is_system:
        return format_system_message(message)
    return message.content


# =============================================================================
# Message Serializers
# =============================================================================


class MessagePreviewSerializer(serializers.ModelSerializer):
    """
    Minimal message serializer for conversation list preview.

    Used to show the last message in conversation lists.
    """

    sender_name = serializers.SerializerMethodField(
        help_text="Display name of the message sender"
    )
    content = serializers.SerializerMethodField(help_text="Message content for display")

    class Meta:
        model = Message
        fields = [
            "id",
            "sender_id",
            "sender_name",
            "content",
            "message_type",
            "created_at",
        ]
        read_only_fields = fields

    def get_sender_name(self, obj: Message) -> str | None:
        """Get sender's display name or None for system messages."""
        if obj.is_system or obj.sender is None:
            return None
        return obj.sender.display_name

    def get_content(self, obj: Message) -> str:
        return display_content(obj)


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer for message lists.

    Includes sender details, reply reference, and proper handling of
    deleted/system messages.
    """

    sender = UserSerializer(read_only=True, allow_null=True)
    content = serializers.SerializerMethodField(help_text="Message content for display")
    is_deleted = serializers.BooleanField(read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "content",
            "message_type",
            "reply_to_id",
            "is_forwarded",
            "is_deleted",
            "edited_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_content(self, obj: Message) -> str:
        return display_content(obj)


class MessageCreateSerializer(serializers.Serializer):
    """Serializer for sending messages."""

    conversation_id = serializers.IntegerField(help_text="Target conversation")
    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        trim_whitespace=False,
        help_text="Message content (max 10,000 characters)",
    )
    message_type = serializers.ChoiceField(
        choices=[c for c in MessageType.choices if c[0] != MessageType.SYSTEM],
        default=MessageType.TEXT,
    )
    reply_to_id = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="Message being replied to (optional)",
    )
    is_forwarded = serializers.BooleanField(default=False)


class MessageUpdateSerializer(serializers.Serializer):
    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        trim_whitespace=False,
    )


class BatchDeleteSerializer(serializers.Serializer):
    message_ids = serializers.ListField(
        child=serializers.IntegerField(),
        min_length=1,
        max_length=MESSAGE_CONFIG.MAX_BATCH_DELETE,
    )


# =============================================================================
# Membership Serializers
# =============================================================================


class MembershipSerializer(serializers.ModelSerializer):
    """
    Read serializer for conversation members.

    Includes user details and role information.
    """

    user = UserSerializer(read_only=True)

    class Meta:
        model = Membership
        fields = [
            "user",
            "role",
            "joined_at",
        ]
        read_only_fields = fields


class MembersAddSerializer(serializers.Serializer):
    user_ids = serializers.ListField(
        child=serializers.IntegerField(),
        min_length=1,
        max_length=MEMBERSHIP_CONFIG.MAX_GROUP_MEMBERS,
        help_text="Users to add to the group",
    )


class MemberRoleSerializer(serializers.Serializer):
    """
    Serializer for updating member role.

    Only allows changing to ADMIN or MEMBER roles.
    OWNER role must use the transfer-ownership endpoint.
    """

    role = serializers.ChoiceField(
        choices=[
            (MemberRole.ADMIN, "Admin"),
            (MemberRole.MEMBER, "Member"),
        ],
        help_text="New role for the member (admin or member)",
    )


class TransferOwnershipSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(help_text="Member who becomes the owner")


# =============================================================================
# Conversation Serializers
# =============================================================================


class ConversationSummarySerializer(serializers.Serializer):
    """
    A conversation as seen by the requesting member.

    Serializes chat.services.ConversationSummary. Includes computed fields:
    - unread_count: Unread messages, "99+" above the cap
    - last_message: Preview of the latest visible message
    - display_name: Name for groups, other member's name for single chats
    """

    id = serializers.IntegerField(source="conversation.id")
    conversation_type = serializers.CharField(source="conversation.conversation_type")
    name = serializers.CharField(source="conversation.name")
    avatar_url = serializers.CharField(source="conversation.avatar_url")
    display_name = serializers.SerializerMethodField()
    message_send_policy = serializers.CharField(source="conversation.message_send_policy")
    member_add_policy = serializers.CharField(source="conversation.member_add_policy")
    require_approval = serializers.BooleanField(source="conversation.require_approval")
    is_disbanded = serializers.BooleanField(source="conversation.is_disbanded")
    role = serializers.CharField(source="membership.role")
    is_active = serializers.BooleanField(source="membership.is_active")
    is_pinned = serializers.BooleanField(source="membership.is_pinned")
    is_muted = serializers.BooleanField(source="membership.is_muted")
    muted_until = serializers.DateTimeField(source="membership.muted_until")
    unread_count = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    last_activity_at = serializers.DateTimeField()
    created_at = serializers.DateTimeField(source="conversation.created_at")

    def get_unread_count(self, obj) -> int | str:
        return format_unread(obj.unread_count)

    def get_last_message(self, obj) -> dict | None:
        if obj.last_message is None:
            return None
        return MessagePreviewSerializer(obj.last_message).data

    def get_display_name(self, obj) -> str:
        conversation = obj.conversation
        if conversation.name:
            return conversation.name
        if conversation.is_single:
            other = (
                conversation.memberships.exclude(user_id=obj.membership.user_id)
                .select_related("user__profile")
                .first()
            )
            if other is not None:
                return other.user.display_name
        return "Group"


class SingleConversationCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(help_text="Friend to chat with")


class GroupCreateSerializer(serializers.Serializer):
    member_ids = serializers.ListField(
        child=serializers.IntegerField(),
        min_length=1,
        help_text="Users to invite (the creator is added as owner)",
    )
    name = serializers.CharField(
        max_length=MEMBERSHIP_CONFIG.MAX_GROUP_NAME_LENGTH,
        required=False,
        allow_blank=True,
        default="",
    )
    avatar_url = serializers.URLField(required=False, allow_blank=True, default="")


class GroupUpdateSerializer(serializers.Serializer):
    """Only name and avatar can be updated here."""

    name = serializers.CharField(
        max_length=MEMBERSHIP_CONFIG.MAX_GROUP_NAME_LENGTH,
        required=False,
    )
    avatar_url = serializers.URLField(required=False, allow_blank=True)

    def validate_name(self, value: str) -> str:
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name cannot be empty")
        return value

    def validate(self, attrs: dict) -> dict:
        if not attrs:
            raise serializers.ValidationError("Provide name or avatar_url")
        return attrs


class PolicyUpdateSerializer(serializers.Serializer):
    message_send_policy = serializers.ChoiceField(choices=GroupPolicy.choices, required=False)
    member_add_policy = serializers.ChoiceField(choices=GroupPolicy.choices, required=False)
    require_approval = serializers.BooleanField(required=False)

    def validate(self, attrs: dict) -> dict:
        if not attrs:
            raise serializers.ValidationError("Provide at least one setting")
        return attrs


class MuteSerializer(serializers.Serializer):
    duration_seconds = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="Mute length in seconds; omit to mute until unmuted",
    )


class MarkReadSerializer(serializers.Serializer):
    message_id = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="Read up to this message; defaults to the latest",
    )
