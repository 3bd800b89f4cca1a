"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management
- Membership viewing
- Message moderation
"""

from django.contrib import admin

from chat.models import Conversation, DeliveryStatus, Membership, Message


class MembershipInline(admin.TabularInline):
    """Inline display of memberships in conversation admin."""

    model = Membership
    fk_name = "conversation"
    extra = 0
    readonly_fields = [
        "joined_at",
        "deleted_at",
        "hidden_until",
        "removed_by",
        "last_read_message",
    ]
    raw_id_fields = ["user", "removed_by", "last_read_message"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "conversation_type",
        "name",
        "message_send_policy",
        "member_add_policy",
        "disbanded_at",
        "created_at",
        "last_message_at",
    ]
    list_filter = ["conversation_type", "message_send_policy", "member_add_policy", "created_at"]
    search_fields = ["name", "id"]
    readonly_fields = ["created_at", "updated_at", "disbanded_at", "last_message_at"]
    raw_id_fields = ["created_by"]
    inlines = [MembershipInline]
    ordering = ["-created_at"]


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    """Admin interface for Membership model."""

    list_display = [
        "id",
        "conversation",
        "user",
        "role",
        "joined_at",
        "deleted_at",
        "hidden_until",
        "is_pinned",
    ]
    list_filter = ["role", "is_pinned", "joined_at"]
    search_fields = ["user__email", "conversation__name"]
    readonly_fields = ["created_at", "updated_at", "joined_at"]
    raw_id_fields = ["conversation", "user", "removed_by", "last_read_message"]
    ordering = ["-joined_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "message_type",
        "content_preview",
        "deleted_at",
        "created_at",
    ]
    list_filter = ["message_type", "is_forwarded", "created_at"]
    search_fields = ["content", "sender__email"]
    readonly_fields = ["created_at", "updated_at", "edited_at", "deleted_at"]
    raw_id_fields = ["conversation", "sender", "reply_to"]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content


@admin.register(DeliveryStatus)
class DeliveryStatusAdmin(admin.ModelAdmin):
    list_display = ["message", "user", "status", "status_at"]
    list_filter = ["status"]
    raw_id_fields = ["message", "user"]
