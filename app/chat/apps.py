"""
Chat application configuration.

This app provides the chat system with:
- Single (friends only) and group conversations
- Role-based group policies (owner, admin, member)
- Per-member visibility, read markers and unread counts
- Real-time fan-out over Django Channels
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
