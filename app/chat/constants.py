"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, delete/recall window, pagination)
- Membership management (group size, pin limit, mute and hide sentinels)
- Presence and real-time delivery (group names, dedup window)

Import example:
    from chat.constants import MESSAGE_CONFIG, MEMBERSHIP_CONFIG
"""

from datetime import datetime, timezone
from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters
    MIN_CONTENT_LENGTH: Final[int] = 1

    # Recall and batch delete are only allowed shortly after sending
    DELETE_RECALL_WINDOW_SECONDS: Final[int] = 300  # 5 minutes

    # History pagination
    DEFAULT_PAGE_SIZE: Final[int] = 30
    MAX_PAGE_SIZE: Final[int] = 100

    # Batch delete
    MAX_BATCH_DELETE: Final[int] = 100


# =============================================================================
# Membership Configuration
# =============================================================================


class MEMBERSHIP_CONFIG:
    """Configuration for conversation membership state."""

    # Group size, owner included
    MAX_GROUP_MEMBERS: Final[int] = 500
    MIN_GROUP_MEMBERS: Final[int] = 2

    MAX_GROUP_NAME_LENGTH: Final[int] = 100

    # Pinned conversations per user
    MAX_PINNED: Final[int] = 5

    # muted_until value meaning "until unmuted"
    INDEFINITE_MUTE_UNTIL: Final[datetime] = datetime(
        2038, 1, 19, 3, 14, 7, tzinfo=timezone.utc
    )

    # hidden_until value written when a group is disbanded
    DISBANDED_HIDDEN_UNTIL: Final[datetime] = datetime(
        2099, 12, 31, tzinfo=timezone.utc
    )

    # Unread counts above this render as "99+"
    UNREAD_DISPLAY_CAP: Final[int] = 99


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for presence and websocket fan-out."""

    # Channel layer group every connection joins for presence updates
    PRESENCE_GROUP: Final[str] = "presence"

    # Channel layer group names
    USER_GROUP_PREFIX: Final[str] = "user_"
    CONVERSATION_GROUP_PREFIX: Final[str] = "conversation_"

    # Event ids remembered per connection to drop duplicate deliveries
    DEDUP_WINDOW: Final[int] = 500


def user_group(user_id: int) -> str:
    """Channel layer group for every session of one user."""
    return f"{PRESENCE_CONFIG.USER_GROUP_PREFIX}{user_id}"


def conversation_group(conversation_id: int) -> str:
    """Channel layer group for sessions viewing one conversation."""
    return f"{PRESENCE_CONFIG.CONVERSATION_GROUP_PREFIX}{conversation_id}"
