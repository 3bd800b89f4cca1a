"""
Authentication services.

This module provides the identity-side collaborators used by chat:
- FriendshipService: friend requests and the "are these two friends" check
- PresenceService: online/offline state and last-seen timestamps on Profile

Related files:
    - models.py: User, Profile, Friendship
    - chat/services.py: Calls FriendshipService.are_friends before single chats
    - chat/consumers.py: Calls PresenceService on first connect / last disconnect
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from core.services import BaseService

from authentication.models import Friendship, Profile, User

logger = logging.getLogger(__name__)


def _canonical_pair(user_a_id: int, user_b_id: int) -> tuple[int, int]:
    return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)


class FriendshipService(BaseService):
    """
    Friend relationships between users.

    Methods:
        are_friends: True when an accepted friendship exists for the pair
        send_request: Create a pending friendship
        accept_request: Accept a pending friendship addressed to the caller
    """

    @classmethod
    def are_friends(cls, user_a_id: int, user_b_id: int) -> bool:
        if user_a_id == user_b_id:
            return False
        lower, higher = _canonical_pair(user_a_id, user_b_id)
        return Friendship.objects.filter(
            user_lower_id=lower,
            user_higher_id=higher,
            status=Friendship.Status.ACCEPTED,
        ).exists()

    @classmethod
    def send_request(cls, requester: User, addressee_id: int) -> Friendship:
        """
        Create a pending friend request.

        Error codes:
            SELF_FRIENDSHIP: Cannot befriend yourself
            USER_NOT_FOUND: Addressee does not exist
            FRIENDSHIP_EXISTS: A request or friendship already exists
        """
        if requester.id == addressee_id:
            raise ValidationError(
                "Cannot send a friend request to yourself",
                error_code="SELF_FRIENDSHIP",
            )
        if not User.objects.filter(id=addressee_id, is_active=True).exists():
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": addressee_id},
            )

        lower, higher = _canonical_pair(requester.id, addressee_id)
        try:
            with transaction.atomic():
                friendship = Friendship.objects.create(
                    user_lower_id=lower,
                    user_higher_id=higher,
                    requested_by=requester,
                )
        except IntegrityError:
            raise ConflictError(
                "A friendship or pending request already exists",
                error_code="FRIENDSHIP_EXISTS",
            )

        cls.get_logger().info(f"User {requester.id} sent friend request to {addressee_id}")
        return friendship

    @classmethod
    def accept_request(cls, user: User, friendship_id: int) -> Friendship:
        """
        Accept a pending request addressed to user.

        Error codes:
            FRIENDSHIP_NOT_FOUND: No such request involving the user
            NOT_ADDRESSEE: Only the recipient can accept
            ALREADY_FRIENDS: Request was already accepted
        """
        with cls.atomic():
            friendship = cls.lock(
                Friendship.objects.filter(
                    Q(user_lower=user) | Q(user_higher=user), id=friendship_id
                ),
                NotFoundError("Friend request not found", error_code="FRIENDSHIP_NOT_FOUND"),
            )
            if friendship.requested_by_id == user.id:
                raise PermissionDeniedError(
                    "Only the recipient can accept a friend request",
                    error_code="NOT_ADDRESSEE",
                )
            if friendship.status == Friendship.Status.ACCEPTED:
                raise ConflictError("Already friends", error_code="ALREADY_FRIENDS")

            friendship.status = Friendship.Status.ACCEPTED
            friendship.accepted_at = timezone.now()
            friendship.save(update_fields=["status", "accepted_at", "updated_at"])

        cls.get_logger().info(f"User {user.id} accepted friendship {friendship.id}")
        return friendship


@dataclass(frozen=True)
class PresenceSnapshot:
    """Presence state after an update, plus who may see it."""

    user_id: int
    is_online: bool
    last_seen_at: datetime | None
    show_last_seen: str

    def to_payload(self) -> dict:
        return {
            "user_id": self.user_id,
            "is_online": self.is_online,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
        }


class PresenceService(BaseService):
    """
    Online/offline state stored on Profile.

    Connection counting is not done here: callers (the websocket consumer,
    via the connection registry) decide when a user went from zero sessions
    to one, or from one to zero.
    """

    @classmethod
    def set_online(cls, user_id: int) -> PresenceSnapshot:
        return cls._update(user_id, is_online=True)

    @classmethod
    def set_offline(cls, user_id: int) -> PresenceSnapshot:
        return cls._update(user_id, is_online=False)

    @classmethod
    def _update(cls, user_id: int, is_online: bool) -> PresenceSnapshot:
        with cls.atomic():
            profile, _ = Profile.objects.select_for_update().get_or_create(user_id=user_id)
            profile.is_online = is_online
            profile.last_seen_at = None if is_online else timezone.now()
            profile.save(update_fields=["is_online", "last_seen_at", "updated_at"])

        cls.get_logger().debug(
            f"User {user_id} is now {'online' if is_online else 'offline'}"
        )
        return PresenceSnapshot(
            user_id=user_id,
            is_online=profile.is_online,
            last_seen_at=profile.last_seen_at,
            show_last_seen=profile.show_last_seen,
        )
