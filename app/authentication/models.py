"""
Authentication models.

This module defines the identity models the chat engine relies on:
- User: Custom user model with email-based authentication (slim, auth-focused)
- Profile: Display data, last-seen privacy setting and presence state
- Friendship: Friend relationship between two users

Related files:
    - managers.py: Custom user manager for email-based creation
    - services.py: FriendshipService and PresenceService
    - signals.py: Auto-create profile on user creation
"""

import re

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.db.models.functions import Lower

from core.models import BaseModel
from authentication.managers import UserManager


def validate_username_format(value):
    """Validate username format: 3-30 chars, alphanumeric + _ + -."""
    if not re.match(r"^[a-zA-Z0-9_-]{3,30}$", value):
        raise ValidationError(
            "Username must be 3-30 characters and contain only "
            "letters, numbers, underscores, and hyphens."
        )


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Profile data (username, avatar, privacy, presence) lives on Profile.

    Fields:
        email: Primary identifier, unique, used for login
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    @property
    def display_name(self):
        """
        Name used in narrated system messages.

        Returns:
            str: Profile username, or the email local part when unset.
        """
        try:
            return self.profile.username or self.email.split("@")[0]
        except Profile.DoesNotExist:
            return self.email.split("@")[0]


class Profile(BaseModel):
    """
    Extended user profile data.

    Fields:
        user: OneToOne link to User (also serves as primary key)
        username: Unique username shown to other users
        avatar_url: Avatar location (blob storage is external)
        show_last_seen: Who may receive this user's presence updates
        is_online: True while at least one websocket session is connected
        last_seen_at: When the last session disconnected (NULL while online)

    Note:
        Profile is automatically created via signals when a User is created.
    """

    class LastSeenVisibility(models.TextChoices):
        EVERYONE = "everyone", "Everyone"
        NOBODY = "nobody", "Nobody"

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile",
        primary_key=True,
        help_text="User this profile belongs to",
    )

    username = models.CharField(
        max_length=30,
        blank=True,
        db_index=True,
        validators=[validate_username_format],
        help_text="Unique username (3-30 chars, alphanumeric + _ + -)",
    )

    avatar_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Avatar URL",
    )

    show_last_seen = models.CharField(
        max_length=10,
        choices=LastSeenVisibility.choices,
        default=LastSeenVisibility.EVERYONE,
        help_text="Who receives online/offline and last-seen updates",
    )

    is_online = models.BooleanField(
        default=False,
        help_text="Whether the user currently has a live websocket session",
    )

    last_seen_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the user's last session disconnected",
    )

    class Meta:
        db_table = "authentication_profile"
        verbose_name = "profile"
        verbose_name_plural = "profiles"
        constraints = [
            models.UniqueConstraint(
                Lower("username"),
                name="unique_username_case_insensitive",
                condition=models.Q(username__gt=""),
            ),
        ]

    def __str__(self):
        return self.username or str(self.user)

    def save(self, *args, **kwargs):
        """Normalize username before saving."""
        if self.username:
            self.username = self.username.lower()
        super().save(*args, **kwargs)


class Friendship(BaseModel):
    """
    Friend relationship between two users.

    Stored once per pair in canonical order (lower user id first), so a
    lookup never has to check both directions.

    Fields:
        user_lower: User with lower ID
        user_higher: User with higher ID
        requested_by: Which of the two sent the request
        status: pending until the other user accepts
        accepted_at: When the request was accepted
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this pair",
    )
    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this pair",
    )
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_friend_requests",
        help_text="User who sent the friend request",
    )
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    accepted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "authentication_friendship"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_friendship_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="friendship_lower_less_than_higher",
            ),
        ]

    def __str__(self):
        return f"Friendship({self.user_lower_id}, {self.user_higher_id}) [{self.status}]"
