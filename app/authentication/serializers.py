"""
Serializers for authentication models.

Serializers:
    UserSerializer: Compact user representation embedded in chat payloads
    ProfileSerializer: Current user's profile (read)
    ProfileUpdateSerializer: Username, avatar and last-seen privacy (write)
    FriendRequestSerializer: Target of a friend request
    FriendshipSerializer: Friendship state
"""

from rest_framework import serializers

from authentication.models import Friendship, Profile, User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for User model (read operations).

    Used wherever chat responses reference a user (message sender,
    conversation members).
    """

    username = serializers.SerializerMethodField()
    avatar_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "email", "username", "avatar_url"]
        read_only_fields = fields

    def get_username(self, obj):
        return obj.display_name

    def get_avatar_url(self, obj):
        try:
            return obj.profile.avatar_url
        except Profile.DoesNotExist:
            return ""


class ProfileSerializer(serializers.ModelSerializer):
    """Serializer for the authenticated user's own profile."""

    email = serializers.EmailField(source="user.email", read_only=True)

    class Meta:
        model = Profile
        fields = [
            "email",
            "username",
            "avatar_url",
            "show_last_seen",
            "is_online",
            "last_seen_at",
        ]
        read_only_fields = ["email", "is_online", "last_seen_at"]


class ProfileUpdateSerializer(serializers.ModelSerializer):
    """Writable profile fields."""

    class Meta:
        model = Profile
        fields = ["username", "avatar_url", "show_last_seen"]

    def validate_username(self, value):
        value = value.lower().strip()
        if not value:
            return value
        existing = Profile.objects.filter(username__iexact=value)
        if self.instance is not None:
            existing = existing.exclude(pk=self.instance.pk)
        if existing.exists():
            raise serializers.ValidationError("This username is already taken.")
        return value


class FriendRequestSerializer(serializers.Serializer):
    """Input for sending a friend request."""

    user_id = serializers.IntegerField(min_value=1)


class FriendshipSerializer(serializers.ModelSerializer):
    class Meta:
        model = Friendship
        fields = [
            "id",
            "user_lower",
            "user_higher",
            "requested_by",
            "status",
            "accepted_at",
            "created_at",
        ]
        read_only_fields = fields
