"""
Authentication application.

Identity collaborators for the chat engine:
    - User model: Custom email-based user authentication
    - Profile model: Display name, avatar, last-seen privacy and presence
    - Friendship model: Friend relationships checked before single chats

Usage:
    from authentication.models import User, Profile
    from authentication.services import FriendshipService, PresenceService
"""
