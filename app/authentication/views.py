"""
Authentication views.

Endpoints:
    /api/v1/auth/token/                      - Obtain JWT pair (simplejwt)
    /api/v1/auth/token/refresh/              - Refresh access token (simplejwt)
    /api/v1/auth/profile/                    - Current user's profile (GET/PATCH)
    /api/v1/auth/friends/requests/           - Send a friend request (POST)
    /api/v1/auth/friends/requests/{id}/accept/ - Accept a friend request (POST)

Service errors (core.exceptions) are rendered by core.exception_handler.
"""

import logging

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.models import Profile
from authentication.serializers import (
    FriendRequestSerializer,
    FriendshipSerializer,
    ProfileSerializer,
    ProfileUpdateSerializer,
)
from authentication.services import FriendshipService

logger = logging.getLogger(__name__)


class ProfileView(APIView):
    """
    API view for the current user's profile.

    GET: Retrieve profile including presence state
    PATCH: Update username, avatar_url or show_last_seen
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get current user's profile",
        tags=["Auth - Profile"],
        responses={200: ProfileSerializer},
    )
    def get(self, request):
        profile, _ = Profile.objects.get_or_create(user=request.user)
        return Response(ProfileSerializer(profile).data)

    @extend_schema(
        summary="Partially update profile",
        description="Update username, avatar URL or who can see your last-seen time.",
        tags=["Auth - Profile"],
        request=ProfileUpdateSerializer,
        responses={200: ProfileSerializer},
    )
    def patch(self, request):
        profile, _ = Profile.objects.get_or_create(user=request.user)
        serializer = ProfileUpdateSerializer(profile, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        logger.info(f"Profile updated for user {request.user.id}")
        return Response(ProfileSerializer(profile).data)


class FriendRequestView(APIView):
    """Send a friend request to another user."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Send friend request",
        tags=["Auth - Friends"],
        request=FriendRequestSerializer,
        responses={201: FriendshipSerializer},
    )
    def post(self, request):
        serializer = FriendRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        friendship = FriendshipService.send_request(
            request.user, serializer.validated_data["user_id"]
        )
        return Response(
            FriendshipSerializer(friendship).data, status=status.HTTP_201_CREATED
        )


class FriendRequestAcceptView(APIView):
    """Accept a pending friend request addressed to the current user."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Accept friend request",
        tags=["Auth - Friends"],
        request=None,
        responses={200: FriendshipSerializer},
    )
    def post(self, request, pk):
        friendship = FriendshipService.accept_request(request.user, pk)
        return Response(FriendshipSerializer(friendship).data)
