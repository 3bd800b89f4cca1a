"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/token/                        - Obtain JWT access/refresh pair
    /api/v1/auth/token/refresh/                - Refresh access token
    /api/v1/auth/profile/                      - Profile management (GET/PATCH)
    /api/v1/auth/friends/requests/             - Send friend request
    /api/v1/auth/friends/requests/<id>/accept/ - Accept friend request
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.views import FriendRequestAcceptView, FriendRequestView, ProfileView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("profile/", ProfileView.as_view(), name="profile"),
    path("friends/requests/", FriendRequestView.as_view(), name="friend-request"),
    path(
        "friends/requests/<int:pk>/accept/",
        FriendRequestAcceptView.as_view(),
        name="friend-request-accept",
    ),
]
