"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                              GET
        /conversations/single/                       POST
        /conversations/group/                        POST
        /conversations/{id}/                         GET, PATCH, DELETE
        /conversations/{id}/policies/                PATCH
        /conversations/{id}/read/                    POST
        /conversations/{id}/pin/                     POST
        /conversations/{id}/mute/                    POST, DELETE
        /conversations/{id}/leave/                   POST
        /conversations/{id}/disband/                 POST
        /conversations/{id}/transfer-ownership/      POST
        /conversations/{id}/messages/                GET

    Members:
        /conversations/{id}/members/                 GET, POST
        /conversations/{id}/members/{user_id}/       PATCH, DELETE

    Messages:
        /messages/                                   POST
        /messages/batch-delete/                      POST
        /messages/{id}/                              GET, PATCH, DELETE
        /messages/{id}/recall/                       POST

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ConversationViewSet, MemberViewSet, MessageViewSet

router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")
router.register(r"messages", MessageViewSet, basename="message")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    # Nested routes for members
    path(
        "conversations/<int:conversation_pk>/members/",
        MemberViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-member-list",
    ),
    path(
        "conversations/<int:conversation_pk>/members/<int:user_id>/",
        MemberViewSet.as_view({"patch": "partial_update", "delete": "destroy"}),
        name="conversation-member-detail",
    ),
]
