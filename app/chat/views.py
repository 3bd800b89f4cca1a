"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: Conversation lifecycle, per-member state and group actions
- MemberViewSet: Group membership (nested under conversation)
- MessageViewSet: Message operations

URL Structure:
    /api/v1/chat/conversations/                              GET
    /api/v1/chat/conversations/single/                       POST
    /api/v1/chat/conversations/group/                        POST
    /api/v1/chat/conversations/{id}/                         GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/policies/                PATCH
    /api/v1/chat/conversations/{id}/read/                    POST
    /api/v1/chat/conversations/{id}/pin/                     POST
    /api/v1/chat/conversations/{id}/mute/                    POST, DELETE
    /api/v1/chat/conversations/{id}/leave/                   POST
    /api/v1/chat/conversations/{id}/disband/                 POST
    /api/v1/chat/conversations/{id}/transfer-ownership/      POST
    /api/v1/chat/conversations/{id}/messages/                GET
    /api/v1/chat/conversations/{id}/members/                 GET, POST
    /api/v1/chat/conversations/{id}/members/{user_id}/       PATCH, DELETE
    /api/v1/chat/messages/                                   POST
    /api/v1/chat/messages/batch-delete/                      POST
    /api/v1/chat/messages/{id}/                              GET, PATCH, DELETE
    /api/v1/chat/messages/{id}/recall/                       POST

Design Decisions:
    - ViewSets hold no business rules; every operation calls chat.services
    - Service errors (core.exceptions) are rendered by core.exception_handler
    - Conversation responses are ConversationSummary objects for the caller
"""

from __future__ import annotations

from django.db import transaction
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from chat.constants import MESSAGE_CONFIG
from chat.serializers import (
    BatchDeleteSerializer,
    ConversationSummarySerializer,
    GroupCreateSerializer,
    GroupUpdateSerializer,
    MarkReadSerializer,
    MemberRoleSerializer,
    MembersAddSerializer,
    MembershipSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    MessageUpdateSerializer,
    MuteSerializer,
    PolicyUpdateSerializer,
    SingleConversationCreateSerializer,
    TransferOwnershipSerializer,
)
from chat.services import ConversationService, GroupService, MessageService


def _int_param(request, name: str, default: int) -> int:
    try:
        return int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        return default


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        description="Active conversations, pinned first, then by latest activity.",
        tags=["Chat - Conversations"],
        responses={200: ConversationSummarySerializer(many=True)},
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        tags=["Chat - Conversations"],
        responses={200: ConversationSummarySerializer},
    ),
    partial_update=extend_schema(
        operation_id="update_group",
        summary="Update group name or avatar",
        tags=["Chat - Conversations"],
        request=GroupUpdateSerializer,
        responses={200: ConversationSummarySerializer},
    ),
    destroy=extend_schema(
        operation_id="delete_conversation",
        summary="Delete conversation",
        description="Hide the conversation and its history from your list.",
        tags=["Chat - Conversations"],
        responses={204: None},
    ),
)
class ConversationViewSet(viewsets.ViewSet):
    """
    ViewSet for conversation operations.

    list:
        Get all active conversations for the current user with unread
        counts and last message preview.

    retrieve:
        Get one conversation as seen by the current user.

    partial_update:
        Update group name or avatar. Admins and owner only.

    destroy:
        Hide the conversation for the current user only.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"\d+"

    def _summary_response(self, conversation_id, user, status_code=status.HTTP_200_OK):
        summary = ConversationService.get_conversation(conversation_id, user)
        return Response(ConversationSummarySerializer(summary).data, status=status_code)

    def list(self, request):
        summaries = ConversationService.list_conversations(request.user)
        return Response(ConversationSummarySerializer(summaries, many=True).data)

    def retrieve(self, request, pk=None):
        return self._summary_response(int(pk), request.user)

    def partial_update(self, request, pk=None):
        serializer = GroupUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ConversationService.update_group(int(pk), request.user, **serializer.validated_data)
        return self._summary_response(int(pk), request.user)

    def destroy(self, request, pk=None):
        ConversationService.delete_conversation(int(pk), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="open_single_conversation",
        summary="Open a single conversation",
        description="Get or create the one-to-one conversation with a friend.",
        tags=["Chat - Conversations"],
        request=SingleConversationCreateSerializer,
        responses={200: ConversationSummarySerializer, 201: ConversationSummarySerializer},
    )
    @action(detail=False, methods=["post"])
    def single(self, request):
        serializer = SingleConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        conversation, created = ConversationService.get_or_create_single(
            request.user, serializer.validated_data["user_id"]
        )
        return self._summary_response(
            conversation.id,
            request.user,
            status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @extend_schema(
        operation_id="create_group",
        summary="Create group",
        tags=["Chat - Conversations"],
        request=GroupCreateSerializer,
        responses={201: ConversationSummarySerializer},
    )
    @action(detail=False, methods=["post"])
    def group(self, request):
        serializer = GroupCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        conversation = ConversationService.create_group(request.user, **serializer.validated_data)
        return self._summary_response(conversation.id, request.user, status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="update_group_policies",
        summary="Update group policies",
        description="Send and add-member policies (owner) and the approval flag (admins).",
        tags=["Chat - Conversations"],
        request=PolicyUpdateSerializer,
        responses={200: ConversationSummarySerializer},
    )
    @action(detail=True, methods=["patch"])
    def policies(self, request, pk=None):
        serializer = PolicyUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        # One request, one commit: either every setting changes or none does
        with transaction.atomic():
            if "message_send_policy" in data or "member_add_policy" in data:
                ConversationService.update_policies(
                    int(pk),
                    request.user,
                    message_send_policy=data.get("message_send_policy"),
                    member_add_policy=data.get("member_add_policy"),
                )
            if "require_approval" in data:
                ConversationService.update_require_approval(
                    int(pk), request.user, data["require_approval"]
                )
        return self._summary_response(int(pk), request.user)

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        tags=["Chat - Conversations"],
        request=MarkReadSerializer,
        responses={200: ConversationSummarySerializer},
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ConversationService.mark_as_read(
            int(pk), request.user, message_id=serializer.validated_data.get("message_id")
        )
        return self._summary_response(int(pk), request.user)

    @extend_schema(
        operation_id="toggle_pin",
        summary="Pin or unpin conversation",
        tags=["Chat - Conversations"],
        request=None,
        responses={200: ConversationSummarySerializer},
    )
    @action(detail=True, methods=["post"])
    def pin(self, request, pk=None):
        ConversationService.toggle_pin(int(pk), request.user)
        return self._summary_response(int(pk), request.user)

    @extend_schema(
        operation_id="mute_conversation",
        summary="Mute or unmute conversation",
        description="POST mutes (indefinitely without duration_seconds); DELETE unmutes.",
        tags=["Chat - Conversations"],
        request=MuteSerializer,
        responses={200: ConversationSummarySerializer},
    )
    @action(detail=True, methods=["post", "delete"])
    def mute(self, request, pk=None):
        if request.method == "DELETE":
            ConversationService.unmute(int(pk), request.user)
        else:
            serializer = MuteSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            ConversationService.set_mute(
                int(pk),
                request.user,
                duration_seconds=serializer.validated_data.get("duration_seconds"),
            )
        return self._summary_response(int(pk), request.user)

    @extend_schema(
        operation_id="leave_group",
        summary="Leave group",
        tags=["Chat - Groups"],
        request=None,
        responses={204: None},
    )
    @action(detail=True, methods=["post"])
    def leave(self, request, pk=None):
        GroupService.leave(int(pk), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="disband_group",
        summary="Disband group",
        tags=["Chat - Groups"],
        request=None,
        responses={204: None},
    )
    @action(detail=True, methods=["post"])
    def disband(self, request, pk=None):
        GroupService.disband(int(pk), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="transfer_ownership",
        summary="Transfer group ownership",
        description="The current owner becomes an admin.",
        tags=["Chat - Groups"],
        request=TransferOwnershipSerializer,
        responses={200: MembershipSerializer},
    )
    @action(detail=True, methods=["post"], url_path="transfer-ownership")
    def transfer_ownership(self, request, pk=None):
        serializer = TransferOwnershipSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        membership = GroupService.transfer_ownership(
            int(pk), request.user, serializer.validated_data["user_id"]
        )
        return Response(MembershipSerializer(membership).data)

    @extend_schema(
        operation_id="list_messages",
        summary="List messages",
        description="History visible to you, newest page first, each page oldest first.",
        tags=["Chat - Messages"],
        parameters=[
            OpenApiParameter("page", OpenApiTypes.INT, description="Page number (1 = newest)"),
            OpenApiParameter(
                "page_size", OpenApiTypes.INT, description="Messages per page (max 100)"
            ),
        ],
        responses={200: MessageSerializer(many=True)},
    )
    @action(detail=True, methods=["get"])
    def messages(self, request, pk=None):
        page = MessageService.list_messages(
            int(pk),
            request.user,
            page=_int_param(request, "page", 1),
            page_size=_int_param(request, "page_size", MESSAGE_CONFIG.DEFAULT_PAGE_SIZE),
        )
        return Response(
            {
                "results": MessageSerializer(page.messages, many=True).data,
                "total": page.total,
                "page": page.page,
                "page_size": page.page_size,
                "has_more": page.has_more,
            }
        )


class MemberViewSet(viewsets.ViewSet):
    """
    ViewSet for group members.

    list:
        Active members, owner first.

    create:
        Add users (policy permitting). Former members are re-admitted.

    partial_update:
        Change a member's role (owner only).

    destroy:
        Remove a member (admins and owner).
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_members",
        summary="List group members",
        tags=["Chat - Groups"],
        responses={200: MembershipSerializer(many=True)},
    )
    def list(self, request, conversation_pk=None):
        members = GroupService.list_members(conversation_pk, request.user)
        return Response(MembershipSerializer(members, many=True).data)

    @extend_schema(
        operation_id="add_members",
        summary="Add group members",
        tags=["Chat - Groups"],
        request=MembersAddSerializer,
        responses={201: MembershipSerializer(many=True)},
    )
    def create(self, request, conversation_pk=None):
        serializer = MembersAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        added = GroupService.add_members(
            conversation_pk, request.user, serializer.validated_data["user_ids"]
        )
        return Response(
            MembershipSerializer(added, many=True).data, status=status.HTTP_201_CREATED
        )

    @extend_schema(
        operation_id="update_member_role",
        summary="Change member role",
        tags=["Chat - Groups"],
        request=MemberRoleSerializer,
        responses={200: MembershipSerializer},
    )
    def partial_update(self, request, conversation_pk=None, user_id=None):
        serializer = MemberRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        membership = GroupService.update_role(
            conversation_pk, request.user, user_id, serializer.validated_data["role"]
        )
        return Response(MembershipSerializer(membership).data)

    @extend_schema(
        operation_id="remove_member",
        summary="Remove member",
        tags=["Chat - Groups"],
        responses={204: None},
    )
    def destroy(self, request, conversation_pk=None, user_id=None):
        GroupService.remove_member(conversation_pk, request.user, user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    create=extend_schema(
        operation_id="send_message",
        summary="Send message",
        tags=["Chat - Messages"],
        request=MessageCreateSerializer,
        responses={201: MessageSerializer},
    ),
    retrieve=extend_schema(
        operation_id="get_message",
        summary="Get message",
        tags=["Chat - Messages"],
        responses={200: MessageSerializer},
    ),
    partial_update=extend_schema(
        operation_id="edit_message",
        summary="Edit message",
        tags=["Chat - Messages"],
        request=MessageUpdateSerializer,
        responses={200: MessageSerializer},
    ),
    destroy=extend_schema(
        operation_id="delete_message",
        summary="Delete message",
        tags=["Chat - Messages"],
        responses={204: None},
    ),
)
class MessageViewSet(viewsets.ViewSet):
    """
    ViewSet for message operations.

    Only the sender can edit, delete or recall a message.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"\d+"

    def create(self, request):
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        message, _ = MessageService.send_message(
            data["conversation_id"],
            request.user,
            data["content"],
            message_type=data["message_type"],
            reply_to_id=data.get("reply_to_id"),
            is_forwarded=data["is_forwarded"],
        )
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        message = MessageService.get_message(int(pk), request.user)
        return Response(MessageSerializer(message).data)

    def partial_update(self, request, pk=None):
        serializer = MessageUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = MessageService.edit_message(
            int(pk), request.user, serializer.validated_data["content"]
        )
        return Response(MessageSerializer(message).data)

    def destroy(self, request, pk=None):
        MessageService.delete_message(int(pk), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="recall_message",
        summary="Recall message",
        description="Take back your message within 5 minutes of sending.",
        tags=["Chat - Messages"],
        request=None,
        responses={200: MessageSerializer},
    )
    @action(detail=True, methods=["post"])
    def recall(self, request, pk=None):
        message = MessageService.recall_message(int(pk), request.user)
        return Response(MessageSerializer(message).data)

    @extend_schema(
        operation_id="batch_delete_messages",
        summary="Delete several messages",
        description="Deletes your own messages sent within the last 5 minutes. Any foreign or expired message fails the whole request; unknown ids are skipped.",
        tags=["Chat - Messages"],
        request=BatchDeleteSerializer,
    )
    @action(detail=False, methods=["post"], url_path="batch-delete")
    def batch_delete(self, request):
        serializer = BatchDeleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        deleted_ids = MessageService.batch_delete(
            serializer.validated_data["message_ids"], request.user
        )
        return Response({"deleted_ids": deleted_ids})
