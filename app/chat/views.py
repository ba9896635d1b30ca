"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ChatViewSet: Chat listing, direct chat access, history, send, search
- GroupViewSet: Group governance
- MessageViewSet: Receipts, pinning and reactions on a single message

URL Structure:
    /api/v1/chat/chats/                              GET, POST
    /api/v1/chat/chats/{id}/                         GET
    /api/v1/chat/chats/{id}/messages/                GET, POST
    /api/v1/chat/chats/{id}/messages/search/?q=      GET
    /api/v1/chat/groups/                             GET, POST
    /api/v1/chat/groups/{id}/                        GET, PATCH, DELETE
    /api/v1/chat/groups/{id}/add-members/            POST
    /api/v1/chat/groups/{id}/remove-members/         POST
    /api/v1/chat/groups/{id}/leave/                  POST
    /api/v1/chat/groups/{id}/transfer-ownership/     POST
    /api/v1/chat/groups/{id}/promote-admin/          POST
    /api/v1/chat/groups/{id}/mute-user/              POST
    /api/v1/chat/groups/{id}/unmute-user/            POST
    /api/v1/chat/messages/{id}/delivered/            POST
    /api/v1/chat/messages/{id}/read/                 POST
    /api/v1/chat/messages/{id}/pin/                  POST, DELETE
    /api/v1/chat/messages/{id}/reactions/            PUT, DELETE

Design Decisions:
    - Views validate shape, services decide legality, and error codes map
      to HTTP status through ERROR_STATUS
    - Events are published only after the service call has returned, i.e.
      after its transaction committed
    - Publishing never changes the response; transport failures are logged
      by the broadcast router
"""

from __future__ import annotations

import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.viewset_mixins import ServiceResponseMixin

from chat import selectors
from chat.broadcast import chat_group, get_broadcast_router
from chat.constants import CHAT_EVENTS, ERROR_STATUS
from chat.dedup import get_dedup_filter
from chat.presence import get_presence_registry
from chat.serializers import (
    ChatSerializer,
    DirectChatAccessSerializer,
    GroupCreateSerializer,
    GroupUpdateSerializer,
    HistoryQuerySerializer,
    MessageCreateSerializer,
    MessageSerializer,
    ReactionInputSerializer,
    UserIdSerializer,
    UserIdsSerializer,
)
from chat.services import (
    ChatService,
    GroupService,
    MessageService,
    ReactionService,
    ReceiptService,
)

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: OpenApiResponse(description="Invalid input"),
    403: OpenApiResponse(description="Not allowed for this user"),
    404: OpenApiResponse(description="Chat, message or user not found"),
}
GOVERNANCE_RESPONSES = {
    **ERROR_RESPONSES,
    409: OpenApiResponse(description="Would break a group invariant"),
}


class ChatAPIViewSet(ServiceResponseMixin, viewsets.ViewSet):
    """Shared plumbing: auth, error mapping and event publishing."""

    permission_classes = [IsAuthenticated]
    error_status_map = ERROR_STATUS
    lookup_value_regex = r"\d+"

    @property
    def router(self):
        return get_broadcast_router()

    def chat_data(self, chat) -> dict:
        return ChatSerializer(chat, context={"request": self.request}).data

    def message_data(self, message) -> dict:
        return MessageSerializer(message, context={"request": self.request}).data

    def publish_chat(self, chat_id: int, event: str, payload) -> None:
        self.router.publish_sync(chat_group(chat_id), event, payload)

    def publish_users(self, user_ids, event: str, payload) -> None:
        self.router.publish_to_users_sync(user_ids, event, payload)

    def publish_snapshots(self, snapshots, event: str) -> None:
        for snapshot in snapshots:
            self.publish_chat(snapshot.chat_id, event, snapshot.as_payload())


# =============================================================================
# Chats
# =============================================================================


class ChatViewSet(ChatAPIViewSet):
    """
    Chats of the current user and their messages.

    list:
        All active chats, most recently active first.

    create:
        Open the direct chat with another user, creating it on first use.
        Returns 201 when created, 200 when it already existed.

    retrieve:
        One chat the caller belongs to.

    messages:
        GET returns history (oldest first, ?before=<id>&limit=<n>).
        POST sends a message.

    search:
        Case-insensitive search over the chat's text messages.
    """

    @extend_schema(
        operation_id="list_chats",
        summary="List chats",
        responses={200: ChatSerializer(many=True)},
        tags=["Chat - Chats"],
    )
    def list(self, request):
        result = ChatService.list_chats(request.user)
        return Response(ChatSerializer(result.data, many=True).data)

    @extend_schema(
        operation_id="access_direct_chat",
        summary="Open direct chat",
        request=DirectChatAccessSerializer,
        responses={200: ChatSerializer, 201: ChatSerializer, **ERROR_RESPONSES},
        tags=["Chat - Chats"],
    )
    def create(self, request):
        data = self.validate_input(DirectChatAccessSerializer, request.data)
        existed = selectors.direct_chat_between(request.user.id, data["user_id"]) is not None

        result = ChatService.access_direct(request.user, data["user_id"])
        if not result.success:
            return self.service_error(result)

        return Response(
            self.chat_data(result.data),
            status=status.HTTP_200_OK if existed else status.HTTP_201_CREATED,
        )

    @extend_schema(
        operation_id="get_chat",
        summary="Get chat",
        responses={200: ChatSerializer, **ERROR_RESPONSES},
        tags=["Chat - Chats"],
    )
    def retrieve(self, request, pk=None):
        result = ChatService.get_chat_for_member(request.user, int(pk))
        if not result.success:
            return self.service_error(result)
        return Response(self.chat_data(result.data))

    @extend_schema(
        methods=["GET"],
        operation_id="list_chat_messages",
        summary="Message history",
        parameters=[
            OpenApiParameter("before", OpenApiTypes.INT, description="Only messages older than this id"),
            OpenApiParameter("limit", OpenApiTypes.INT, description="Page size"),
        ],
        responses={200: MessageSerializer(many=True), **ERROR_RESPONSES},
        tags=["Chat - Messages"],
    )
    @extend_schema(
        methods=["POST"],
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={201: MessageSerializer, **ERROR_RESPONSES},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get", "post"])
    def messages(self, request, pk=None):
        if request.method == "GET":
            return self._history(request, int(pk))
        return self._send(request, int(pk))

    def _history(self, request, chat_id: int):
        params = self.validate_input(HistoryQuerySerializer, request.query_params)
        result = MessageService.fetch_history(
            request.user, chat_id, before_id=params["before"], limit=params["limit"]
        )
        if not result.success:
            return self.service_error(result)
        return Response(MessageSerializer(result.data, many=True).data)

    def _send(self, request, chat_id: int):
        data = self.validate_input(MessageCreateSerializer, request.data)
        result = MessageService.send_message(
            sender=request.user,
            chat_id=chat_id,
            content=data["content"],
            content_type=data["content_type"],
            reply_to_id=data["reply_to"],
            mention_ids=data["mentions"],
        )
        if not result.success:
            return self.service_error(result)

        message = result.data
        # A client echo of this message over the socket must not relay again
        get_dedup_filter().should_process(message.id)

        snapshots = ReceiptService.deliver_to_online(
            message.id, get_presence_registry().online_user_ids()
        )
        if snapshots:
            message = selectors.message_detail(message.id)

        payload = self.message_data(message)
        self.publish_chat(chat_id, CHAT_EVENTS.NEW_MESSAGE, payload)
        self.publish_snapshots(snapshots, CHAT_EVENTS.MESSAGE_DELIVERED)

        mentioned = [user.id for user in message.mentions.all() if user.id != request.user.id]
        if mentioned:
            self.publish_users(mentioned, CHAT_EVENTS.MENTIONED_IN_MESSAGE, payload)

        return Response(payload, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="search_chat_messages",
        summary="Search messages",
        parameters=[OpenApiParameter("q", OpenApiTypes.STR, required=True)],
        responses={200: MessageSerializer(many=True), **ERROR_RESPONSES},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get"], url_path="messages/search")
    def search(self, request, pk=None):
        result = MessageService.search_messages(request.user, int(pk), request.query_params.get("q", ""))
        if not result.success:
            return self.service_error(result)
        return Response(MessageSerializer(result.data, many=True).data)


# =============================================================================
# Groups
# =============================================================================


class GroupViewSet(ChatAPIViewSet):
    """
    Group governance.

    Admin actions: update info, add/remove members, promote, mute, unmute.
    Owner actions: transfer ownership, delete.
    Any member: leave.
    """

    @extend_schema(
        operation_id="list_groups",
        summary="List groups",
        responses={200: ChatSerializer(many=True)},
        tags=["Chat - Groups"],
    )
    def list(self, request):
        result = ChatService.list_groups(request.user)
        return Response(ChatSerializer(result.data, many=True).data)

    @extend_schema(
        operation_id="create_group",
        summary="Create group",
        request=GroupCreateSerializer,
        responses={201: ChatSerializer, **ERROR_RESPONSES},
        tags=["Chat - Groups"],
    )
    def create(self, request):
        data = self.validate_input(GroupCreateSerializer, request.data)
        result = GroupService.create_group(
            creator=request.user,
            member_ids=data["member_ids"],
            name=data["name"],
            icon_url=data["icon_url"],
            description=data["description"],
        )
        if not result.success:
            return self.service_error(result)

        chat = result.data
        payload = self.chat_data(chat)
        added = [uid for uid in chat.user_ids() if uid != request.user.id]
        self.publish_users(added, CHAT_EVENTS.ADDED_TO_GROUP, payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="get_group",
        summary="Get group",
        responses={200: ChatSerializer, **ERROR_RESPONSES},
        tags=["Chat - Groups"],
    )
    def retrieve(self, request, pk=None):
        result = ChatService.get_chat_for_member(request.user, int(pk))
        if not result.success:
            return self.service_error(result)
        return Response(self.chat_data(result.data))

    @extend_schema(
        operation_id="update_group",
        summary="Update group info",
        request=GroupUpdateSerializer,
        responses={200: ChatSerializer, **ERROR_RESPONSES},
        tags=["Chat - Groups"],
    )
    def partial_update(self, request, pk=None):
        data = self.validate_input(GroupUpdateSerializer, request.data)
        result = GroupService.update_info(request.user, int(pk), **data)
        if not result.success:
            return self.service_error(result)

        payload = self.chat_data(result.data)
        self.publish_chat(int(pk), CHAT_EVENTS.GROUP_INFO_UPDATED, payload)
        return Response(payload)

    @extend_schema(
        operation_id="delete_group",
        summary="Delete group",
        responses={204: None, **ERROR_RESPONSES},
        tags=["Chat - Groups"],
    )
    def destroy(self, request, pk=None):
        chat_id = int(pk)
        result = GroupService.delete_group(request.user, chat_id)
        if not result.success:
            return self.service_error(result)

        self.publish_users(result.data, CHAT_EVENTS.GROUP_DELETED, {"chat_id": chat_id})
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="add_group_members",
        summary="Add members",
        request=UserIdsSerializer,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"], url_path="add-members")
    def add_members(self, request, pk=None):
        data = self.validate_input(UserIdsSerializer, request.data)
        result = GroupService.add_members(request.user, int(pk), data["user_ids"])
        if not result.success:
            return self.service_error(result)

        change = result.data
        payload = self.chat_data(change.chat)
        self.publish_chat(int(pk), CHAT_EVENTS.GROUP_MEMBERS_UPDATED, payload)
        if change.user_ids:
            self.publish_users(change.user_ids, CHAT_EVENTS.ADDED_TO_GROUP, payload)
        return Response(payload)

    @extend_schema(
        operation_id="remove_group_members",
        summary="Remove members",
        request=UserIdsSerializer,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"], url_path="remove-members")
    def remove_members(self, request, pk=None):
        data = self.validate_input(UserIdsSerializer, request.data)
        result = GroupService.remove_members(request.user, int(pk), data["user_ids"])
        if not result.success:
            return self.service_error(result)

        change = result.data
        payload = self.chat_data(change.chat)
        self.publish_chat(int(pk), CHAT_EVENTS.GROUP_MEMBERS_UPDATED, payload)
        self.publish_users(
            change.user_ids,
            CHAT_EVENTS.REMOVED_FROM_GROUP,
            {"chat_id": int(pk), "removed_by": request.user.id},
        )
        return Response(payload)

    @extend_schema(
        operation_id="leave_group",
        summary="Leave group",
        request=None,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"])
    def leave(self, request, pk=None):
        chat_id = int(pk)
        result = GroupService.leave_group(request.user, chat_id)
        if not result.success:
            return self.service_error(result)

        change = result.data
        payload = self.chat_data(change.chat)
        self.publish_chat(chat_id, CHAT_EVENTS.LEFT_GROUP, {"chat_id": chat_id, "user_id": request.user.id})
        self.publish_chat(chat_id, CHAT_EVENTS.GROUP_MEMBERS_UPDATED, payload)
        if change.new_owner_id is not None:
            self.publish_chat(chat_id, CHAT_EVENTS.GROUP_OWNERSHIP_TRANSFERRED, payload)
        return Response(payload)

    @extend_schema(
        operation_id="transfer_group_ownership",
        summary="Transfer ownership",
        request=UserIdSerializer,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"], url_path="transfer-ownership")
    def transfer_ownership(self, request, pk=None):
        data = self.validate_input(UserIdSerializer, request.data)
        result = GroupService.transfer_ownership(request.user, int(pk), data["user_id"])
        return self._group_change(result, int(pk), CHAT_EVENTS.GROUP_OWNERSHIP_TRANSFERRED)

    @extend_schema(
        operation_id="promote_group_admin",
        summary="Promote to admin",
        request=UserIdSerializer,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"], url_path="promote-admin")
    def promote_admin(self, request, pk=None):
        data = self.validate_input(UserIdSerializer, request.data)
        result = GroupService.promote_to_admin(request.user, int(pk), data["user_id"])
        return self._group_change(result, int(pk), CHAT_EVENTS.GROUP_ADMINS_UPDATED)

    @extend_schema(
        operation_id="mute_group_user",
        summary="Mute user",
        request=UserIdSerializer,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"], url_path="mute-user")
    def mute_user(self, request, pk=None):
        data = self.validate_input(UserIdSerializer, request.data)
        result = GroupService.mute_user(request.user, int(pk), data["user_id"])
        return self._group_change(result, int(pk), CHAT_EVENTS.GROUP_MUTED_UPDATED)

    @extend_schema(
        operation_id="unmute_group_user",
        summary="Unmute user",
        request=UserIdSerializer,
        responses={200: ChatSerializer, **GOVERNANCE_RESPONSES},
        tags=["Chat - Groups"],
    )
    @action(detail=True, methods=["post"], url_path="unmute-user")
    def unmute_user(self, request, pk=None):
        data = self.validate_input(UserIdSerializer, request.data)
        result = GroupService.unmute_user(request.user, int(pk), data["user_id"])
        return self._group_change(result, int(pk), CHAT_EVENTS.GROUP_MUTED_UPDATED)

    def _group_change(self, result, chat_id: int, event: str):
        if not result.success:
            return self.service_error(result)
        payload = self.chat_data(result.data)
        self.publish_chat(chat_id, event, payload)
        return Response(payload)


# =============================================================================
# Messages
# =============================================================================


class MessageViewSet(ChatAPIViewSet):
    """
    Actions on one message: receipts, pinning, reactions.

    Receipts return the union snapshot {delivered_by, read_by, is_read}
    and are published only when they changed something.
    """

    @extend_schema(
        operation_id="mark_message_delivered",
        summary="Mark delivered",
        request=None,
        responses={200: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
        tags=["Chat - Receipts"],
    )
    @action(detail=True, methods=["post"])
    def delivered(self, request, pk=None):
        result = ReceiptService.mark_delivered(int(pk), request.user.id)
        if not result.success:
            return self.service_error(result)
        snapshot = result.data
        if snapshot.changed:
            self.publish_snapshots([snapshot], CHAT_EVENTS.MESSAGE_DELIVERED)
        return Response(snapshot.as_payload())

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark read",
        request=None,
        responses={200: OpenApiTypes.OBJECT, **ERROR_RESPONSES},
        tags=["Chat - Receipts"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        result = ReceiptService.mark_read(int(pk), request.user.id)
        if not result.success:
            return self.service_error(result)
        snapshot = result.data
        if snapshot.changed:
            self.publish_snapshots([snapshot], CHAT_EVENTS.MESSAGE_STATUS_UPDATE)
        return Response(snapshot.as_payload())

    @extend_schema(
        operation_id="pin_message",
        summary="Pin or unpin message",
        request=None,
        responses={200: ChatSerializer, **ERROR_RESPONSES},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post", "delete"])
    def pin(self, request, pk=None):
        if request.method == "DELETE":
            result = MessageService.unpin_message(request.user, int(pk))
            event = CHAT_EVENTS.MESSAGE_UNPINNED
        else:
            result = MessageService.pin_message(request.user, int(pk))
            event = CHAT_EVENTS.MESSAGE_PINNED
        if not result.success:
            return self.service_error(result)

        chat = result.data
        self.publish_chat(chat.id, event, {"chat_id": chat.id, "message_id": int(pk)})
        return Response(self.chat_data(chat))

    @extend_schema(
        methods=["PUT"],
        operation_id="set_message_reaction",
        summary="React to message",
        request=ReactionInputSerializer,
        responses={200: MessageSerializer, **ERROR_RESPONSES},
        tags=["Chat - Reactions"],
    )
    @extend_schema(
        methods=["DELETE"],
        operation_id="remove_message_reaction",
        summary="Remove reaction",
        request=None,
        responses={200: MessageSerializer, **ERROR_RESPONSES},
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["put", "delete"])
    def reactions(self, request, pk=None):
        if request.method == "DELETE":
            result = ReactionService.remove_reaction(int(pk), request.user)
        else:
            data = self.validate_input(ReactionInputSerializer, request.data)
            result = ReactionService.add_reaction(int(pk), request.user, data["emoji"])
        if not result.success:
            return self.service_error(result)

        message = result.data
        payload = self.message_data(message)
        self.publish_chat(message.chat_id, CHAT_EVENTS.MESSAGE_REACTION_UPDATED, payload)
        return Response(payload)
