"""
Serializers for chat API.

Output serializers render the read models built in selectors.py and never
trigger queries of their own when given one. Input serializers only check
shape; business rules (membership, roles, limits) live in the services so
REST and WebSocket callers get the same error codes.

Serializer Hierarchy:
    ChatSerializer: Chat with users, admins, owner, muted, pinned ids
    MessageSerializer: Message with receipts, reactions, mentions, reply
    MessagePreviewSerializer: Minimal message for chat list preview
    ReactionSerializer: One user's reaction

    DirectChatAccessSerializer: Open a direct chat
    GroupCreateSerializer / GroupUpdateSerializer: Group info
    UserIdsSerializer / UserIdSerializer: Governance targets
    MessageCreateSerializer: Send a message
    HistoryQuerySerializer: History paging parameters
    ReactionInputSerializer: Set a reaction
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import GROUP_CONFIG, MESSAGE_CONFIG
from chat.models import Chat, Message, MessageReaction, order_admins


# =============================================================================
# Helper Functions
# =============================================================================


def _active_members(chat: Chat) -> list:
    """Active participants, preferring the prefetched read model."""
    members = getattr(chat, "active_members", None)
    if members is None:
        members = list(chat.get_active_participants().select_related("user"))
    return members


def _receipt_rows(message: Message) -> list:
    rows = getattr(message, "receipt_rows", None)
    if rows is None:
        rows = list(message.receipts.all())
    return rows


# =============================================================================
# Message Serializers
# =============================================================================


class ReactionSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = MessageReaction
        fields = ["user", "emoji"]
        read_only_fields = fields


class MessagePreviewSerializer(serializers.ModelSerializer):
    """
    Minimal message serializer for chat list preview and reply targets.
    """

    chat_id = serializers.IntegerField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Message
        fields = ["id", "chat_id", "sender_id", "content", "content_type", "created_at"]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer.

    delivered_by and read_by are user ids ordered by when the receipt
    happened. Expects the message_detail read model.
    """

    chat_id = serializers.IntegerField(read_only=True)
    sender = UserSerializer(read_only=True, allow_null=True)
    reply_to = MessagePreviewSerializer(read_only=True, allow_null=True)
    mentions = UserSerializer(many=True, read_only=True)
    reactions = ReactionSerializer(many=True, read_only=True)
    delivered_by = serializers.SerializerMethodField(
        help_text="User ids that received the message, in delivery order"
    )
    read_by = serializers.SerializerMethodField(
        help_text="User ids that read the message, in read order"
    )

    class Meta:
        model = Message
        fields = [
            "id",
            "chat_id",
            "sender",
            "content",
            "content_type",
            "reply_to",
            "mentions",
            "reactions",
            "delivered_by",
            "read_by",
            "is_read",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_delivered_by(self, obj: Message) -> list[int]:
        rows = [r for r in _receipt_rows(obj) if r.delivered_at is not None]
        rows.sort(key=lambda r: (r.delivered_at, r.id))
        return [r.user_id for r in rows]

    def get_read_by(self, obj: Message) -> list[int]:
        rows = [r for r in _receipt_rows(obj) if r.read_at is not None]
        rows.sort(key=lambda r: (r.read_at, r.id))
        return [r.user_id for r in rows]


# =============================================================================
# Chat Serializers
# =============================================================================


class ChatSerializer(serializers.ModelSerializer):
    """
    Chat read model.

    users is in join order. admins starts with the owner. For direct
    chats admins, owner and muted_users are empty.
    """

    users = serializers.SerializerMethodField()
    admins = serializers.SerializerMethodField()
    owner = serializers.SerializerMethodField()
    muted_users = serializers.SerializerMethodField()
    pinned_messages = serializers.SerializerMethodField()
    latest_message = MessagePreviewSerializer(read_only=True, allow_null=True)
    created_by_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Chat
        fields = [
            "id",
            "chat_type",
            "name",
            "icon_url",
            "description",
            "users",
            "admins",
            "owner",
            "muted_users",
            "pinned_messages",
            "latest_message",
            "created_by_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_users(self, obj: Chat) -> list[dict]:
        return UserSerializer([p.user for p in _active_members(obj)], many=True).data

    def get_admins(self, obj: Chat) -> list[dict]:
        admins = order_admins(_active_members(obj))
        return UserSerializer([p.user for p in admins], many=True).data

    def get_owner(self, obj: Chat) -> dict | None:
        owner = next((p for p in _active_members(obj) if p.is_owner), None)
        return UserSerializer(owner.user).data if owner else None

    def get_muted_users(self, obj: Chat) -> list[dict]:
        muted = [p.user for p in _active_members(obj) if p.is_muted]
        return UserSerializer(muted, many=True).data

    def get_pinned_messages(self, obj: Chat) -> list[int]:
        return sorted(m.id for m in obj.pinned_messages.all())


# =============================================================================
# Input Serializers
# =============================================================================


class DirectChatAccessSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(help_text="The other participant")


class GroupCreateSerializer(serializers.Serializer):
    """
    Create a group. The caller becomes the owner; member_ids lists the
    other users (at least two, checked by the service).
    """

    name = serializers.CharField(max_length=GROUP_CONFIG.MAX_NAME_LENGTH, allow_blank=True)
    member_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=True)
    icon_url = serializers.URLField(max_length=500, required=False, allow_blank=True, default="")
    description = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_DESCRIPTION_LENGTH,
        required=False,
        allow_blank=True,
        default="",
    )


class GroupUpdateSerializer(serializers.Serializer):
    """Partial group info update; omitted fields are left unchanged."""

    name = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_NAME_LENGTH, required=False, allow_blank=True
    )
    icon_url = serializers.URLField(max_length=500, required=False, allow_blank=True)
    description = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_DESCRIPTION_LENGTH, required=False, allow_blank=True
    )

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide name, icon_url or description")
        return attrs


class UserIdsSerializer(serializers.Serializer):
    user_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class UserIdSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()


class MessageCreateSerializer(serializers.Serializer):
    """
    Send a message.

    content_type is checked by the service so an unknown value is reported
    as INVALID_CONTENT_TYPE rather than a generic validation error.
    """

    content = serializers.CharField(allow_blank=True, trim_whitespace=False)
    content_type = serializers.CharField(required=False, default="text")
    reply_to = serializers.IntegerField(required=False, allow_null=True, default=None)
    mentions = serializers.ListField(
        child=serializers.IntegerField(), required=False, default=list
    )


class HistoryQuerySerializer(serializers.Serializer):
    before = serializers.IntegerField(required=False, allow_null=True, default=None)
    limit = serializers.IntegerField(
        required=False,
        min_value=1,
        max_value=MESSAGE_CONFIG.HISTORY_MAX_PAGE_SIZE,
        default=MESSAGE_CONFIG.HISTORY_DEFAULT_PAGE_SIZE,
    )


class ReactionInputSerializer(serializers.Serializer):
    emoji = serializers.CharField(allow_blank=True, trim_whitespace=False)
