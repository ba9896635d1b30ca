"""
Read models for chats and messages.

Each function assembles one named read model with exactly the related
rows its consumers need, so serializers never trigger lazy queries.

Read Models:
    chat_with_members: Chat + active participants (with users) + pinned ids
        + latest message. Used for REST responses and group broadcasts.
    chats_for_user: chat_with_members shape for every active chat of a user,
        latest activity first.
    message_detail: Message + sender, reply target, mentions, reactions
        and receipts. Used for message responses and broadcasts.
    message_history: message_detail shape for one chat, oldest first.
    direct_chat_between: Id of the direct chat of an unordered user pair.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db.models import Prefetch, QuerySet

from chat.models import (
    Chat,
    DirectChatPair,
    Message,
    MessageContentType,
    MessageReaction,
    MessageReceipt,
    Participant,
)

if TYPE_CHECKING:
    from authentication.models import User


def _active_members_prefetch() -> Prefetch:
    return Prefetch(
        "participants",
        queryset=Participant.objects.filter(left_at__isnull=True)
        .select_related("user")
        .order_by("joined_at", "id"),
        to_attr="active_members",
    )


def _chat_queryset() -> QuerySet[Chat]:
    return (
        Chat.objects.select_related("latest_message", "latest_message__sender")
        .prefetch_related(
            _active_members_prefetch(),
            Prefetch("pinned_messages", queryset=Message.objects.only("id", "chat_id")),
        )
    )


def chat_with_members(chat_id: int) -> Chat | None:
    """
    Load a chat with its active members resolved.

    The returned instance carries ``active_members`` (list of Participant
    with ``user`` loaded, join order).
    """
    return _chat_queryset().filter(pk=chat_id).first()


def chats_for_user(user: User, chat_type: str | None = None) -> list[Chat]:
    """All chats the user actively belongs to, most recently active first."""
    queryset = _chat_queryset().filter(
        participants__user=user,
        participants__left_at__isnull=True,
    )
    if chat_type:
        queryset = queryset.filter(chat_type=chat_type)
    return list(queryset.order_by("-updated_at", "-id").distinct())


def _message_queryset() -> QuerySet[Message]:
    return Message.objects.select_related(
        "sender", "reply_to", "reply_to__sender"
    ).prefetch_related(
        "mentions",
        Prefetch(
            "reactions",
            queryset=MessageReaction.objects.select_related("user").order_by("created_at", "id"),
        ),
        Prefetch(
            "receipts",
            queryset=MessageReceipt.objects.order_by("id"),
            to_attr="receipt_rows",
        ),
    )


def message_detail(message_id: int) -> Message | None:
    """Load a message with everything MessageSerializer renders."""
    return _message_queryset().filter(pk=message_id).first()


def message_history(chat_id: int, before_id: int | None = None, limit: int = 50) -> list[Message]:
    """
    Messages of a chat in chronological order.

    Args:
        chat_id: Chat to read
        before_id: Only return messages older than this id (paging backwards)
        limit: Maximum number of messages
    """
    queryset = _message_queryset().filter(chat_id=chat_id)
    if before_id is not None:
        queryset = queryset.filter(pk__lt=before_id)
    newest_first = list(queryset.order_by("-created_at", "-id")[:limit])
    newest_first.reverse()
    return newest_first


def search_messages(chat_id: int, query: str, limit: int) -> list[Message]:
    """Case-insensitive substring search over text messages, newest first."""
    return list(
        _message_queryset()
        .filter(chat_id=chat_id, content__icontains=query, content_type=MessageContentType.TEXT)
        .order_by("-created_at", "-id")[:limit]
    )


def direct_chat_between(user_a_id: int, user_b_id: int) -> int | None:
    """Id of the direct chat between two users, in either order."""
    lower_id, higher_id = DirectChatPair.canonical(user_a_id, user_b_id)
    return (
        DirectChatPair.objects.filter(user_lower_id=lower_id, user_higher_id=higher_id)
        .values_list("chat_id", flat=True)
        .first()
    )
