"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Chat management with participants inline
- Message moderation with receipts and reactions inline
"""

from django.contrib import admin

from chat.models import (
    Chat,
    DirectChatPair,
    Message,
    MessageReaction,
    MessageReceipt,
    Participant,
)


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in chat admin."""

    model = Participant
    fk_name = "chat"
    extra = 0
    readonly_fields = [
        "joined_at",
        "left_at",
        "left_voluntarily",
        "removed_by",
    ]
    raw_id_fields = ["user", "removed_by"]


class MessageReceiptInline(admin.TabularInline):
    model = MessageReceipt
    extra = 0
    readonly_fields = ["user", "delivered_at", "read_at"]


class MessageReactionInline(admin.TabularInline):
    model = MessageReaction
    extra = 0
    raw_id_fields = ["user"]


@admin.register(Chat)
class ChatAdmin(admin.ModelAdmin):
    """Admin interface for Chat model."""

    list_display = [
        "id",
        "chat_type",
        "name",
        "created_by",
        "created_at",
        "updated_at",
    ]
    list_filter = ["chat_type", "created_at"]
    search_fields = ["name", "id"]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["created_by", "latest_message"]
    filter_horizontal = ["pinned_messages"]
    inlines = [ParticipantInline]
    ordering = ["-updated_at"]


@admin.register(DirectChatPair)
class DirectChatPairAdmin(admin.ModelAdmin):
    list_display = ["chat", "user_lower", "user_higher"]
    raw_id_fields = ["chat", "user_lower", "user_higher"]


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    """Admin interface for Participant model."""

    list_display = [
        "id",
        "chat",
        "user",
        "role",
        "is_muted",
        "admin_position",
        "joined_at",
        "left_at",
    ]
    list_filter = ["role", "is_muted", "left_voluntarily", "joined_at"]
    search_fields = ["user__email", "chat__name"]
    readonly_fields = ["created_at", "updated_at", "joined_at"]
    raw_id_fields = ["chat", "user", "removed_by"]
    ordering = ["-joined_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "chat",
        "sender",
        "content_type",
        "content_preview",
        "is_read",
        "created_at",
    ]
    list_filter = ["content_type", "is_read", "created_at"]
    search_fields = ["content", "sender__email"]
    readonly_fields = ["created_at", "updated_at", "is_read"]
    raw_id_fields = ["chat", "sender", "reply_to"]
    filter_horizontal = ["mentions"]
    inlines = [MessageReceiptInline, MessageReactionInline]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content
