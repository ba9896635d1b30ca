"""
Chat application configuration.

This app provides the chat system with:
- Direct (1:1) and group chats
- Group governance (owner, admins, muted members)
- Per-recipient delivery and read receipts
- Presence and live relay over WebSockets
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
