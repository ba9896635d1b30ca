"""
Chat app for real-time messaging.

This app handles:
- Chats (direct and group) and group governance
- Message sending, history, search, pins and reactions
- Delivery/read receipts and the derived is_read flag
- Presence and WebSocket relay

Related apps:
    - authentication: User model for participants
    - core: ServiceResult, BaseService, exceptions

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import GroupService, MessageService

    result = GroupService.create_group(creator=user, member_ids=[2, 3], name="Team")

    result = MessageService.send_message(
        sender=user,
        chat_id=result.data.id,
        content="Hello!",
    )
"""
