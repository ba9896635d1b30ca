"""
WebSocket consumer for the chat application.

One ChatConsumer instance serves one user session. Every inbound frame is
routed through a single dispatch table (event name -> handler); handlers
talk to the database through database_sync_to_async and to other sessions
through the broadcast router.

Authentication:
    JWTAuthMiddleware attaches the user to self.scope["user"]. Anonymous
    connections are closed with code 4001.

Frames:
    Client -> server: {"event": <name>, "data": <payload>}
    Server -> client: {"event": <name>, "payload": <payload>}

Inbound events:
    setup                   userId: register presence, deliver missed messages
    join chat               chatId: subscribe to the chat, mark its messages read
    new message             message data with id and chatId: sender relays once
    typing / stop typing    {chatId, userId}: relay as "user typing" / "user stopped typing"
    mark message delivered  {messageId, chatId, userId}: relay as "message delivered"
    mark message read       {messageId, chatId, userId}: relay as "message status update"

Invalid frames get an "error" event sent back to this connection only.
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from core.exceptions import (
    BaseApplicationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from chat.broadcast import BroadcastRouter, chat_group, get_broadcast_router, user_group
from chat.constants import CHANNEL_GROUPS, CHAT_EVENTS, CLOSE_CODES, ERROR_STATUS
from chat.dedup import DedupFilter, get_dedup_filter
from chat.middleware import SUBPROTOCOL_NAME
from chat.presence import PresenceRegistry, get_presence_registry
from chat.services import ChatService, MessageService, ReceiptService

logger = logging.getLogger(__name__)

TYPING_RELAYS = {
    CHAT_EVENTS.TYPING: CHAT_EVENTS.USER_TYPING,
    CHAT_EVENTS.STOP_TYPING: CHAT_EVENTS.USER_STOPPED_TYPING,
}


def _coerce_id(value, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field_name}' must be an id", details={"field": field_name})


def _result_error(result) -> BaseApplicationError:
    """Exception for a failed ServiceResult, picked by its HTTP status."""
    status = ERROR_STATUS.get(result.error_code, 400)
    if status == 403:
        return PermissionDeniedError(result.error, error_code=result.error_code)
    if status == 404:
        return NotFoundError(result.error, error_code=result.error_code)
    return ValidationError(result.error, error_code=result.error_code)


def _pick(data, *keys):
    """First present key of a dict payload."""
    if isinstance(data, dict):
        for key in keys:
            if data.get(key) is not None:
                return data[key]
    return None


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    Per-session WebSocket consumer.

    Attributes:
        user: Authenticated user
        is_set_up: Whether "setup" registered this connection for presence
        joined_chats: Chat ids this connection subscribed to
    """

    event_handlers = {
        CHAT_EVENTS.SETUP: "handle_setup",
        CHAT_EVENTS.JOIN_CHAT: "handle_join_chat",
        CHAT_EVENTS.NEW_MESSAGE: "handle_new_message",
        CHAT_EVENTS.TYPING: "handle_typing",
        CHAT_EVENTS.STOP_TYPING: "handle_typing",
        CHAT_EVENTS.MARK_DELIVERED: "handle_mark_delivered",
        CHAT_EVENTS.MARK_READ: "handle_mark_read",
    }

    def __init__(
        self,
        *args,
        presence_registry: PresenceRegistry | None = None,
        dedup_filter: DedupFilter | None = None,
        router: BroadcastRouter | None = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.presence = presence_registry or get_presence_registry()
        self.dedup = dedup_filter or get_dedup_filter()
        self.router = router or get_broadcast_router()
        self.user = None
        self.is_set_up = False
        self.joined_chats: set[int] = set()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            logger.warning("Rejected unauthenticated WebSocket connection")
            await self.close(code=CLOSE_CODES.UNAUTHENTICATED)
            return

        self.user = user
        self.dedup.start()

        if SUBPROTOCOL_NAME in self.scope.get("subprotocols", []):
            await self.accept(subprotocol=SUBPROTOCOL_NAME)
        else:
            await self.accept()
        logger.info(f"User {user.id} connected ({self.channel_name})")

    async def disconnect(self, close_code):
        if self.user is None:
            return

        if self.is_set_up:
            await self.presence.unregister(self.channel_name)
            await self.channel_layer.group_discard(CHANNEL_GROUPS.PRESENCE, self.channel_name)
            await self.channel_layer.group_discard(user_group(self.user.id), self.channel_name)

        for chat_id in self.joined_chats:
            await self.channel_layer.group_discard(chat_group(chat_id), self.channel_name)

        logger.info(f"User {self.user.id} disconnected ({close_code})")

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def receive_json(self, content, **kwargs):
        event = content.get("event") if isinstance(content, dict) else None
        handler_name = self.event_handlers.get(event) if isinstance(event, str) else None

        if handler_name is None:
            await self.send_error(
                ValidationError(f"Unknown event: {event!r}", error_code="UNKNOWN_EVENT"),
                event,
            )
            return

        try:
            await getattr(self, handler_name)(event, content.get("data"))
        except BaseApplicationError as exc:
            logger.warning(f"User {self.user.id} '{event}' rejected: {exc}")
            await self.send_error(exc, event)

    async def send_error(self, exc: BaseApplicationError, event=None):
        await self.send_json(
            {
                "event": CHAT_EVENTS.ERROR,
                "payload": {**exc.to_dict(), "event": event},
            }
        )

    async def chat_event(self, message):
        """Forward a broadcast event from the channel layer to the socket."""
        if message.get("exclude") == self.channel_name:
            return
        await self.send_json({"event": message["event"], "payload": message["payload"]})

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def handle_setup(self, event, data):
        user_id = _coerce_id(
            data if not isinstance(data, dict) else _pick(data, "userId", "_id", "id"),
            "userId",
        )
        if user_id != self.user.id:
            raise PermissionDeniedError("setup userId does not match the authenticated user")

        others = await self.presence.register(self.user.id, self.channel_name)
        await self.channel_layer.group_add(user_group(self.user.id), self.channel_name)
        await self.channel_layer.group_add(CHANNEL_GROUPS.PRESENCE, self.channel_name)
        self.is_set_up = True

        snapshots = await database_sync_to_async(ReceiptService.backfill_delivery)(self.user.id)
        for snapshot in snapshots:
            await self.router.publish(
                chat_group(snapshot.chat_id),
                CHAT_EVENTS.MESSAGE_DELIVERED,
                snapshot.as_payload(),
            )

        await self.send_json(
            {
                "event": CHAT_EVENTS.CONNECTED,
                "payload": {"user_id": self.user.id, "online_user_ids": others},
            }
        )

    async def handle_join_chat(self, event, data):
        chat_id = _coerce_id(
            data if not isinstance(data, dict) else _pick(data, "chatId", "_id", "id"),
            "chatId",
        )
        is_member = await database_sync_to_async(ChatService.is_member)(self.user.id, chat_id)
        if not is_member:
            raise PermissionDeniedError(
                "You are not a participant in this chat", error_code="NOT_PARTICIPANT"
            )

        await self.channel_layer.group_add(chat_group(chat_id), self.channel_name)
        self.joined_chats.add(chat_id)

        snapshots = await database_sync_to_async(ReceiptService.backfill_read)(
            self.user.id, chat_id
        )
        for snapshot in snapshots:
            await self.router.publish(
                chat_group(chat_id),
                CHAT_EVENTS.MESSAGE_STATUS_UPDATE,
                snapshot.as_payload(),
            )

    async def handle_new_message(self, event, data):
        if not isinstance(data, dict):
            raise ValidationError("Message data must be an object")
        message_id = _coerce_id(_pick(data, "_id", "id"), "id")
        chat_ref = _pick(data, "chatId", "chat")
        if isinstance(chat_ref, dict):
            chat_ref = _pick(chat_ref, "_id", "id")
        chat_id = _coerce_id(chat_ref, "chatId")

        checked = await database_sync_to_async(MessageService.check_relay)(
            self.user.id, message_id, chat_id
        )
        if not checked.success:
            raise _result_error(checked)

        if not self.dedup.should_process(message_id):
            logger.debug(f"Dropped duplicate relay of message {message_id}")
            return

        snapshots = await database_sync_to_async(ReceiptService.deliver_to_online)(
            message_id, self.presence.online_user_ids()
        )

        await self.router.publish(
            chat_group(chat_id),
            CHAT_EVENTS.NEW_MESSAGE,
            data,
            exclude_channel=self.channel_name,
        )
        for snapshot in snapshots:
            await self.router.publish(
                chat_group(chat_id),
                CHAT_EVENTS.MESSAGE_DELIVERED,
                snapshot.as_payload(),
            )

    async def handle_typing(self, event, data):
        await self._relay_to_joined_chat(TYPING_RELAYS[event], data)

    async def handle_mark_delivered(self, event, data):
        await self._relay_to_joined_chat(CHAT_EVENTS.MESSAGE_DELIVERED, data)

    async def handle_mark_read(self, event, data):
        await self._relay_to_joined_chat(CHAT_EVENTS.MESSAGE_STATUS_UPDATE, data)

    async def _relay_to_joined_chat(self, outbound_event, data):
        """
        Relay a payload verbatim to a chat this connection has joined.

        Persistence is the REST path's job; this is a low-latency echo.
        """
        chat_id = _coerce_id(_pick(data, "chatId"), "chatId")
        if chat_id not in self.joined_chats:
            raise PermissionDeniedError(
                "Join the chat before sending events to it", error_code="NOT_PARTICIPANT"
            )
        await self.router.publish(
            chat_group(chat_id),
            outbound_event,
            data,
            exclude_channel=self.channel_name,
        )
