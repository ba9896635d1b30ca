"""
Broadcast router for live chat events.

Fans state changes out over the Channels layer to three kinds of groups:

    chat_<id>   connections that joined the chat
    user_<id>   every live session of one user (chat-independent notices
                such as "added to group" or "mentioned in message")
    presence    every set-up session (online/offline notices)

Messages on the layer have the shape
    {"type": "chat.event", "event": <name>, "payload": <json-safe dict>}
and ChatConsumer.chat_event forwards {"event", "payload"} to the socket.

Publishing is fire-and-forget relative to the database: callers publish
after their write has committed, and transport errors are logged and
swallowed so they can never undo that write.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.serializers.json import DjangoJSONEncoder

from chat.constants import CHANNEL_GROUPS

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

logger = logging.getLogger(__name__)

EVENT_HANDLER_TYPE = "chat.event"


def chat_group(chat_id: int) -> str:
    """Group name for connections that joined a chat."""
    return f"{CHANNEL_GROUPS.CHAT_PREFIX}{chat_id}"


def user_group(user_id: int) -> str:
    """Group name for all sessions of a user."""
    return f"{CHANNEL_GROUPS.USER_PREFIX}{user_id}"


def to_json_safe(payload: Any) -> Any:
    """Round-trip through JSON so ids, datetimes and UUIDs become plain values."""
    return json.loads(json.dumps(payload, cls=DjangoJSONEncoder))


def build_event(event: str, payload: Any, exclude_channel: str | None = None) -> dict:
    message = {"type": EVENT_HANDLER_TYPE, "event": event, "payload": to_json_safe(payload)}
    if exclude_channel:
        message["exclude"] = exclude_channel
    return message


class BroadcastRouter:
    """
    Publishes events to channel layer groups.

    Args:
        channel_layer: Layer to use. Defaults to the configured default layer,
            resolved on every call so settings overrides take effect.
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    async def publish(
        self, group: str, event: str, payload: Any, exclude_channel: str | None = None
    ) -> bool:
        """
        Send an event to every connection in a group.

        Args:
            exclude_channel: Connection that should not receive the event
                (the one that originated it)

        Returns:
            True if the layer accepted the message, False otherwise
        """
        layer = self.channel_layer
        if layer is None:
            logger.warning(f"No channel layer configured, dropping '{event}' for {group}")
            return False
        try:
            await layer.group_send(group, build_event(event, payload, exclude_channel))
        except Exception:
            logger.exception(f"Failed to publish '{event}' to {group}")
            return False
        return True

    async def send_to_channel(self, channel_name: str, event: str, payload: Any) -> bool:
        """Send an event to a single connection."""
        layer = self.channel_layer
        if layer is None:
            return False
        try:
            await layer.send(channel_name, build_event(event, payload))
        except Exception:
            logger.exception(f"Failed to send '{event}' to channel {channel_name}")
            return False
        return True

    async def publish_to_users(self, user_ids: Iterable[int], event: str, payload: Any) -> None:
        for user_id in user_ids:
            await self.publish(user_group(user_id), event, payload)

    # Sync entry points for REST views

    def publish_sync(self, group: str, event: str, payload: Any) -> bool:
        return async_to_sync(self.publish)(group, event, payload)

    def publish_to_users_sync(self, user_ids: Iterable[int], event: str, payload: Any) -> None:
        async_to_sync(self.publish_to_users)(list(user_ids), event, payload)


_default_router = BroadcastRouter()


def get_broadcast_router() -> BroadcastRouter:
    """Process-wide router used by views and consumers."""
    return _default_router
