"""
In-process presence registry.

Maps a user id to the one live connection (Channels channel name) that
currently represents that user. The map lives only as long as the process;
a restart starts empty and clients re-register through "setup".

Concurrency:
    Registration and removal can race from many consumers. The map is
    guarded by a threading.Lock that is held only around dictionary access,
    never across an await.

Usage:
    from chat.presence import get_presence_registry

    registry = get_presence_registry()
    others = await registry.register(user.id, self.channel_name)
    ...
    await registry.unregister(self.channel_name)
"""

from __future__ import annotations

import logging
import threading

from chat.broadcast import BroadcastRouter, get_broadcast_router
from chat.constants import CHANNEL_GROUPS, CHAT_EVENTS

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    user id -> connection map with last-registration-wins semantics.

    A second registration for the same user silently supersedes the first;
    a later unregister of the superseded connection is a no-op.
    """

    def __init__(self, router: BroadcastRouter | None = None):
        self._connections: dict[int, str] = {}
        self._lock = threading.Lock()
        self._router = router

    @property
    def router(self) -> BroadcastRouter:
        return self._router or get_broadcast_router()

    def is_online(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._connections

    def online_user_ids(self) -> list[int]:
        with self._lock:
            return list(self._connections)

    def connection_for(self, user_id: int) -> str | None:
        with self._lock:
            return self._connections.get(user_id)

    async def register(self, user_id: int, connection: str) -> list[int]:
        """
        Attach a connection to a user.

        Publishes "user online" to the presence group, then sends the new
        connection one "user online" per other registered user.

        Returns:
            Ids of the other users online at registration time
        """
        with self._lock:
            superseded = self._connections.get(user_id)
            self._connections[user_id] = connection
            others = [uid for uid in self._connections if uid != user_id]

        if superseded and superseded != connection:
            logger.info(f"User {user_id} reconnected, superseding {superseded}")

        router = self.router
        await router.publish(CHANNEL_GROUPS.PRESENCE, CHAT_EVENTS.USER_ONLINE, {"user_id": user_id})
        for other_id in others:
            await router.send_to_channel(connection, CHAT_EVENTS.USER_ONLINE, {"user_id": other_id})
        return others

    async def unregister(self, connection: str) -> int | None:
        """
        Detach a connection.

        Returns:
            The user id that went offline, or None if the connection was not
            registered (never set up, already removed, or superseded)
        """
        with self._lock:
            user_id = next(
                (uid for uid, conn in self._connections.items() if conn == connection),
                None,
            )
            if user_id is None:
                return None
            del self._connections[user_id]

        await self.router.publish(
            CHANNEL_GROUPS.PRESENCE, CHAT_EVENTS.USER_OFFLINE, {"user_id": user_id}
        )
        return user_id

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()


_default_registry = PresenceRegistry()


def get_presence_registry() -> PresenceRegistry:
    """Process-wide registry used when a consumer is not given one."""
    return _default_registry
