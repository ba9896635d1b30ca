"""
Dedup filter for the live "new message" relay.

Remembers message ids relayed recently so a client or transport retrying
the same publish produces a single broadcast. Entries are not expired one
by one: the whole set is cleared every TTL seconds by a background asyncio
task. An id seen just before a clear can therefore pass again right after
it, which is acceptable because message ids are unique.

Usage:
    from chat.dedup import get_dedup_filter

    dedup = get_dedup_filter()
    dedup.start()
    if dedup.should_process(message_id):
        ...relay...
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading

from django.conf import settings

from chat.constants import DEDUP_CONFIG

logger = logging.getLogger(__name__)


class DedupFilter:
    """
    Thread-safe set of recently seen message ids with bulk TTL eviction.

    Args:
        ttl_seconds: Clear interval. Defaults to the CHAT_DEDUP_TTL_SECONDS
            setting, then DEDUP_CONFIG.DEFAULT_TTL_SECONDS.
    """

    def __init__(self, ttl_seconds: float | None = None):
        if ttl_seconds is None:
            ttl_seconds = getattr(
                settings, DEDUP_CONFIG.SETTING_NAME, DEDUP_CONFIG.DEFAULT_TTL_SECONDS
            )
        self.ttl_seconds = ttl_seconds
        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, message_id) -> bool:
        with self._lock:
            return str(message_id) in self._seen

    def should_process(self, message_id) -> bool:
        """
        Record a message id.

        Returns:
            False if the id was already seen in the current window,
            True (and the id is now recorded) otherwise
        """
        key = str(message_id)
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def clear(self) -> int:
        """Drop every entry. Returns how many were dropped."""
        with self._lock:
            count = len(self._seen)
            self._seen.clear()
        return count

    # -------------------------------------------------------------------------
    # Eviction task
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """
        Start the periodic clear on the running event loop.

        Safe to call repeatedly; a task already running on this loop is kept.
        """
        loop = asyncio.get_running_loop()
        if self.is_running and self._task.get_loop() is loop:
            return
        self._task = loop.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the periodic clear and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task.get_loop() is asyncio.get_running_loop():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.ttl_seconds)
            dropped = self.clear()
            if dropped:
                logger.debug(f"Dedup window elapsed, cleared {dropped} message ids")


_default_filter: DedupFilter | None = None
_default_lock = threading.Lock()


def get_dedup_filter() -> DedupFilter:
    """Process-wide filter, created on first use so settings are loaded."""
    global _default_filter
    with _default_lock:
        if _default_filter is None:
            _default_filter = DedupFilter()
        return _default_filter
