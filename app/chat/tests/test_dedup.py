"""Tests for the relay dedup filter."""

import asyncio

import pytest
from django.test import override_settings

from chat.dedup import DedupFilter


class TestShouldProcess:
    def test_first_sighting_passes(self):
        dedup = DedupFilter(ttl_seconds=60)

        assert dedup.should_process(42) is True
        assert len(dedup) == 1

    def test_repeat_is_dropped(self):
        dedup = DedupFilter(ttl_seconds=60)
        dedup.should_process(42)

        assert dedup.should_process(42) is False

    def test_ids_compare_as_strings(self):
        dedup = DedupFilter(ttl_seconds=60)
        dedup.should_process(42)

        assert dedup.should_process("42") is False

    def test_membership_does_not_record(self):
        dedup = DedupFilter(ttl_seconds=60)

        assert 7 not in dedup
        assert len(dedup) == 0
        dedup.should_process(7)
        assert "7" in dedup

    def test_clear_reopens_window(self):
        dedup = DedupFilter(ttl_seconds=60)
        dedup.should_process(1)
        dedup.should_process(2)

        assert dedup.clear() == 2
        assert dedup.should_process(1) is True


class TestConfiguration:
    @override_settings(CHAT_DEDUP_TTL_SECONDS=5)
    def test_ttl_from_settings(self):
        assert DedupFilter().ttl_seconds == 5

    def test_explicit_ttl_wins(self):
        assert DedupFilter(ttl_seconds=0.5).ttl_seconds == 0.5


class TestEviction:
    @pytest.mark.asyncio
    async def test_window_clears_periodically(self):
        dedup = DedupFilter(ttl_seconds=0.05)
        dedup.start()
        dedup.should_process(7)

        await asyncio.sleep(0.2)

        assert dedup.should_process(7) is True
        await dedup.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        dedup = DedupFilter(ttl_seconds=60)
        dedup.start()
        task = dedup._task

        dedup.start()

        assert dedup._task is task
        await dedup.stop()
        assert not dedup.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        dedup = DedupFilter(ttl_seconds=60)

        await dedup.stop()

        assert not dedup.is_running
