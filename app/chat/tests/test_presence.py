"""
Tests for the presence registry.

The broadcast router is mocked so published events can be inspected
without a channel layer.
"""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from chat.constants import CHANNEL_GROUPS, CHAT_EVENTS
from chat.presence import PresenceRegistry


@pytest.fixture
def router():
    mock = MagicMock()
    mock.publish = AsyncMock(return_value=True)
    mock.send_to_channel = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def registry(router):
    return PresenceRegistry(router=router)


class TestRegister:
    @pytest.mark.asyncio
    async def test_first_user_sees_nobody(self, registry, router):
        others = await registry.register(1, "conn-1")

        assert others == []
        assert registry.is_online(1)
        router.publish.assert_awaited_once_with(
            CHANNEL_GROUPS.PRESENCE, CHAT_EVENTS.USER_ONLINE, {"user_id": 1}
        )
        router.send_to_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_connection_learns_who_is_online(self, registry, router):
        await registry.register(1, "conn-1")
        await registry.register(2, "conn-2")
        router.send_to_channel.reset_mock()

        others = await registry.register(3, "conn-3")

        assert sorted(others) == [1, 2]
        router.send_to_channel.assert_has_awaits(
            [
                call("conn-3", CHAT_EVENTS.USER_ONLINE, {"user_id": 1}),
                call("conn-3", CHAT_EVENTS.USER_ONLINE, {"user_id": 2}),
            ],
            any_order=True,
        )

    @pytest.mark.asyncio
    async def test_second_registration_supersedes(self, registry):
        await registry.register(1, "conn-old")
        await registry.register(1, "conn-new")

        assert registry.connection_for(1) == "conn-new"
        assert registry.online_user_ids() == [1]


class TestUnregister:
    @pytest.mark.asyncio
    async def test_goes_offline(self, registry, router):
        await registry.register(1, "conn-1")
        router.publish.reset_mock()

        user_id = await registry.unregister("conn-1")

        assert user_id == 1
        assert not registry.is_online(1)
        router.publish.assert_awaited_once_with(
            CHANNEL_GROUPS.PRESENCE, CHAT_EVENTS.USER_OFFLINE, {"user_id": 1}
        )

    @pytest.mark.asyncio
    async def test_superseded_connection_is_noop(self, registry, router):
        await registry.register(1, "conn-old")
        await registry.register(1, "conn-new")
        router.publish.reset_mock()

        assert await registry.unregister("conn-old") is None
        assert registry.connection_for(1) == "conn-new"
        router.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_connection(self, registry, router):
        assert await registry.unregister("never-set-up") is None
        router.publish.assert_not_awaited()


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_online_ids_track_registrations(self, registry):
        await registry.register(1, "conn-1")
        await registry.register(2, "conn-2")
        await registry.unregister("conn-1")

        assert registry.online_user_ids() == [2]

    def test_clear(self, registry):
        registry._connections[5] = "conn-5"

        registry.clear()

        assert registry.online_user_ids() == []
