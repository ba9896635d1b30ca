"""Tests for WebSocket JWT authentication."""

import pytest
from rest_framework_simplejwt.tokens import AccessToken

from chat.middleware import JWTAuthMiddleware

pytestmark = pytest.mark.django_db(transaction=True)


class ScopeRecorder:
    """Inner ASGI app that keeps the scope it was called with."""

    def __init__(self):
        self.scope = None

    async def __call__(self, scope, receive, send):
        self.scope = scope


async def authenticate(scope):
    recorder = ScopeRecorder()
    await JWTAuthMiddleware(recorder)(scope, None, None)
    return recorder.scope["user"]


@pytest.fixture
def alice_token(alice):
    return str(AccessToken.for_user(alice))


@pytest.fixture
def inactive_token(db):
    from authentication.tests.factories import UserFactory

    user = UserFactory(is_active=False)
    return str(AccessToken.for_user(user))


class TestJWTAuthMiddleware:
    @pytest.mark.asyncio
    async def test_query_string_token(self, alice, alice_token):
        user = await authenticate({"type": "websocket", "query_string": f"token={alice_token}".encode()})

        assert user.id == alice.id

    @pytest.mark.asyncio
    async def test_subprotocol_token(self, alice, alice_token):
        user = await authenticate({"type": "websocket", "subprotocols": ["jwt", alice_token]})

        assert user.id == alice.id

    @pytest.mark.asyncio
    async def test_missing_token(self):
        user = await authenticate({"type": "websocket", "query_string": b""})

        assert not user.is_authenticated

    @pytest.mark.asyncio
    async def test_garbage_token(self):
        user = await authenticate({"type": "websocket", "query_string": b"token=garbage"})

        assert not user.is_authenticated

    @pytest.mark.asyncio
    async def test_inactive_user(self, inactive_token):
        user = await authenticate({"type": "websocket", "query_string": f"token={inactive_token}".encode()})

        assert not user.is_authenticated
