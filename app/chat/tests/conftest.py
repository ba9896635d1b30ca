"""
Test configuration and fixtures for chat tests.

This module provides:
- Named users (alice owns the groups, dave is an outsider)
- Group and direct chats created through the services
- A send helper that goes through MessageService
- JWT-authenticated API clients per user
- Fresh presence/dedup state for every test

Usage:
    def test_example(group, client_for, alice):
        response = client_for(alice).get(f"/api/v1/chat/groups/{group.id}/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import UserFactory
from chat.dedup import get_dedup_filter
from chat.presence import get_presence_registry
from chat.services import ChatService, GroupService, MessageService


# =============================================================================
# Live State
# =============================================================================


@pytest.fixture(autouse=True)
def reset_live_state():
    """Presence and dedup are process-wide; start every test empty."""
    get_presence_registry().clear()
    get_dedup_filter().clear()
    yield
    get_presence_registry().clear()
    get_dedup_filter().clear()


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def alice(db):
    return UserFactory(name="Alice")


@pytest.fixture
def bob(db):
    return UserFactory(name="Bob")


@pytest.fixture
def carol(db):
    return UserFactory(name="Carol")


@pytest.fixture
def dave(db):
    """User outside every test chat."""
    return UserFactory(name="Dave")


# =============================================================================
# Chat Fixtures
# =============================================================================


@pytest.fixture
def group(alice, bob, carol):
    """
    Group owned by alice with bob and carol as members.

    Returned as the chat_with_members read model.
    """
    result = GroupService.create_group(creator=alice, member_ids=[bob.id, carol.id], name="Team")
    assert result.success, result.error
    return result.data


@pytest.fixture
def direct_chat(alice, bob):
    result = ChatService.access_direct(alice, bob.id)
    assert result.success, result.error
    return result.data


@pytest.fixture
def send():
    """
    Send a message through the service layer.

    Usage:
        message = send(alice, chat, "hello")
    """

    def _send(sender, chat, content="hello", **kwargs):
        result = MessageService.send_message(sender=sender, chat_id=chat.id, content=content, **kwargs)
        assert result.success, result.error
        return result.data

    return _send


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def client_for():
    """
    Build an API client carrying a JWT access token for a user.

    Usage:
        response = client_for(alice).get("/api/v1/chat/chats/")
    """

    def _client_for(user):
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _client_for
