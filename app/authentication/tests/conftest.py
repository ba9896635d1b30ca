"""
Test configuration and fixtures for authentication tests.

Usage:
    def test_example(user, authenticated_client):
        response = authenticated_client.get('/api/v1/auth/me/')
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.models import User
from authentication.tests.factories import UserFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a basic active user."""
    return UserFactory(name="Test User")


@pytest.fixture
def superuser(db):
    """Create a superuser with admin privileges."""
    return User.objects.create_superuser(
        email="admin@example.com", password="AdminPass123!"
    )


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def authenticated_client(user):
    """API client carrying a JWT access token for the default user."""
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client
