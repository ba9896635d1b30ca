"""
API tests for registration, current user and user search endpoints.
"""

from rest_framework import status

from authentication.models import User
from authentication.tests.factories import UserFactory


class TestRegisterView:
    """POST /api/v1/auth/register/"""

    def test_register_returns_user_and_tokens(self, db, api_client):
        response = api_client.post(
            "/api/v1/auth/register/",
            {"name": "Neo", "email": "neo@example.com", "password": "RedPill!2024"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["user"]["email"] == "neo@example.com"
        assert "access" in response.data
        assert "refresh" in response.data
        assert User.objects.filter(email="neo@example.com").exists()

    def test_duplicate_email_rejected(self, db, api_client, user):
        response = api_client.post(
            "/api/v1/auth/register/",
            {"name": "Dup", "email": user.email.upper(), "password": "RedPill!2024"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "email" in response.data


class TestLogin:
    """POST /api/v1/auth/login/ (simplejwt)"""

    def test_login_with_email_and_password(self, db, api_client):
        UserFactory(email="login@example.com", password="LoginPass!123")

        response = api_client.post(
            "/api/v1/auth/login/",
            {"email": "login@example.com", "password": "LoginPass!123"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data


class TestMeView:
    """GET/PATCH /api/v1/auth/me/"""

    def test_requires_authentication(self, db, api_client):
        response = api_client.get("/api/v1/auth/me/")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_returns_current_user(self, authenticated_client, user):
        response = authenticated_client.get("/api/v1/auth/me/")

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "profile_picture": "",
        }

    def test_patch_updates_name_and_picture(self, authenticated_client, user):
        response = authenticated_client.patch(
            "/api/v1/auth/me/",
            {"name": "Renamed", "profile_picture": "https://cdn.example.com/a.png"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        user.refresh_from_db()
        assert user.name == "Renamed"
        assert user.profile_picture == "https://cdn.example.com/a.png"


class TestUserSearchView:
    """GET /api/v1/auth/users/?search="""

    def test_matches_name_or_email_and_excludes_caller(self, authenticated_client, user):
        match_name = UserFactory(name="Trinity Matrix")
        match_email = UserFactory(email="morpheus.matrix@example.com", name="M")
        UserFactory(name="Smith")

        response = authenticated_client.get("/api/v1/auth/users/", {"search": "matrix"})

        assert response.status_code == status.HTTP_200_OK
        results = response.data["results"] if isinstance(response.data, dict) else response.data
        ids = {row["id"] for row in results}
        assert ids == {match_name.id, match_email.id}
        assert user.id not in ids
