"""
Tests for UserManager.

The UserManager provides:
- create_user(): Creates regular users with optional password
- create_superuser(): Creates admin users with elevated privileges
"""

import pytest

from authentication.models import User


class TestUserManagerCreateUser:
    """Tests for UserManager.create_user() method."""

    def test_creates_user_with_email_and_password(self, db):
        """
        Given valid email and password
        When create_user is called
        Then a user is created with those credentials
        """
        user = User.objects.create_user(
            email="mgr_create_user@example.com", password="SecurePass123!", name="Mgr"
        )

        assert user.pk is not None
        assert user.name == "Mgr"
        assert user.check_password("SecurePass123!") is True

    def test_normalizes_email_domain_to_lowercase(self, db):
        user = User.objects.create_user(email="Test.User@EXAMPLE.COM", password="x" * 10)

        assert user.email == "Test.User@example.com"

    def test_missing_email_raises(self, db):
        with pytest.raises(ValueError, match="Email"):
            User.objects.create_user(email="", password="whatever123")

    def test_without_password_sets_unusable_password(self, db):
        user = User.objects.create_user(email="nopass@example.com")

        assert user.has_usable_password() is False


class TestUserManagerCreateSuperuser:
    """Tests for UserManager.create_superuser() method."""

    def test_sets_staff_and_superuser_flags(self, db):
        admin = User.objects.create_superuser(
            email="root@example.com", password="AdminPass123!"
        )

        assert admin.is_staff is True
        assert admin.is_superuser is True

    def test_rejects_is_staff_false(self, db):
        with pytest.raises(ValueError, match="is_staff"):
            User.objects.create_superuser(
                email="bad@example.com", password="AdminPass123!", is_staff=False
            )


class TestUserModel:
    """Display helpers used in chat payloads."""

    def test_full_name_falls_back_to_email(self, db):
        user = User.objects.create_user(email="anon@example.com")

        assert user.get_full_name() == "anon@example.com"
        assert user.get_short_name() == "anon"
        assert str(user) == "anon@example.com"
