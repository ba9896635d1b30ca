"""
Authentication models.

This module defines the identity model the chat domain references:
- User: Custom user model with email-based authentication

Related files:
    - managers.py: Custom user manager for email-based creation
    - serializers.py: Public user representation embedded in chat payloads

Note:
    Images are stored elsewhere; profile_picture only holds a URL.
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Chats, participants and messages reference users by id only; a user
    is never owned by a chat.

    Fields:
        email: Primary identifier, unique, used for login
        name: Display name shown to other participants
        profile_picture: Optional URL of the avatar image
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        user = User.objects.create_user(
            email='user@example.com',
            password='securepassword',
            name='Jane',
        )
    """

    # Primary identifier (replaces username)
    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Display name",
    )
    profile_picture = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="URL of the user's avatar in object storage",
    )

    # Account status flags
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    # Timestamps
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    def get_full_name(self):
        """Return the display name, falling back to the email."""
        return self.name or self.email

    def get_short_name(self):
        """Return the display name, falling back to the email local part."""
        return self.name or self.email.split("@")[0]
