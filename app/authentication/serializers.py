"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (public representation embedded in chat payloads)
- Registration (create user)
- Profile update (name and avatar URL)

Related files:
    - models.py: User model
    - views.py: Views that use these serializers

Security:
    - Password fields are write-only
    - Email and id are read-only after registration
"""

from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for User model (read operations).

    This is the shape every chat payload uses for participants, admins,
    senders and mentions.
    """

    class Meta:
        model = User
        fields = ["id", "name", "email", "profile_picture"]
        read_only_fields = fields


class RegisterSerializer(serializers.ModelSerializer):
    """Create a user from name, email and password."""

    password = serializers.CharField(write_only=True, min_length=8)

    class Meta:
        model = User
        fields = ["id", "name", "email", "password", "profile_picture"]
        read_only_fields = ["id"]

    def validate_email(self, value):
        """Reject emails already registered (case-insensitive)."""
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return value

    def validate_password(self, value):
        validate_password(value)
        return value

    def create(self, validated_data):
        password = validated_data.pop("password")
        return User.objects.create_user(password=password, **validated_data)


class ProfileUpdateSerializer(serializers.ModelSerializer):
    """Partial update of the caller's display name and avatar URL."""

    class Meta:
        model = User
        fields = ["name", "profile_picture"]
