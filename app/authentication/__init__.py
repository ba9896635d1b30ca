"""
Authentication application.

This app provides the e-mail based user identity that every chat,
participant and message refers to, plus JWT token endpoints.

Key components:
    - User model: Custom email-based user authentication
    - UserSerializer: Public user shape embedded in chat payloads
    - Token views: simplejwt login/refresh

Usage:
    from authentication.models import User
    from authentication.serializers import UserSerializer
"""
