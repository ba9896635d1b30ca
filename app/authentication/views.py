"""
Authentication views.

This module provides API views for:
- Registration
- Current user retrieval and profile update
- User search (used when picking members for a group)

Related files:
    - serializers.py: Request/response serialization
    - urls.py: URL routing

Note:
    Token issuance is handled by simplejwt views wired in urls.py:
    - Login: /api/v1/auth/login/
    - Refresh: /api/v1/auth/token/refresh/
"""

from django.db.models import Q
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.models import User
from authentication.serializers import (
    ProfileUpdateSerializer,
    RegisterSerializer,
    UserSerializer,
)


class RegisterView(APIView):
    """
    Create an account and return a token pair.

    URL: /api/v1/auth/register/
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(
        summary="Register",
        tags=["Auth"],
        request=RegisterSerializer,
        responses={201: UserSerializer},
    )
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()

        refresh = RefreshToken.for_user(user)
        return Response(
            {
                "user": UserSerializer(user).data,
                "access": str(refresh.access_token),
                "refresh": str(refresh),
            },
            status=status.HTTP_201_CREATED,
        )


class MeView(APIView):
    """
    GET: Retrieve the authenticated user
    PATCH: Update name and/or profile_picture

    URL: /api/v1/auth/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Current user", tags=["Auth"], responses={200: UserSerializer})
    def get(self, request):
        return Response(UserSerializer(request.user).data)

    @extend_schema(
        summary="Update current user",
        tags=["Auth"],
        request=ProfileUpdateSerializer,
        responses={200: UserSerializer},
    )
    def patch(self, request):
        serializer = ProfileUpdateSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return Response(UserSerializer(user).data)


@extend_schema(
    summary="Search users",
    tags=["Auth"],
    parameters=[
        OpenApiParameter("search", str, description="Substring of name or email"),
    ],
)
class UserSearchView(generics.ListAPIView):
    """
    List other active users matching ?search= on name or email.

    The caller is always excluded from the results.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = UserSerializer

    def get_queryset(self):
        queryset = User.objects.filter(is_active=True).exclude(pk=self.request.user.pk)
        term = self.request.query_params.get("search", "").strip()
        if term:
            queryset = queryset.filter(Q(name__icontains=term) | Q(email__icontains=term))
        return queryset.order_by("name", "email")
