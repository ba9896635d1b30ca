"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/register/        - Create account, returns token pair
    /api/v1/auth/login/           - Obtain JWT pair (email + password)
    /api/v1/auth/token/refresh/   - Refresh access token
    /api/v1/auth/me/              - Current user (GET/PATCH)
    /api/v1/auth/users/           - Search users (?search=)
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.views import MeView, RegisterView, UserSearchView

app_name = "authentication"

urlpatterns = [
    path("register/", RegisterView.as_view(), name="register"),
    path("login/", TokenObtainPairView.as_view(), name="login"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("me/", MeView.as_view(), name="me"),
    path("users/", UserSearchView.as_view(), name="user-search"),
]
