"""
URL configuration for the chat backend.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - Authentication endpoints
        register/                  - Create account
        login/                     - Email/password login (JWT pair)
        token/refresh/             - Refresh access token
        me/                        - Current user (GET/PATCH)
        users/                     - User search
    /api/v1/chat/                  - Chat endpoints
        chats/                     - Chat list / open direct chat
        chats/{id}/messages/       - History / send / search
        groups/                    - Group list / create / governance
        messages/{id}/             - Receipts, pins, reactions

WebSocket routes are defined in chat/routing.py and served by config/asgi.py.

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("auth/", include("authentication.urls")),
    path("chat/", include("chat.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Chat Admin"
admin.site.site_title = "Chat Admin Portal"
admin.site.index_title = "Chats, messages and users"
