"""
URL configuration for chat API.

URL Structure:
    Chats:
        /chats/                                  GET, POST
        /chats/{id}/                             GET
        /chats/{id}/messages/                    GET, POST
        /chats/{id}/messages/search/             GET

    Groups:
        /groups/                                 GET, POST
        /groups/{id}/                            GET, PATCH, DELETE
        /groups/{id}/add-members/                POST
        /groups/{id}/remove-members/             POST
        /groups/{id}/leave/                      POST
        /groups/{id}/transfer-ownership/         POST
        /groups/{id}/promote-admin/              POST
        /groups/{id}/mute-user/                  POST
        /groups/{id}/unmute-user/                POST

    Messages:
        /messages/{id}/delivered/                POST
        /messages/{id}/read/                     POST
        /messages/{id}/pin/                      POST, DELETE
        /messages/{id}/reactions/                PUT, DELETE

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ChatViewSet, GroupViewSet, MessageViewSet

router = DefaultRouter()
router.register(r"chats", ChatViewSet, basename="chat")
router.register(r"groups", GroupViewSet, basename="group")
router.register(r"messages", MessageViewSet, basename="message")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
]
