"""
ASGI config for the chat backend.

Exposes the ASGI callable as a module-level variable named `application`.

Protocols:
    http       Django (REST API, admin, schema, health check)
    websocket  ws/chat/ -> ChatConsumer, one connection per user session

WebSocket stack, outermost first:
    AllowedHostsOriginValidator  rejects origins outside ALLOWED_HOSTS
    JWTAuthMiddleware            resolves scope["user"] from ?token= or the
                                 "jwt, <token>" subprotocol
    URLRouter                    chat.routing.websocket_urlpatterns

Serve with an ASGI server, e.g.:
    uvicorn config.asgi:application --app-dir app

For more information on this file, see:
https://channels.readthedocs.io/en/latest/deploying.html
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Settings and the app registry must be ready before consumers import models
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from chat.middleware import JWTAuthMiddleware  # noqa: E402
from chat.routing import websocket_urlpatterns  # noqa: E402

websocket_app = AllowedHostsOriginValidator(
    JWTAuthMiddleware(URLRouter(websocket_urlpatterns))
)

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": websocket_app,
    }
)
