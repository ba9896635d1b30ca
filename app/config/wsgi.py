"""
WSGI config for the chat backend.

Serves the REST API, admin and schema only. Live chat (ws/chat/) needs the
ASGI application in config/asgi.py; behind WSGI, clients still get every
state change through the REST responses.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
