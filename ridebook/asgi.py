"""
ASGI config for ridebook project.

Serves the REST API over HTTP and the booking preview and driver chat
over WebSocket.
"""

import os
from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.auth import AuthMiddlewareStack

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'ridebook.settings')

# The app registry must be ready before the consumers import models.
django_asgi_app = get_asgi_application()

from rides.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AuthMiddlewareStack(
        URLRouter(websocket_urlpatterns)
    ),
})
