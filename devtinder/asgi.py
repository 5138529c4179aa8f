"""
ASGI config for devtinder project.

It exposes the ASGI callable as a module-level variable named ``application``.
HTTP goes to Django; websockets go through the session auth stack to the chat
consumer, which shares one ``ChannelRegistry`` built here at startup.

For more information on this file, see
https://docs.djangoproject.com/en/5.2/howto/deployment/asgi/
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "devtinder.settings")

django_asgi_app = get_asgi_application()

from channels.auth import AuthMiddlewareStack  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402

from message.registry import ChannelRegistry  # noqa: E402
from message.urls import websocket_urlpatterns  # noqa: E402

registry = ChannelRegistry()

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AuthMiddlewareStack(
        URLRouter(websocket_urlpatterns(registry))
    ),
})
