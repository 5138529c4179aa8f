from django.urls import path

from .views import conversation, mark_read, unread_count
from .consumers import ChatConsumer

urlpatterns = [
    path("messages/unread/count", unread_count, name="unread_count"),
    path("messages/<int:user_id>/read", mark_read, name="mark_read"),
    path("messages/<int:user_id>", conversation, name="conversation"),
]


def websocket_urlpatterns(registry):
    return [
        path("ws/chat/", ChatConsumer.as_asgi(registry=registry), name="chat"), # type: ignore
    ]
