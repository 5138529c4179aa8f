import logging

from django.contrib.auth import get_user_model

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from connection.services import is_connected
from devtinder.exceptions import DevTinderError, detail_message
from .registry import ChannelRegistry
from .serializers import SendMessageSerializer, delivered_payload, sent_payload
from .services import append_message

logger = logging.getLogger(__name__)

JOIN = "join"
JOINED = "joined"
SEND_MESSAGE = "send-message"
MESSAGE_DELIVERED = "message-delivered"
MESSAGE_SENT = "message-sent"
MESSAGE_ERROR = "message-error"


def _as_user_id(value):
    if isinstance(value, bool):
        raise ValueError("user id must be an integer")
    return int(value)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """Frames in both directions are ``{"event": ..., "data": ...}``."""
    registry = None

    def __init__(self, *args, registry: ChannelRegistry | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        if registry is not None:
            self.registry = registry
        elif self.registry is None:
            self.registry = ChannelRegistry()
        self.user_id = None

    async def connect(self):
        user = self.scope.get("user")  # type: ignore
        if user is None or not user.is_authenticated:  # type: ignore
            await self.close()
            return
        await self.accept()

    async def disconnect(self, code):
        if self.user_id is not None:
            await self.registry.leave(self.user_id, self.channel_name)  # type: ignore

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        try:
            content = await self.decode_json(text_data)
        except (TypeError, ValueError):
            await self.emit_error("Malformed frame")
            return
        await self.receive_json(content, **kwargs)

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await self.emit_error("Malformed frame")
            return

        event = content.get("event")
        data = content.get("data")
        try:
            if event == JOIN:
                await self.handle_join(data)
            elif event == SEND_MESSAGE:
                await self.handle_send_message(data if isinstance(data, dict) else {})
            else:
                await self.emit_error(f"Unknown event: {event}")
        except Exception:
            # keep the socket open; the client falls back to refetching
            logger.exception("Error handling %s on %s", event, self.channel_name)
            await self.emit_error("Internal error")

    # ---------- client -> server ----------

    async def handle_join(self, data):
        if isinstance(data, dict):
            data = data.get("userId")
        try:
            user_id = _as_user_id(data)
        except (TypeError, ValueError):
            await self.emit_error("join requires a user id")
            return

        if user_id != self.scope["user"].id:  # type: ignore
            logger.warning("Socket %s tried to join as %s", self.channel_name, user_id)
            await self.emit_error("Cannot join as another user")
            return

        # a rejoin under the same identity just refreshes the subscription
        self.user_id = user_id
        await self.registry.join(user_id, self.channel_name)  # type: ignore
        await self.emit(JOINED, {"userId": user_id})

    async def handle_send_message(self, data):
        client_temp_id = data.get("clientTempId")

        if self.user_id is None:
            await self.emit_error("Join before sending messages", client_temp_id)
            return

        try:
            sender_id = _as_user_id(data.get("sender", self.user_id))
            recipient_id = _as_user_id(data.get("recipient"))
        except (TypeError, ValueError):
            await self.emit_error("sender and recipient must be user ids", client_temp_id)
            return

        if sender_id != self.user_id:
            await self.emit_error("Cannot send on behalf of another user", client_temp_id)
            return

        User = get_user_model()
        exists = await database_sync_to_async(User.objects.filter(id=recipient_id).exists)()
        if not exists:
            await self.emit_error("Recipient not found", client_temp_id)
            return

        connected = await database_sync_to_async(is_connected)(sender_id, recipient_id)
        if not connected:
            logger.warning("Rejected live message %s -> %s: not connected", sender_id, recipient_id)
            await self.emit_error("You can only message users you are connected with", client_temp_id)
            return

        serializer = SendMessageSerializer(data=data)
        if not serializer.is_valid():
            await self.emit_error(detail_message(serializer.errors), client_temp_id)
            return

        try:
            message, created = await database_sync_to_async(append_message)(
                sender_id, recipient_id, serializer.validated_data["content"]  # type: ignore
            )
        except DevTinderError as e:
            await self.emit_error(e.message, client_temp_id)
            return
        except Exception:
            logger.exception("Failed to store live message %s -> %s", sender_id, recipient_id)
            await self.emit_error("Message could not be saved", client_temp_id)
            return

        if created:
            await self.push_to_recipient(recipient_id, delivered_payload(message))

        await self.emit(MESSAGE_SENT, sent_payload(message, client_temp_id))

    async def push_to_recipient(self, recipient_id, payload):
        try:
            await self.registry.deliver(recipient_id, "message.delivered", payload)  # type: ignore
        except Exception:
            # the message is stored; the recipient picks it up on the next fetch
            logger.exception("Live delivery to user %s failed", recipient_id)

    # ---------- server -> client ----------

    async def emit(self, event, data):
        await self.send_json({"event": event, "data": data})

    async def emit_error(self, reason, client_temp_id=None):
        data = {"reason": reason}
        if client_temp_id is not None:
            data["clientTempId"] = client_temp_id
        await self.emit(MESSAGE_ERROR, data)

    async def message_delivered(self, event):
        await self.emit(MESSAGE_DELIVERED, event["data"])
