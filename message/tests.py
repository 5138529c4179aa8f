from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import factory
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone
from faker import Faker
from rest_framework.exceptions import ValidationError

from connection import services as connections
from connection.exceptions import NotConnectedError
from connection.models import Connection

from . import services
from .consumers import ChatConsumer
from .exceptions import EmptyContentError, InvalidPaginationError
from .models import Message
from .reconciler import (
    CONFIRMED,
    FAILED,
    PENDING,
    ConversationTimeline,
    MessageReconciler,
    ScrollAnchor,
    TimelineEntry,
)
from .registry import ChannelRegistry, user_group_name

User = get_user_model()
fake = Faker()

MOCK_CHANNEL = "message.views.get_channel_layer"
MOCK_ASYNC = "message.views.async_to_sync"
MOCK_NOW = "message.services.timezone.now"


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    name = factory.LazyFunction(fake.name)


def connect(a, b):
    return Connection.objects.create(requester=a, recipient=b, status=Connection.ACCEPTED)


def seed(sender, recipient, count, start=None, step=timedelta(minutes=1)):
    """Write ``count`` messages directly, bypassing the dedup window."""
    start = start or timezone.now() - timedelta(days=1)
    key = services.conversation_key(sender, recipient)
    return [
        Message.objects.create(
            sender=sender,
            recipient=recipient,
            content=f"message {i}",
            conversation_key=key,
            created_at=start + step * i,
        )
        for i in range(count)
    ]


# ── Store ──────────────────────────────────────────────────────────────────


class ConversationKeyTest(SimpleTestCase):
    def test_order_independent(self):
        self.assertEqual(services.conversation_key(3, 17), services.conversation_key(17, 3))

    def test_distinct_pairs_differ(self):
        self.assertNotEqual(services.conversation_key(1, 23), services.conversation_key(12, 3))

    def test_is_sha256_hex(self):
        self.assertEqual(len(services.conversation_key(1, 2)), 64)


class AppendMessageTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        connect(self.alice, self.bob)

    def test_persists_trimmed_content(self):
        message, created = services.append_message(self.alice, self.bob, "  hello  ")
        self.assertTrue(created)
        self.assertEqual(message.content, "hello")
        self.assertEqual(message.conversation_key, services.conversation_key(self.alice, self.bob))
        self.assertFalse(message.read)

    def test_blank_content_rejected(self):
        for content in ("", "   ", "\n\t", None):
            with self.assertRaises(EmptyContentError):
                services.append_message(self.alice, self.bob, content)
        self.assertFalse(Message.objects.exists())

    def test_not_connected_rejected_without_side_effect(self):
        stranger = UserFactory()
        with self.assertRaises(NotConnectedError):
            services.append_message(self.alice, stranger, "hi")
        with self.assertRaises(NotConnectedError):
            services.append_message(stranger, self.alice, "hi")
        self.assertFalse(Message.objects.exists())

    def test_pending_connection_is_not_enough(self):
        carol = UserFactory()
        Connection.objects.create(requester=self.alice, recipient=carol)
        with self.assertRaises(NotConnectedError):
            services.append_message(self.alice, carol, "hi")

    def test_recipient_can_reply(self):
        _, created = services.append_message(self.bob, self.alice, "hey back")
        self.assertTrue(created)

    def test_duplicate_within_window_returns_original(self):
        now = timezone.now()
        with patch(MOCK_NOW, return_value=now):
            first, _ = services.append_message(self.alice, self.bob, "hello")
        with patch(MOCK_NOW, return_value=now + timedelta(seconds=1)):
            second, created = services.append_message(self.alice, self.bob, " hello ")
        self.assertFalse(created)
        self.assertEqual(first.id, second.id)
        self.assertEqual(Message.objects.count(), 1)

    def test_same_text_after_window_is_new_message(self):
        now = timezone.now()
        with patch(MOCK_NOW, return_value=now):
            services.append_message(self.alice, self.bob, "hello")
        with patch(MOCK_NOW, return_value=now + timedelta(seconds=3)):
            _, created = services.append_message(self.alice, self.bob, "hello")
        self.assertTrue(created)
        self.assertEqual(Message.objects.count(), 2)

    def test_same_text_from_other_sender_is_not_duplicate(self):
        now = timezone.now()
        with patch(MOCK_NOW, return_value=now):
            services.append_message(self.alice, self.bob, "hello")
            _, created = services.append_message(self.bob, self.alice, "hello")
        self.assertTrue(created)

    def test_removed_connection_blocks_messaging(self):
        services.append_message(self.alice, self.bob, "before")
        connections.remove_connection(self.alice, self.bob)
        with self.assertRaises(NotConnectedError):
            services.append_message(self.bob, self.alice, "after")
        self.assertEqual(Message.objects.count(), 1)


class ListMessagesTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def test_empty_conversation(self):
        result = services.list_messages(self.alice, self.bob, 1, 20)
        self.assertEqual(result.messages, [])
        self.assertEqual(result.pagination(), {"page": 1, "limit": 20, "total": 0, "pages": 0})

    def test_first_page_is_newest_slice_in_chronological_order(self):
        msgs = seed(self.alice, self.bob, 5)
        result = services.list_messages(self.bob, self.alice, 1, 2)
        self.assertEqual([m.id for m in result.messages], [msgs[3].id, msgs[4].id])
        self.assertEqual(result.total, 5)
        self.assertEqual(result.pages, 3)

    def test_last_page_is_partial(self):
        msgs = seed(self.alice, self.bob, 5)
        result = services.list_messages(self.alice, self.bob, 3, 2)
        self.assertEqual([m.id for m in result.messages], [msgs[0].id])

    def test_page_past_end_is_empty(self):
        seed(self.alice, self.bob, 3)
        result = services.list_messages(self.alice, self.bob, 5, 2)
        self.assertEqual(result.messages, [])
        self.assertEqual(result.total, 3)

    def test_pages_concatenate_to_full_conversation(self):
        msgs = seed(self.alice, self.bob, 7)
        # two messages sharing a timestamp must not straddle or repeat
        Message.objects.filter(id=msgs[3].id).update(created_at=msgs[4].created_at)
        expected = [m.id for m in Message.objects.order_by("created_at", "id")]

        for size in (1, 2, 3, 7, 10):
            result = services.list_messages(self.alice, self.bob, 1, size)
            collected = []
            for page in range(result.pages, 0, -1):
                collected += [m.id for m in services.list_messages(self.alice, self.bob, page, size).messages]
            self.assertEqual(collected, expected, f"page size {size}")

    def test_other_conversations_excluded(self):
        carol = UserFactory()
        seed(self.alice, self.bob, 2)
        seed(self.alice, carol, 4)
        self.assertEqual(services.list_messages(self.alice, self.bob).total, 2)

    def test_invalid_pagination(self):
        with self.assertRaises(InvalidPaginationError):
            services.list_messages(self.alice, self.bob, 0, 20)
        with self.assertRaises(InvalidPaginationError):
            services.list_messages(self.alice, self.bob, 1, 0)


class UnreadTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        seed(self.alice, self.bob, 3)
        seed(self.bob, self.alice, 1)

    def test_count_unread(self):
        self.assertEqual(services.count_unread(self.bob), 3)
        self.assertEqual(services.count_unread(self.alice), 1)

    def test_mark_read(self):
        self.assertEqual(services.mark_read(self.bob, self.alice), 3)
        self.assertEqual(services.count_unread(self.bob), 0)
        self.assertEqual(services.count_unread(self.alice), 1)


# ── Views ──────────────────────────────────────────────────────────────────


class ConversationViewTest(TestCase):
    def setUp(self):
        self.user = UserFactory()
        self.other = UserFactory()
        connect(self.user, self.other)
        self.client.force_login(self.user)
        self.url = reverse("conversation", kwargs={"user_id": self.other.id})

    def _post(self, content):
        with patch(MOCK_CHANNEL, return_value=MagicMock()):
            with patch(MOCK_ASYNC, return_value=MagicMock()) as mock_a2s:
                resp = self.client.post(self.url, data={"content": content}, content_type="application/json")
                return resp, mock_a2s

    def test_unauthenticated_returns_4xx(self):
        self.client.logout()
        resp = self.client.get(self.url)
        self.assertGreaterEqual(resp.status_code, 400)

    def test_history_shape(self):
        seed(self.other, self.user, 3)
        resp = self.client.get(self.url, {"page": 1, "limit": 2})
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["pagination"], {"page": 1, "limit": 2, "total": 3, "pages": 2})
        self.assertEqual([m["content"] for m in body["messages"]], ["message 1", "message 2"])
        self.assertEqual(
            set(body["messages"][0]),
            {"id", "sender", "recipient", "content", "conversationKey", "createdAt", "read"},
        )

    def test_history_defaults(self):
        resp = self.client.get(self.url)
        self.assertEqual(resp.json()["pagination"], {"page": 1, "limit": 20, "total": 0, "pages": 0})

    def test_limit_is_capped(self):
        resp = self.client.get(self.url, {"limit": 5000})
        self.assertEqual(resp.json()["pagination"]["limit"], 100)

    def test_bad_page_returns_400(self):
        self.assertEqual(self.client.get(self.url, {"page": "abc"}).status_code, 400)
        self.assertEqual(self.client.get(self.url, {"page": 0}).status_code, 400)

    def test_unknown_user_returns_404(self):
        resp = self.client.get(reverse("conversation", kwargs={"user_id": 99999}))
        self.assertEqual(resp.status_code, 404)

    def test_send_creates_message(self):
        resp, _ = self._post("hello there")
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["message"]["content"], "hello there")
        self.assertEqual(body["message"]["sender"], self.user.id)
        self.assertEqual(Message.objects.count(), 1)

    def test_send_pushes_delivery_to_recipient_group(self):
        mock_layer = MagicMock()
        captured = {}

        def fake_a2s(fn):
            def inner(*args, **kwargs):
                captured["args"] = args
            return inner

        with patch(MOCK_CHANNEL, return_value=mock_layer):
            with patch(MOCK_ASYNC, side_effect=fake_a2s):
                self.client.post(self.url, data={"content": "ping"}, content_type="application/json")

        group, payload = captured["args"]
        self.assertEqual(group, user_group_name(self.other.id))
        self.assertEqual(payload["type"], "message.delivered")
        self.assertEqual(payload["data"]["content"], "ping")

    def test_duplicate_send_returns_200_without_push(self):
        self._post("same")
        resp, mock_a2s = self._post("same")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(mock_a2s.called)
        self.assertEqual(Message.objects.count(), 1)

    def test_push_failure_does_not_fail_request(self):
        with patch(MOCK_CHANNEL, return_value=MagicMock()):
            with patch(MOCK_ASYNC, side_effect=RuntimeError("layer down")):
                resp = self.client.post(self.url, data={"content": "still stored"}, content_type="application/json")
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(Message.objects.count(), 1)

    def test_empty_content_returns_400(self):
        resp, _ = self._post("   ")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Message cannot be empty")

    def test_missing_content_returns_400(self):
        resp = self.client.post(self.url, data={}, content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])

    def test_not_connected_returns_403(self):
        stranger = UserFactory()
        url = reverse("conversation", kwargs={"user_id": stranger.id})
        resp = self.client.post(url, data={"content": "hi"}, content_type="application/json")
        self.assertEqual(resp.status_code, 403)
        self.assertFalse(Message.objects.exists())


class ReadStateViewTest(TestCase):
    def setUp(self):
        self.user = UserFactory()
        self.other = UserFactory()
        seed(self.other, self.user, 2)
        self.client.force_login(self.user)

    def test_unread_count(self):
        resp = self.client.get(reverse("unread_count"))
        self.assertEqual(resp.json(), {"success": True, "unreadCount": 2})

    def test_mark_read(self):
        resp = self.client.post(reverse("mark_read", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.json()["updated"], 2)
        self.assertEqual(services.count_unread(self.user), 0)


# ── Registry ───────────────────────────────────────────────────────────────


class ChannelRegistryTest(SimpleTestCase):
    def setUp(self):
        self.layer = MagicMock()

        async def noop(*args, **kwargs):
            return None

        self.layer.group_add = MagicMock(side_effect=noop)
        self.layer.group_discard = MagicMock(side_effect=noop)
        self.layer.group_send = MagicMock(side_effect=noop)
        self.registry = ChannelRegistry(channel_layer=self.layer)

    async def test_join_subscribes_to_user_group(self):
        await self.registry.join(7, "chan-a")
        self.layer.group_add.assert_called_once_with("user_7", "chan-a")
        self.assertTrue(self.registry.is_online(7))
        self.assertEqual(len(self.registry), 1)

    async def test_rejoin_on_new_channel_drops_old(self):
        await self.registry.join(7, "chan-a")
        await self.registry.join(7, "chan-b")
        self.layer.group_discard.assert_called_once_with("user_7", "chan-a")
        self.assertEqual(self.registry.channel_for(7), "chan-b")

    async def test_stale_leave_keeps_new_channel(self):
        await self.registry.join(7, "chan-a")
        await self.registry.join(7, "chan-b")
        await self.registry.leave(7, "chan-a")
        self.assertEqual(self.registry.channel_for(7), "chan-b")

    async def test_leave(self):
        await self.registry.join(7, "chan-a")
        await self.registry.leave(7, "chan-a")
        self.assertFalse(7 in self.registry)

    async def test_deliver_targets_user_group(self):
        await self.registry.deliver(9, "message.delivered", {"id": 1})
        self.layer.group_send.assert_called_once_with(
            "user_9", {"type": "message.delivered", "data": {"id": 1}}
        )


# ── Live channel ───────────────────────────────────────────────────────────


class ChatConsumerTest(TransactionTestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        self.carol = UserFactory()
        connect(self.alice, self.bob)
        self.registry = ChannelRegistry()
        self.app = ChatConsumer.as_asgi(registry=self.registry)

    async def _open(self, user, join=True):
        communicator = WebsocketCommunicator(self.app, "/ws/chat/")
        communicator.scope["user"] = user
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        if join:
            await communicator.send_json_to({"event": "join", "data": user.id})
            reply = await communicator.receive_json_from()
            self.assertEqual(reply, {"event": "joined", "data": {"userId": user.id}})
        return communicator

    def _send_frame(self, sender, recipient, content, temp_id="temp-1"):
        return {
            "event": "send-message",
            "data": {
                "sender": sender.id,
                "recipient": recipient.id,
                "content": content,
                "clientTempId": temp_id,
                "timestamp": timezone.now().isoformat(),
            },
        }

    async def test_unauthenticated_socket_is_closed(self):
        communicator = WebsocketCommunicator(self.app, "/ws/chat/")
        communicator.scope["user"] = AnonymousUser()
        connected, _ = await communicator.connect()
        self.assertFalse(connected)

    async def test_delivers_to_recipient_and_confirms_to_sender(self):
        alice = await self._open(self.alice)
        bob = await self._open(self.bob)

        await alice.send_json_to(self._send_frame(self.alice, self.bob, "hi"))

        delivered = await bob.receive_json_from()
        self.assertEqual(delivered["event"], "message-delivered")
        self.assertEqual(delivered["data"]["content"], "hi")
        self.assertEqual(delivered["data"]["sender"], self.alice.id)

        sent = await alice.receive_json_from()
        self.assertEqual(sent["event"], "message-sent")
        self.assertEqual(sent["data"]["clientTempId"], "temp-1")
        self.assertEqual(sent["data"]["id"], delivered["data"]["id"])

        # never echoed back to the sender's own channel
        self.assertTrue(await alice.receive_nothing())

        count = await database_sync_to_async(Message.objects.count)()
        self.assertEqual(count, 1)

        await alice.disconnect()
        await bob.disconnect()

    async def test_not_connected_is_rejected_without_persisting(self):
        alice = await self._open(self.alice)
        carol = await self._open(self.carol)

        await alice.send_json_to(self._send_frame(self.alice, self.carol, "hello?", "temp-9"))
        error = await alice.receive_json_from()
        self.assertEqual(error["event"], "message-error")
        self.assertEqual(error["data"]["clientTempId"], "temp-9")
        self.assertIn("connected", error["data"]["reason"])

        self.assertTrue(await carol.receive_nothing())
        count = await database_sync_to_async(Message.objects.count)()
        self.assertEqual(count, 0)

        await alice.disconnect()
        await carol.disconnect()

    async def test_send_before_join_is_rejected(self):
        alice = await self._open(self.alice, join=False)
        await alice.send_json_to(self._send_frame(self.alice, self.bob, "hi"))
        error = await alice.receive_json_from()
        self.assertEqual(error["event"], "message-error")
        await alice.disconnect()

    async def test_cannot_join_as_someone_else(self):
        alice = await self._open(self.alice, join=False)
        await alice.send_json_to({"event": "join", "data": self.bob.id})
        error = await alice.receive_json_from()
        self.assertEqual(error, {"event": "message-error", "data": {"reason": "Cannot join as another user"}})
        self.assertFalse(self.registry.is_online(self.bob.id))
        await alice.disconnect()

    async def test_cannot_send_as_someone_else(self):
        alice = await self._open(self.alice)
        await alice.send_json_to(self._send_frame(self.bob, self.alice, "spoof"))
        error = await alice.receive_json_from()
        self.assertEqual(error["event"], "message-error")
        await alice.disconnect()

    async def test_unknown_recipient(self):
        alice = await self._open(self.alice)
        frame = self._send_frame(self.alice, self.bob, "hi")
        frame["data"]["recipient"] = 99999
        await alice.send_json_to(frame)
        error = await alice.receive_json_from()
        self.assertEqual(error["data"]["reason"], "Recipient not found")
        await alice.disconnect()

    async def test_non_string_content_is_coerced_like_http(self):
        alice = await self._open(self.alice)
        frame = self._send_frame(self.alice, self.bob, "x")
        frame["data"]["content"] = 42
        await alice.send_json_to(frame)
        sent = await alice.receive_json_from()
        self.assertEqual(sent["event"], "message-sent")

        message = await database_sync_to_async(Message.objects.get)()
        self.assertEqual(message.content, "42")
        await alice.disconnect()

    async def test_missing_content_matches_http_error_text(self):
        alice = await self._open(self.alice)
        frame = self._send_frame(self.alice, self.bob, "x")
        del frame["data"]["content"]
        await alice.send_json_to(frame)
        error = await alice.receive_json_from()
        self.assertEqual(error["event"], "message-error")
        self.assertEqual(error["data"]["reason"], "content: This field is required.")
        await alice.disconnect()

    async def test_empty_content_is_rejected(self):
        alice = await self._open(self.alice)
        await alice.send_json_to(self._send_frame(self.alice, self.bob, "   "))
        error = await alice.receive_json_from()
        self.assertEqual(error["data"]["reason"], "Message cannot be empty")
        await alice.disconnect()

    async def test_store_failure_emits_error_and_no_delivery(self):
        alice = await self._open(self.alice)
        bob = await self._open(self.bob)

        with patch("message.consumers.append_message", side_effect=RuntimeError("db down")):
            await alice.send_json_to(self._send_frame(self.alice, self.bob, "lost"))
            error = await alice.receive_json_from()

        self.assertEqual(error["event"], "message-error")
        self.assertEqual(error["data"]["reason"], "Message could not be saved")
        self.assertTrue(await bob.receive_nothing())

        await alice.disconnect()
        await bob.disconnect()

    async def test_duplicate_send_is_delivered_once(self):
        alice = await self._open(self.alice)
        bob = await self._open(self.bob)

        await alice.send_json_to(self._send_frame(self.alice, self.bob, "twice", "temp-a"))
        first = await alice.receive_json_from()
        await alice.send_json_to(self._send_frame(self.alice, self.bob, "twice", "temp-b"))
        second = await alice.receive_json_from()

        self.assertEqual(first["data"]["id"], second["data"]["id"])
        self.assertEqual(second["data"]["clientTempId"], "temp-b")

        delivered = await bob.receive_json_from()
        self.assertEqual(delivered["data"]["content"], "twice")
        self.assertTrue(await bob.receive_nothing())

        await alice.disconnect()
        await bob.disconnect()

    async def test_newest_socket_owns_the_user_channel(self):
        alice = await self._open(self.alice)
        bob_old = await self._open(self.bob)
        bob_new = await self._open(self.bob)

        await alice.send_json_to(self._send_frame(self.alice, self.bob, "which tab?"))
        delivered = await bob_new.receive_json_from()
        self.assertEqual(delivered["data"]["content"], "which tab?")
        self.assertTrue(await bob_old.receive_nothing())

        await alice.disconnect()
        await bob_old.disconnect()
        await bob_new.disconnect()

    async def test_disconnect_leaves_registry(self):
        bob = await self._open(self.bob)
        self.assertTrue(self.registry.is_online(self.bob.id))
        await bob.disconnect()
        self.assertFalse(self.registry.is_online(self.bob.id))

    async def test_malformed_frames_keep_socket_open(self):
        alice = await self._open(self.alice)
        await alice.send_to(text_data="not json")
        error = await alice.receive_json_from()
        self.assertEqual(error["data"]["reason"], "Malformed frame")

        await alice.send_json_to({"event": "typing"})
        error = await alice.receive_json_from()
        self.assertEqual(error["data"]["reason"], "Unknown event: typing")

        await alice.send_json_to(self._send_frame(self.alice, self.bob, "still here"))
        sent = await alice.receive_json_from()
        self.assertEqual(sent["event"], "message-sent")
        await alice.disconnect()


class EndToEndTest(TransactionTestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def _as(self, user):
        self.client.force_login(user)

    async def test_request_accept_chat_and_fetch(self):
        await database_sync_to_async(self._as)(self.alice)
        resp = await database_sync_to_async(self.client.post)(
            reverse("connection_request", kwargs={"user_id": self.bob.id})
        )
        self.assertEqual(resp.status_code, 200)

        await database_sync_to_async(self._as)(self.bob)
        resp = await database_sync_to_async(self.client.post)(
            reverse("connection_accept", kwargs={"user_id": self.alice.id})
        )
        self.assertEqual(resp.status_code, 200)

        app = ChatConsumer.as_asgi(registry=ChannelRegistry())
        sockets = {}
        for user in (self.alice, self.bob):
            communicator = WebsocketCommunicator(app, "/ws/chat/")
            communicator.scope["user"] = user
            await communicator.connect()
            await communicator.send_json_to({"event": "join", "data": user.id})
            await communicator.receive_json_from()
            sockets[user.id] = communicator

        await sockets[self.alice.id].send_json_to({
            "event": "send-message",
            "data": {"sender": self.alice.id, "recipient": self.bob.id, "content": "hi", "clientTempId": "t1"},
        })
        delivered = await sockets[self.bob.id].receive_json_from()
        self.assertEqual(delivered["event"], "message-delivered")
        self.assertEqual(delivered["data"]["content"], "hi")

        result = await database_sync_to_async(services.list_messages)(self.alice, self.bob, 1, 20)
        self.assertEqual([m.content for m in result.messages], ["hi"])
        self.assertEqual(result.total, 1)

        for communicator in sockets.values():
            await communicator.disconnect()


# ── Reconciler ─────────────────────────────────────────────────────────────


def _wire(id, sender, content, at, recipient=2):
    return {"id": id, "sender": sender, "recipient": recipient, "content": content, "createdAt": at.isoformat()}


class ConversationTimelineTest(SimpleTestCase):
    def setUp(self):
        self.t0 = timezone.now()
        self.timeline = ConversationTimeline(partner=2)

    def test_insert_same_id_twice_is_noop(self):
        entry = TimelineEntry.from_wire(_wire(1, 2, "hi", self.t0))
        self.assertTrue(self.timeline.insert(entry))
        snapshot = list(self.timeline.entries)
        for _ in range(3):
            self.assertFalse(self.timeline.insert(TimelineEntry.from_wire(_wire(1, 2, "hi", self.t0))))
        self.assertEqual(self.timeline.entries, snapshot)

    def test_distinct_ids_with_same_text_are_kept(self):
        self.timeline.insert(TimelineEntry.from_wire(_wire(1, 2, "ok", self.t0)))
        self.timeline.insert(TimelineEntry.from_wire(_wire(2, 2, "ok", self.t0 + timedelta(seconds=1))))
        self.assertEqual(len(self.timeline), 2)

    def test_sorted_by_timestamp_with_stable_ties(self):
        self.timeline.insert(TimelineEntry.from_wire(_wire(3, 2, "late", self.t0 + timedelta(minutes=2))))
        self.timeline.insert(TimelineEntry.from_wire(_wire(1, 2, "first tie", self.t0)))
        self.timeline.insert(TimelineEntry.from_wire(_wire(2, 1, "second tie", self.t0)))
        self.assertEqual([e.content for e in self.timeline], ["first tie", "second tie", "late"])

    def test_optimistic_entry_adopts_server_copy(self):
        entry = self.timeline.add_optimistic(1, 2, " hello ", timestamp=self.t0)
        self.assertEqual(entry.status, PENDING)
        self.assertTrue(entry.client_temp_id.startswith("temp-"))

        added = self.timeline.insert(TimelineEntry.from_wire(_wire(41, 1, "hello", self.t0 + timedelta(seconds=1))))
        self.assertFalse(added)
        self.assertEqual(len(self.timeline), 1)
        self.assertEqual(entry.id, 41)
        self.assertEqual(entry.status, CONFIRMED)

    def test_server_copy_outside_tolerance_is_separate(self):
        self.timeline.add_optimistic(1, 2, "hello", timestamp=self.t0)
        self.timeline.insert(TimelineEntry.from_wire(_wire(41, 1, "hello", self.t0 + timedelta(seconds=5))))
        self.assertEqual(len(self.timeline), 2)

    def test_confirm_assigns_id(self):
        entry = self.timeline.add_optimistic(1, 2, "hello", timestamp=self.t0)
        self.assertTrue(self.timeline.confirm(entry.client_temp_id, 7))
        self.assertEqual(entry.id, 7)
        self.assertEqual(entry.status, CONFIRMED)

    def test_confirm_after_separate_server_copy_drops_placeholder(self):
        entry = self.timeline.add_optimistic(1, 2, "hello", timestamp=self.t0)
        self.timeline.insert(TimelineEntry.from_wire(_wire(7, 1, "hello", self.t0 + timedelta(seconds=5))))
        self.timeline.confirm(entry.client_temp_id, 7)
        self.assertEqual([e.id for e in self.timeline], [7])

    def test_confirm_unknown_temp_id(self):
        self.assertFalse(self.timeline.confirm("temp-missing", 1))

    def test_fail_marks_entry(self):
        entry = self.timeline.add_optimistic(1, 2, "hello", timestamp=self.t0)
        self.assertTrue(self.timeline.fail(entry.client_temp_id, "not connected"))
        self.assertEqual(entry.status, FAILED)
        self.assertEqual(entry.error, "not connected")

    def test_naive_optimistic_timestamp_sorts_with_server_entries(self):
        entry = self.timeline.add_optimistic(1, 2, "hi", timestamp=datetime(2024, 5, 1, 10, 0, 0))
        self.assertTrue(timezone.is_aware(entry.timestamp))

        self.timeline.insert(TimelineEntry.from_wire(
            {"id": 8, "sender": 2, "content": "later", "createdAt": "2024-05-01T10:00:05Z"}
        ))
        self.timeline.insert(TimelineEntry.from_wire(
            {"id": 7, "sender": 2, "content": "earlier", "createdAt": "2024-05-01T09:59:00Z"}
        ))
        self.assertEqual([e.content for e in self.timeline], ["earlier", "hi", "later"])

    def test_double_submit_returns_existing_entry(self):
        first = self.timeline.add_optimistic(1, 2, "hello", timestamp=self.t0)
        second = self.timeline.add_optimistic(1, 2, "hello", timestamp=self.t0 + timedelta(milliseconds=300))
        self.assertIs(first, second)
        self.assertEqual(len(self.timeline), 1)

    def test_merge_pages_tracks_backfill(self):
        older = [_wire(1, 2, "a", self.t0), _wire(2, 1, "b", self.t0 + timedelta(minutes=1))]
        newer = [_wire(3, 2, "c", self.t0 + timedelta(minutes=2)), _wire(4, 1, "d", self.t0 + timedelta(minutes=3))]

        self.assertTrue(self.timeline.has_older)
        self.assertEqual(self.timeline.next_page, 1)
        self.timeline.merge_page(newer, {"page": 1, "limit": 2, "total": 4, "pages": 2})
        self.assertEqual(self.timeline.next_page, 2)
        self.timeline.merge_page(older, {"page": 2, "limit": 2, "total": 4, "pages": 2})
        self.assertFalse(self.timeline.has_older)
        self.assertIsNone(self.timeline.next_page)
        self.assertEqual([e.content for e in self.timeline], ["a", "b", "c", "d"])

    def test_from_wire_accepts_live_payload(self):
        entry = TimelineEntry.from_wire({"id": 5, "sender": "3", "content": "x", "timestamp": "2024-05-01T10:00:00Z"})
        self.assertEqual(entry.sender, 3)
        self.assertIsNone(entry.recipient)
        self.assertEqual(entry.timestamp.year, 2024)

    def test_from_wire_rejects_bad_timestamp(self):
        with self.assertRaises(ValidationError):
            TimelineEntry.from_wire({"id": 5, "sender": 3, "content": "x", "timestamp": "yesterday"})


class MessageReconcilerTest(SimpleTestCase):
    def setUp(self):
        self.t0 = timezone.now()
        self.reconciler = MessageReconciler(user_id=1)

    def _delivered(self, id, sender, content, at=None, recipient=1):
        return {"event": "message-delivered", "data": _wire(id, sender, content, at or self.t0, recipient)}

    def test_send_and_confirm(self):
        entry = self.reconciler.send(2, "hello", timestamp=self.t0)
        frame = self.reconciler.send_event(entry)
        self.assertEqual(frame["event"], "send-message")
        self.assertEqual(frame["data"]["clientTempId"], entry.client_temp_id)
        self.assertEqual(frame["data"]["recipient"], 2)

        changed = self.reconciler.handle_event(
            {"event": "message-sent", "data": {"id": 10, "clientTempId": entry.client_temp_id}}
        )
        self.assertTrue(changed)
        self.assertEqual(self.reconciler.timeline(2).entries[0].id, 10)

    def test_error_event_marks_failed(self):
        entry = self.reconciler.send(2, "hello", timestamp=self.t0)
        self.reconciler.handle_event(
            {"event": "message-error", "data": {"reason": "nope", "clientTempId": entry.client_temp_id}}
        )
        self.assertEqual(entry.status, FAILED)

    def test_delivered_goes_to_sender_timeline_and_counts_unread(self):
        self.reconciler.handle_event(self._delivered(5, 3, "yo"))
        self.assertEqual(len(self.reconciler.timeline(3)), 1)
        self.assertEqual(self.reconciler.unread[3], 1)

        self.reconciler.set_active_chat(3)
        self.assertEqual(self.reconciler.unread[3], 0)
        self.reconciler.handle_event(self._delivered(6, 3, "again", self.t0 + timedelta(seconds=10)))
        self.assertEqual(self.reconciler.unread[3], 0)

    def test_redelivery_is_ignored(self):
        self.assertTrue(self.reconciler.handle_event(self._delivered(5, 3, "yo")))
        self.assertFalse(self.reconciler.handle_event(self._delivered(5, 3, "yo")))
        self.assertEqual(self.reconciler.unread[3], 1)

    def test_history_then_live_copy(self):
        self.reconciler.load_history(3, {
            "messages": [_wire(5, 3, "yo", self.t0, recipient=1)],
            "pagination": {"page": 1, "limit": 20, "total": 1, "pages": 1},
        })
        self.reconciler.handle_event(self._delivered(5, 3, "yo"))
        self.assertEqual(len(self.reconciler.timeline(3)), 1)
        self.assertFalse(self.reconciler.timeline(3).has_older)

    def test_malformed_delivered_frame_is_ignored(self):
        for data in (
            {"id": 1, "sender": 2},
            {"id": 1, "sender": "bob", "content": "hi", "createdAt": self.t0.isoformat()},
            {"id": 1, "sender": 2, "content": "hi"},
            None,
        ):
            self.assertFalse(self.reconciler.handle_event({"event": "message-delivered", "data": data}))
        self.assertEqual(self.reconciler.timelines, {})
        self.assertEqual(self.reconciler.unread, {})

    def test_unknown_event_ignored(self):
        self.assertFalse(self.reconciler.handle_event({"event": "joined", "data": {"userId": 1}}))


class ScrollAnchorTest(SimpleTestCase):
    def test_offset_shifts_by_prepended_height(self):
        anchor = ScrollAnchor(offset=0, height=800)
        self.assertEqual(anchor.restore(1400), 600)

    def test_offset_kept_mid_scroll(self):
        anchor = ScrollAnchor(offset=120, height=800)
        self.assertEqual(anchor.restore(800), 120)
