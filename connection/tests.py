import factory
from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase
from django.urls import reverse
from faker import Faker

from . import services
from .exceptions import (
    AlreadyConnectedError,
    NoSuchRequestError,
    NotConnectedError,
    RequestAlreadyPendingError,
    RequestRejectedError,
    SelfConnectionError,
)
from .models import Connection

User = get_user_model()
fake = Faker()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    name = factory.LazyFunction(fake.name)


class ConnectionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Connection

    requester = factory.SubFactory(UserFactory)
    recipient = factory.SubFactory(UserFactory)
    status = Connection.PENDING


# ── Model Tests ────────────────────────────────────────────────────────────


class ConnectionModelTest(TestCase):
    def test_duplicate_direction_raises_integrity_error(self):
        conn = ConnectionFactory()
        with self.assertRaises(IntegrityError):
            Connection.objects.create(requester=conn.requester, recipient=conn.recipient)

    def test_other_party(self):
        conn = ConnectionFactory()
        self.assertEqual(conn.other_party(conn.requester.id), conn.recipient.id)
        self.assertEqual(conn.other_party(conn.recipient.id), conn.requester.id)

    def test_cascade_delete_user_removes_connection(self):
        conn = ConnectionFactory(status=Connection.ACCEPTED)
        conn.requester.delete()
        self.assertFalse(Connection.objects.exists())


# ── Lifecycle ──────────────────────────────────────────────────────────────


class RequestConnectionTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def test_creates_pending_record(self):
        conn = services.request_connection(self.alice, self.bob)
        self.assertEqual(conn.status, Connection.PENDING)
        self.assertEqual(conn.requester, self.alice)
        self.assertEqual(conn.recipient, self.bob)

    def test_accepts_raw_ids(self):
        conn = services.request_connection(self.alice.id, self.bob.id)
        self.assertEqual(conn.requester_id, self.alice.id)

    def test_self_connection_rejected(self):
        with self.assertRaises(SelfConnectionError):
            services.request_connection(self.alice, self.alice)
        self.assertFalse(Connection.objects.exists())

    def test_repeat_request_reports_already_sent(self):
        services.request_connection(self.alice, self.bob)
        with self.assertRaises(RequestAlreadyPendingError) as ctx:
            services.request_connection(self.alice, self.bob)
        self.assertEqual(ctx.exception.message, "Connection request already sent")

    def test_reverse_pending_reports_incoming_request(self):
        services.request_connection(self.alice, self.bob)
        with self.assertRaises(RequestAlreadyPendingError) as ctx:
            services.request_connection(self.bob, self.alice)
        self.assertIn("already sent you", ctx.exception.message)
        self.assertEqual(Connection.objects.count(), 1)

    def test_already_connected_either_direction(self):
        ConnectionFactory(requester=self.alice, recipient=self.bob, status=Connection.ACCEPTED)
        with self.assertRaises(AlreadyConnectedError):
            services.request_connection(self.alice, self.bob)
        with self.assertRaises(AlreadyConnectedError):
            services.request_connection(self.bob, self.alice)

    def test_rejected_same_direction_cannot_rerequest(self):
        ConnectionFactory(requester=self.alice, recipient=self.bob, status=Connection.REJECTED)
        with self.assertRaises(RequestRejectedError):
            services.request_connection(self.alice, self.bob)

    def test_rejected_reverse_direction_allows_new_request(self):
        ConnectionFactory(requester=self.alice, recipient=self.bob, status=Connection.REJECTED)
        conn = services.request_connection(self.bob, self.alice)
        self.assertEqual(conn.status, Connection.PENDING)


class AcceptRejectTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def test_accept_flips_status(self):
        services.request_connection(self.alice, self.bob)
        conn = services.accept_connection(self.bob, self.alice)
        self.assertEqual(conn.status, Connection.ACCEPTED)
        self.assertTrue(services.is_connected(self.alice, self.bob))

    def test_accept_without_request_fails(self):
        with self.assertRaises(NoSuchRequestError):
            services.accept_connection(self.bob, self.alice)

    def test_requester_cannot_accept_own_request(self):
        services.request_connection(self.alice, self.bob)
        with self.assertRaises(NoSuchRequestError):
            services.accept_connection(self.alice, self.bob)

    def test_accept_is_one_shot(self):
        services.request_connection(self.alice, self.bob)
        services.accept_connection(self.bob, self.alice)
        with self.assertRaises(NoSuchRequestError):
            services.accept_connection(self.bob, self.alice)

    def test_reject_keeps_record(self):
        services.request_connection(self.alice, self.bob)
        conn = services.reject_connection(self.bob, self.alice)
        self.assertEqual(conn.status, Connection.REJECTED)
        self.assertEqual(Connection.objects.count(), 1)
        self.assertFalse(services.is_connected(self.alice, self.bob))

    def test_rejected_request_cannot_be_accepted(self):
        services.request_connection(self.alice, self.bob)
        services.reject_connection(self.bob, self.alice)
        with self.assertRaises(NoSuchRequestError):
            services.accept_connection(self.bob, self.alice)

    def test_reject_without_request_fails(self):
        with self.assertRaises(NoSuchRequestError):
            services.reject_connection(self.bob, self.alice)


class RemoveConnectionTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def test_remove_deletes_record(self):
        ConnectionFactory(requester=self.alice, recipient=self.bob, status=Connection.ACCEPTED)
        services.remove_connection(self.bob, self.alice)
        self.assertFalse(Connection.objects.exists())

    def test_remove_requires_accepted(self):
        ConnectionFactory(requester=self.alice, recipient=self.bob, status=Connection.PENDING)
        with self.assertRaises(NotConnectedError):
            services.remove_connection(self.alice, self.bob)
        self.assertEqual(Connection.objects.count(), 1)

    def test_remove_without_record_fails(self):
        with self.assertRaises(NotConnectedError):
            services.remove_connection(self.alice, self.bob)

    def test_removal_resets_state(self):
        services.request_connection(self.alice, self.bob)
        services.accept_connection(self.bob, self.alice)
        services.remove_connection(self.alice, self.bob)

        self.assertFalse(services.is_connected(self.alice, self.bob))
        conn = services.request_connection(self.alice, self.bob)
        self.assertEqual(conn.status, Connection.PENDING)


# ── Queries ────────────────────────────────────────────────────────────────


class IsConnectedTest(TestCase):
    def test_symmetric_through_lifecycle(self):
        alice, bob = UserFactory(), UserFactory()

        def check():
            self.assertEqual(
                services.is_connected(alice, bob),
                services.is_connected(bob, alice),
            )

        check()
        services.request_connection(alice, bob)
        check()
        self.assertFalse(services.is_connected(alice, bob))
        services.accept_connection(bob, alice)
        check()
        self.assertTrue(services.is_connected(bob, alice))
        services.remove_connection(bob, alice)
        check()
        services.request_connection(bob, alice)
        services.reject_connection(alice, bob)
        check()
        self.assertFalse(services.is_connected(alice, bob))

    def test_user_is_not_connected_to_self(self):
        alice = UserFactory()
        self.assertFalse(services.is_connected(alice, alice))


class ListingTest(TestCase):
    def setUp(self):
        self.me = UserFactory()
        self.friend_a = UserFactory()
        self.friend_b = UserFactory()
        self.asker = UserFactory()
        self.asked = UserFactory()
        ConnectionFactory(requester=self.me, recipient=self.friend_a, status=Connection.ACCEPTED)
        ConnectionFactory(requester=self.friend_b, recipient=self.me, status=Connection.ACCEPTED)
        ConnectionFactory(requester=self.asker, recipient=self.me, status=Connection.PENDING)
        ConnectionFactory(requester=self.me, recipient=self.asked, status=Connection.PENDING)
        ConnectionFactory(requester=UserFactory(), recipient=self.me, status=Connection.REJECTED)

    def test_accepted_lists_other_party_only(self):
        ids = services.list_accepted(self.me)
        self.assertCountEqual(ids, [self.friend_a.id, self.friend_b.id])
        self.assertNotIn(self.me.id, ids)

    def test_pending_incoming(self):
        self.assertEqual(services.list_pending_incoming(self.me), [self.asker.id])

    def test_pending_outgoing(self):
        self.assertEqual(services.list_pending_outgoing(self.me), [self.asked.id])

    def test_friend_sees_me(self):
        self.assertEqual(services.list_accepted(self.friend_b), [self.me.id])


class ConnectionStatusTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def test_none(self):
        self.assertEqual(services.connection_status(self.alice, self.bob), services.STATUS_NONE)

    def test_pending_both_sides(self):
        services.request_connection(self.alice, self.bob)
        self.assertEqual(services.connection_status(self.alice, self.bob), services.STATUS_PENDING_OUTGOING)
        self.assertEqual(services.connection_status(self.bob, self.alice), services.STATUS_PENDING_INCOMING)

    def test_rejected_both_sides(self):
        services.request_connection(self.alice, self.bob)
        services.reject_connection(self.bob, self.alice)
        self.assertEqual(services.connection_status(self.alice, self.bob), services.STATUS_REJECTED_OUTGOING)
        self.assertEqual(services.connection_status(self.bob, self.alice), services.STATUS_REJECTED_INCOMING)

    def test_connected(self):
        ConnectionFactory(requester=self.bob, recipient=self.alice, status=Connection.ACCEPTED)
        self.assertEqual(services.connection_status(self.alice, self.bob), services.STATUS_CONNECTED)


# ── Views ──────────────────────────────────────────────────────────────────


class ConnectionViewTest(TestCase):
    def setUp(self):
        self.user = UserFactory()
        self.other = UserFactory()
        self.client.force_login(self.user)

    def test_unauthenticated_returns_4xx(self):
        self.client.logout()
        resp = self.client.get(reverse("connections"))
        self.assertGreaterEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])

    def test_request_creates_pending(self):
        resp = self.client.post(reverse("connection_request", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"success": True, "message": "Connection request sent successfully"})
        self.assertTrue(
            Connection.objects.filter(requester=self.user, recipient=self.other, status=Connection.PENDING).exists()
        )

    def test_request_to_unknown_user_returns_404(self):
        resp = self.client.post(reverse("connection_request", kwargs={"user_id": 99999}))
        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.json()["success"])

    def test_request_to_self_returns_400(self):
        resp = self.client.post(reverse("connection_request", kwargs={"user_id": self.user.id}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "You cannot connect with yourself")

    def test_request_twice_returns_400(self):
        url = reverse("connection_request", kwargs={"user_id": self.other.id})
        self.client.post(url)
        resp = self.client.post(url)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Connection request already sent")

    def test_accept(self):
        ConnectionFactory(requester=self.other, recipient=self.user)
        resp = self.client.post(reverse("connection_accept", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(services.is_connected(self.user, self.other))

    def test_accept_without_request_returns_400(self):
        resp = self.client.post(reverse("connection_accept", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "No connection request from this user")

    def test_reject(self):
        ConnectionFactory(requester=self.other, recipient=self.user)
        resp = self.client.post(reverse("connection_reject", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Connection.objects.get().status, Connection.REJECTED)

    def test_get_not_allowed_on_actions(self):
        resp = self.client.get(reverse("connection_accept", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 405)

    def test_list_connections_returns_other_users(self):
        ConnectionFactory(requester=self.other, recipient=self.user, status=Connection.ACCEPTED)
        resp = self.client.get(reverse("connections"))
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual([u["id"] for u in body["connections"]], [self.other.id])
        self.assertEqual(body["connections"][0]["username"], self.other.username)

    def test_list_incoming_requests(self):
        ConnectionFactory(requester=self.other, recipient=self.user)
        resp = self.client.get(reverse("connection_requests"))
        self.assertEqual([u["id"] for u in resp.json()["requests"]], [self.other.id])

    def test_list_outgoing_requests(self):
        ConnectionFactory(requester=self.user, recipient=self.other)
        resp = self.client.get(reverse("connection_requests_sent"))
        self.assertEqual([u["id"] for u in resp.json()["requests"]], [self.other.id])

    def test_status(self):
        ConnectionFactory(requester=self.user, recipient=self.other)
        resp = self.client.get(reverse("connection_status", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.json()["status"], "pending_outgoing")

    def test_remove(self):
        ConnectionFactory(requester=self.user, recipient=self.other, status=Connection.ACCEPTED)
        resp = self.client.delete(reverse("connection_remove", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(Connection.objects.exists())

    def test_remove_when_not_connected_returns_403(self):
        resp = self.client.delete(reverse("connection_remove", kwargs={"user_id": self.other.id}))
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["message"], "Not connected with this user")
