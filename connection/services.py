"""
Connection store and request lifecycle.

A connection is a directed record ``requester -> recipient`` that starts
``pending`` and is moved to ``accepted`` or ``rejected`` by the recipient.
Accepted records are the only thing that lets two users message each other
and are deleted, not re-statused, when either side removes the connection.

Every function takes users or raw user ids interchangeably. Callers outside
this module never touch ``Connection`` rows directly.
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from .exceptions import (
    AlreadyConnectedError,
    NoSuchRequestError,
    NotConnectedError,
    RequestAlreadyPendingError,
    RequestRejectedError,
    SelfConnectionError,
)
from .models import Connection

logger = logging.getLogger(__name__)

# connection_status() results
STATUS_NONE = "none"
STATUS_CONNECTED = "connected"
STATUS_PENDING_OUTGOING = "pending_outgoing"
STATUS_PENDING_INCOMING = "pending_incoming"
STATUS_REJECTED_OUTGOING = "rejected_outgoing"
STATUS_REJECTED_INCOMING = "rejected_incoming"


def _pk(user):
    return getattr(user, "pk", user)


def _between(a, b):
    return Q(requester_id=a, recipient_id=b) | Q(requester_id=b, recipient_id=a)


def _involving(user_id):
    return Q(requester_id=user_id) | Q(recipient_id=user_id)


# ---------- LIFECYCLE ----------

def request_connection(requester, recipient) -> Connection:
    requester_id, recipient_id = _pk(requester), _pk(recipient)
    if requester_id == recipient_id:
        raise SelfConnectionError()

    existing = list(Connection.objects.filter(_between(requester_id, recipient_id)))

    if any(c.status == Connection.ACCEPTED for c in existing):
        raise AlreadyConnectedError()

    for conn in existing:
        if conn.status != Connection.PENDING:
            continue
        if conn.requester_id == requester_id: # type: ignore
            raise RequestAlreadyPendingError()
        raise RequestAlreadyPendingError("This user has already sent you a connection request")

    # a rejected record in this direction still occupies the unique pair
    if any(c.status == Connection.REJECTED and c.requester_id == requester_id for c in existing): # type: ignore
        raise RequestRejectedError()

    try:
        with transaction.atomic():
            conn = Connection.objects.create(
                requester_id=requester_id,
                recipient_id=recipient_id,
                status=Connection.PENDING,
            )
    except IntegrityError:
        # lost a race against an identical request
        raise RequestAlreadyPendingError()

    logger.info("Connection requested: %s -> %s", requester_id, recipient_id)
    return conn


def _resolve_pending(recipient, requester, target: str) -> Connection:
    recipient_id, requester_id = _pk(recipient), _pk(requester)
    updated = Connection.objects.filter(
        requester_id=requester_id,
        recipient_id=recipient_id,
        status=Connection.PENDING,
    ).update(status=target, updated_at=timezone.now())

    if not updated:
        raise NoSuchRequestError()

    logger.info("Connection %s: %s -> %s", target, requester_id, recipient_id)
    return Connection.objects.get(requester_id=requester_id, recipient_id=recipient_id)


def accept_connection(recipient, requester) -> Connection:
    return _resolve_pending(recipient, requester, Connection.ACCEPTED)


def reject_connection(recipient, requester) -> Connection:
    # the record is kept; see DESIGN.md on re-requesting after a rejection
    return _resolve_pending(recipient, requester, Connection.REJECTED)


def remove_connection(user_a, user_b) -> None:
    a, b = _pk(user_a), _pk(user_b)
    deleted, _ = Connection.objects.filter(_between(a, b), status=Connection.ACCEPTED).delete()
    if not deleted:
        raise NotConnectedError()
    logger.info("Connection removed: %s <-> %s", a, b)


# ---------- QUERIES ----------

def is_connected(user_a, user_b) -> bool:
    a, b = _pk(user_a), _pk(user_b)
    if a == b:
        return False
    return Connection.objects.filter(_between(a, b), status=Connection.ACCEPTED).exists()


def list_accepted(user) -> list:
    uid = _pk(user)
    rows = Connection.objects.filter(
        _involving(uid), status=Connection.ACCEPTED
    ).order_by("-updated_at", "-id").values_list("requester_id", "recipient_id")
    others = [recipient_id if requester_id == uid else requester_id for requester_id, recipient_id in rows]
    return list(dict.fromkeys(others))


def list_pending_incoming(user) -> list:
    return list(
        Connection.objects.filter(
            recipient_id=_pk(user), status=Connection.PENDING
        ).order_by("-created_at", "-id").values_list("requester_id", flat=True)
    )


def list_pending_outgoing(user) -> list:
    return list(
        Connection.objects.filter(
            requester_id=_pk(user), status=Connection.PENDING
        ).order_by("-created_at", "-id").values_list("recipient_id", flat=True)
    )


def connection_status(user, other) -> str:
    uid, oid = _pk(user), _pk(other)
    records = list(Connection.objects.filter(_between(uid, oid)))

    if any(c.status == Connection.ACCEPTED for c in records):
        return STATUS_CONNECTED

    for wanted, outgoing, incoming in (
        (Connection.PENDING, STATUS_PENDING_OUTGOING, STATUS_PENDING_INCOMING),
        (Connection.REJECTED, STATUS_REJECTED_OUTGOING, STATUS_REJECTED_INCOMING),
    ):
        for conn in records:
            if conn.status == wanted:
                return outgoing if conn.requester_id == uid else incoming # type: ignore

    return STATUS_NONE
