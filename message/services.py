import hashlib
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from connection.exceptions import NotConnectedError
from connection.services import is_connected
from .exceptions import EmptyContentError, InvalidPaginationError
from .models import Message

logger = logging.getLogger(__name__)


@dataclass
class MessagePage:
    messages: list = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    pages: int = 0

    def pagination(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def _pk(user):
    return getattr(user, "pk", user)


def conversation_key(user_a, user_b) -> str:
    pair = sorted(str(_pk(user)) for user in (user_a, user_b))
    return hashlib.sha256("$".join(pair).encode()).hexdigest()


def dedup_window() -> timedelta:
    return timedelta(seconds=settings.CHAT_DEDUP_WINDOW_SECONDS)


def append_message(sender, recipient, content) -> tuple[Message, bool]:
    """
    Store a message from ``sender`` to ``recipient``.

    Returns ``(message, created)``. When the same sender stored the same
    trimmed text in this conversation within the dedup window, the earlier
    message is returned with ``created=False`` and nothing is written.

    The duplicate check and the insert are not serialized; two racing calls
    can both insert.
    """
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise EmptyContentError()

    sender_id, recipient_id = _pk(sender), _pk(recipient)
    if not is_connected(sender_id, recipient_id):
        raise NotConnectedError("You can only message users you are connected with")

    key = conversation_key(sender_id, recipient_id)
    now = timezone.now()
    window = dedup_window()

    existing = Message.objects.filter(
        conversation_key=key,
        sender_id=sender_id,
        content=text,
        created_at__gte=now - window,
        created_at__lte=now + window,
    ).order_by("created_at", "id").first()
    if existing is not None:
        logger.info("Duplicate message from %s suppressed, keeping %s", sender_id, existing.id) # type: ignore
        return existing, False

    message = Message.objects.create(
        sender_id=sender_id,
        recipient_id=recipient_id,
        content=text,
        conversation_key=key,
        created_at=now,
    )
    logger.info("Message %s stored: %s -> %s", message.id, sender_id, recipient_id) # type: ignore
    return message, True


def list_messages(user_a, user_b, page: int = 1, page_size: int | None = None) -> MessagePage:
    """
    One page of a conversation, oldest first.

    Pages are counted from the newest end: page 1 is the ``page_size`` most
    recent messages, page 2 the ones just before them.
    """
    if page_size is None:
        page_size = settings.CHAT_PAGE_SIZE
    if page < 1 or page_size < 1:
        raise InvalidPaginationError()

    queryset = Message.objects.filter(conversation_key=conversation_key(user_a, user_b))
    total = queryset.count()

    offset = (page - 1) * page_size
    # id breaks created_at ties so page boundaries stay stable
    newest_first = list(queryset.order_by("-created_at", "-id")[offset:offset + page_size])
    newest_first.reverse()

    return MessagePage(
        messages=newest_first,
        page=page,
        limit=page_size,
        total=total,
        pages=math.ceil(total / page_size),
    )


def count_unread(user) -> int:
    return Message.objects.filter(recipient_id=_pk(user), read=False).count()


def mark_read(reader, other) -> int:
    return Message.objects.filter(
        recipient_id=_pk(reader), sender_id=_pk(other), read=False
    ).update(read=True)
