import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone

from django.utils import timezone
from rest_framework.exceptions import ValidationError

from .serializers import WireMessageSerializer

DEDUP_TOLERANCE = timedelta(seconds=2)

PENDING = "pending"
CONFIRMED = "confirmed"
FAILED = "failed"


def _aware(value: datetime) -> datetime:
    if timezone.is_naive(value):
        return timezone.make_aware(value, dt_timezone.utc)
    return value


@dataclass
class TimelineEntry:
    sender: int
    content: str
    timestamp: datetime
    recipient: int | None = None
    id: int | None = None
    client_temp_id: str | None = None
    status: str = CONFIRMED
    error: str | None = None

    @classmethod
    def from_wire(cls, data: dict) -> "TimelineEntry":
        """Build an entry from a history item or a ``message-delivered`` payload."""
        serializer = WireMessageSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        fields = serializer.validated_data
        return cls(
            id=fields.get("id"),  # type: ignore
            sender=fields["sender"],  # type: ignore
            recipient=fields.get("recipient"),  # type: ignore
            content=fields["content"],  # type: ignore
            timestamp=_aware(fields.get("createdAt") or fields["timestamp"]),  # type: ignore
        )

    def same_message(self, other: "TimelineEntry", tolerance: timedelta = DEDUP_TOLERANCE) -> bool:
        if self.id is not None and other.id is not None:
            return self.id == other.id
        return (
            self.sender == other.sender
            and self.content.strip() == other.content.strip()
            and abs(self.timestamp - other.timestamp) <= tolerance
        )


@dataclass
class ConversationTimeline:
    partner: int | None = None
    entries: list = field(default_factory=list)
    loaded_pages: int = 0
    total_pages: int | None = None

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def has_older(self) -> bool:
        if self.total_pages is None:
            return True
        return self.loaded_pages < self.total_pages

    @property
    def next_page(self) -> int | None:
        return self.loaded_pages + 1 if self.has_older else None

    def find(self, candidate: TimelineEntry):
        for entry in self.entries:
            if entry.same_message(candidate):
                return entry
        return None

    def insert(self, candidate: TimelineEntry) -> bool:
        """
        Add ``candidate`` unless the timeline already holds the same message.

        Returns True when the entry was added. A duplicate is dropped, but an
        optimistic entry takes over the server id of the copy that matched it.
        """
        existing = self.find(candidate)
        if existing is not None:
            if existing.id is None and candidate.id is not None:
                existing.id = candidate.id
                existing.status = CONFIRMED
                existing.error = None
            return False

        self.entries.append(candidate)
        # list.sort is stable: exact ties keep arrival order
        self.entries.sort(key=lambda e: e.timestamp)
        return True

    def add_optimistic(self, sender, recipient, content: str, timestamp: datetime | None = None) -> TimelineEntry:
        entry = TimelineEntry(
            sender=sender,
            recipient=recipient,
            content=content.strip(),
            timestamp=_aware(timestamp or timezone.now()),
            client_temp_id=f"temp-{uuid.uuid4().hex}",
            status=PENDING,
        )
        # a double submit resolves to the entry already on screen
        existing = self.find(entry)
        if existing is not None:
            return existing
        self.insert(entry)
        return entry

    def _by_temp_id(self, client_temp_id):
        for entry in self.entries:
            if client_temp_id is not None and entry.client_temp_id == client_temp_id:
                return entry
        return None

    def confirm(self, client_temp_id: str, message_id: int) -> bool:
        entry = self._by_temp_id(client_temp_id)
        if entry is None:
            return False

        # the delivered copy may have landed first under the real id
        for other in self.entries:
            if other is not entry and other.id == message_id:
                self.entries.remove(entry)
                return True

        entry.id = message_id
        entry.status = CONFIRMED
        entry.error = None
        return True

    def fail(self, client_temp_id: str, reason: str) -> bool:
        entry = self._by_temp_id(client_temp_id)
        if entry is None or entry.id is not None:
            return False
        entry.status = FAILED
        entry.error = reason
        return True

    def merge_page(self, messages: list, pagination: dict | None = None) -> int:
        """Merge one history page; returns how many entries were new."""
        added = sum(1 for item in messages if self.insert(TimelineEntry.from_wire(item)))
        if pagination is not None:
            self.loaded_pages = max(self.loaded_pages, int(pagination.get("page", 1)))
            self.total_pages = int(pagination.get("pages", 0))
        return added


class MessageReconciler:
    """Timelines for every chat of one signed-in user, fed by live events."""

    def __init__(self, user_id):
        self.user_id = user_id
        self.timelines: dict = {}
        self.unread: dict = {}
        self.active_chat = None

    def timeline(self, partner) -> ConversationTimeline:
        if partner not in self.timelines:
            self.timelines[partner] = ConversationTimeline(partner=partner)
        return self.timelines[partner]

    def set_active_chat(self, partner):
        self.active_chat = partner
        if partner is not None:
            self.unread[partner] = 0

    def send(self, partner, content: str, timestamp: datetime | None = None) -> TimelineEntry:
        return self.timeline(partner).add_optimistic(self.user_id, partner, content, timestamp)

    def send_event(self, entry: TimelineEntry) -> dict:
        """The ``send-message`` frame matching an optimistic entry."""
        return {
            "event": "send-message",
            "data": {
                "sender": entry.sender,
                "recipient": entry.recipient,
                "content": entry.content,
                "clientTempId": entry.client_temp_id,
                "timestamp": entry.timestamp.isoformat(),
            },
        }

    def load_history(self, partner, response: dict) -> int:
        return self.timeline(partner).merge_page(response.get("messages", []), response.get("pagination"))

    def handle_event(self, frame: dict) -> bool:
        """Apply one server frame. Returns True when a timeline changed."""
        event, data = frame.get("event"), frame.get("data") or {}

        if event == "message-delivered":
            try:
                entry = TimelineEntry.from_wire(data)
            except ValidationError:
                return False
            partner = entry.recipient if entry.sender == self.user_id else entry.sender
            added = self.timeline(partner).insert(entry)
            if added and entry.sender != self.user_id and partner != self.active_chat:
                self.unread[partner] = self.unread.get(partner, 0) + 1
            return added

        if event == "message-sent":
            return any(t.confirm(data.get("clientTempId"), data.get("id")) for t in self.timelines.values())

        if event == "message-error":
            temp_id = data.get("clientTempId")
            return any(t.fail(temp_id, data.get("reason", "")) for t in self.timelines.values())

        return False


@dataclass
class ScrollAnchor:
    """
    Keeps the viewport still while older messages are prepended.

    Capture the scroll offset and content height before the older page is
    rendered, then ask for the offset to restore once it is.
    """
    offset: float
    height: float

    def restore(self, new_height: float) -> float:
        return self.offset + (new_height - self.height)
