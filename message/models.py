from django.db import models
from django.conf import settings
from django.utils import timezone


class Message(models.Model):
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_messages"
    )
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="received_messages"
    )
    content = models.TextField()
    # sha256 of the sorted participant pair, see services.conversation_key
    conversation_key = models.CharField(max_length=64)
    created_at = models.DateTimeField(default=timezone.now)
    read = models.BooleanField(default=False)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["conversation_key", "created_at"], name="message_conv_created_idx"),
            models.Index(fields=["recipient", "read"], name="message_recipient_read_idx"),
        ]

    def __str__(self):
        return f"{self.sender_id} -> {self.recipient_id}: {self.content[:30]}" # type: ignore
