from django.db import models
from django.conf import settings


class Connection(models.Model):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (ACCEPTED, "Accepted"),
        (REJECTED, "Rejected"),
    ]

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_connections"
    )
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="received_connections"
    )
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=PENDING)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        # only blocks a second request in the same direction
        unique_together = ("requester", "recipient")
        indexes = [
            models.Index(fields=["recipient", "status"], name="connection_recip_status_idx"),
            models.Index(fields=["requester", "status"], name="connection_req_status_idx"),
        ]

    def other_party(self, user_id):
        return self.recipient_id if self.requester_id == user_id else self.requester_id # type: ignore

    def __str__(self):
        return f"{self.requester_id} -> {self.recipient_id} ({self.status})" # type: ignore
