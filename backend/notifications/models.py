from django.conf import settings
from django.db import models


class Notification(models.Model):
    """In-app notice shown to a user about one of their bookings."""

    class Type(models.TextChoices):
        RENTAL_REQUEST = "rental_request", "Rental request"
        RENTAL_ACCEPTED = "rental_accepted", "Rental accepted"
        RENTAL_REJECTED = "rental_rejected", "Rental rejected"
        PAYMENT_CONFIRMATION = "payment_confirmation", "Payment confirmation"
        PICKUP_REQUESTED = "pickup_requested", "Pickup requested"
        PICKUP_INITIATED = "pickup_initiated", "Pickup initiated"
        PICKUP_VERIFICATION_PENDING = "pickup_verification_pending", "Pickup verification pending"
        PICKUP_COMPLETED = "pickup_completed", "Pickup completed"
        RETURN_REQUESTED = "return_requested", "Return requested"
        RETURN_INITIATED = "return_initiated", "Return initiated"
        RETURN_VERIFICATION_PENDING = "return_verification_pending", "Return verification pending"
        RETURN_COMPLETED = "return_completed", "Return completed"
        BOOKING_CANCELLED = "booking_cancelled", "Booking cancelled"
        PAYOUT_UPDATE = "payout_update", "Payout update"
        RETURN_REMINDER = "return_reminder", "Return reminder"
        RETURN_DEADLINE = "return_deadline", "Return deadline"
        OVERDUE_WARNING = "overdue_warning", "Overdue warning"
        ESCALATED_OVERDUE = "escalated_overdue", "Escalated overdue"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type = models.CharField(max_length=40, choices=Type.choices)
    message = models.TextField()
    is_read = models.BooleanField(default=False)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read", "created_at"], name="notif_user_read_created_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type} for {self.user_id}"


class NotificationLog(models.Model):
    class Channel(models.TextChoices):
        EMAIL = "email", "Email"

    class Status(models.TextChoices):
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"

    channel = models.CharField(max_length=8, choices=Channel.choices)
    type = models.CharField(max_length=128)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notification_logs",
    )
    booking_id = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=8, choices=Status.choices)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="notification_created_65a70b_idx"),
            models.Index(fields=["booking_id", "created_at"], name="notification_booking_7d8d32_idx"),
            models.Index(fields=["type", "created_at"], name="notification_type_cre_136b3c_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.channel}:{self.type} ({self.status})"
