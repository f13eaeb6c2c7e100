from django.conf import settings
from django.db import models


class Payment(models.Model):
    """A renter's charge for a booking, with its payout and refund sub-state."""

    class Status(models.TextChoices):
        INITIATED = "initiated", "Initiated"
        SUCCESSFUL = "successful", "Successful"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    class PayoutStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    class RefundStatus(models.TextChoices):
        NONE = "none", "None"
        REQUESTED = "requested", "Requested"
        PROCESSED = "processed", "Processed"
        FAILED = "failed", "Failed"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments_made",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payments_received",
    )
    gateway = models.CharField(max_length=16, default="stripe")
    gateway_payment_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent id.",
    )
    gateway_charge_id = models.CharField(max_length=255, blank=True, default="")
    client_secret = models.CharField(max_length=255, blank=True, default="")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=8, default="inr")
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    owner_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.INITIATED,
    )
    failure_reason = models.TextField(blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)

    payout_status = models.CharField(
        max_length=16,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING,
    )
    payout_date = models.DateTimeField(null=True, blank=True)
    payout_transfer_id = models.CharField(max_length=255, blank=True, default="")

    refund_status = models.CharField(
        max_length=16,
        choices=RefundStatus.choices,
        default=RefundStatus.NONE,
    )
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    refund_date = models.DateTimeField(null=True, blank=True)
    refund_id = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking", "status"], name="payments_booking_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.gateway_payment_id} {self.amount} {self.currency} ({self.status})"
