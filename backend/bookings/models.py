"""Database models for rental bookings and handover codes."""

from __future__ import annotations

import hashlib
import secrets

from django.conf import settings
from django.db import models
from django.utils import timezone

from listings.models import Listing


class Booking(models.Model):
    """A renter's reservation of a listing for a period of time."""

    class Status(models.TextChoices):
        REQUESTED = "requested", "requested"
        ACCEPTED = "accepted", "accepted"
        REJECTED = "rejected", "rejected"
        PENDING_PAYMENT = "pending_payment", "pending payment"
        CONFIRMED = "confirmed", "confirmed"
        IN_RENTAL = "in_rental", "in rental"
        CANCELLED = "cancelled", "cancelled"
        COMPLETED = "completed", "completed"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", "unpaid"
        PENDING = "pending", "pending"
        PAID = "paid", "paid"
        REFUNDED = "refunded", "refunded"
        FAILED = "failed", "failed"

    class PickupStatus(models.TextChoices):
        PENDING = "pending", "pending"
        SCHEDULED = "scheduled", "scheduled"
        COMPLETED = "completed", "completed"

    class DeliveryStatus(models.TextChoices):
        PENDING = "pending", "pending"
        OUT_FOR_DELIVERY = "out_for_delivery", "out for delivery"
        DELIVERED = "delivered", "delivered"

    class ReturnStatus(models.TextChoices):
        PENDING = "pending", "pending"
        SCHEDULED = "scheduled", "scheduled"
        COMPLETED = "completed", "completed"
        LATE = "late", "late"

    class PayoutStatus(models.TextChoices):
        PENDING = "pending", "pending"
        PROCESSING = "processing", "processing"
        COMPLETED = "completed", "completed"
        FAILED = "failed", "failed"

    listing = models.ForeignKey(
        Listing,
        related_name="bookings",
        on_delete=models.CASCADE,
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_owner",
        on_delete=models.CASCADE,
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_renter",
        on_delete=models.CASCADE,
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(help_text="Agreed return deadline, must be after start_date.")

    total_price = models.DecimalField(max_digits=10, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    owner_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    late_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    status = models.CharField(
        max_length=24,
        choices=Status.choices,
        default=Status.REQUESTED,
    )
    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )
    pickup_status = models.CharField(
        max_length=16,
        choices=PickupStatus.choices,
        default=PickupStatus.PENDING,
    )
    delivery_status = models.CharField(
        max_length=24,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
    )
    return_status = models.CharField(
        max_length=16,
        choices=ReturnStatus.choices,
        default=ReturnStatus.PENDING,
    )
    payout_status = models.CharField(
        max_length=16,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING,
    )

    pickup_date = models.DateTimeField(null=True, blank=True)
    delivery_date = models.DateTimeField(null=True, blank=True)
    return_date = models.DateTimeField(null=True, blank=True)
    payout_date = models.DateTimeField(null=True, blank=True)
    payout_transfer_id = models.CharField(max_length=255, blank=True, default="")

    drop_location = models.CharField(max_length=255, blank=True, default="")
    cancel_reason = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")

    reminder_sent = models.BooleanField(default=False)
    deadline_sent = models.BooleanField(default=False)
    warning_sent = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["listing", "start_date", "end_date"],
                name="bookings_bo_listing_4b1d2e_idx",
            ),
            models.Index(fields=["renter", "status"], name="bookings_bo_renter__9c3f0a_idx"),
            models.Index(fields=["owner", "status"], name="bookings_bo_owner_i_7e21b5_idx"),
            models.Index(fields=["status", "end_date"], name="bookings_bo_status_5d8a41_idx"),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking #{self.pk} for {self.listing_id} ({self.status})"

    def party_of(self, user) -> str | None:
        """Return "owner" or "renter" for a participant, None otherwise."""
        user_id = getattr(user, "pk", None)
        if user_id is None:
            return None
        if user_id == self.owner_id:
            return HandoverCode.Party.OWNER
        if user_id == self.renter_id:
            return HandoverCode.Party.RENTER
        return None


class HandoverCode(models.Model):
    """
    One-time code both parties confirm at pickup (delivery) or return.

    Only a SHA512 hash of the code is stored; the plaintext goes to the
    recipient by email. There is at most one row per (booking, kind);
    re-issuing overwrites it in place.
    """

    class Kind(models.TextChoices):
        DELIVERY = "delivery", "delivery"
        RETURN = "return", "return"

    class Party(models.TextChoices):
        OWNER = "owner", "owner"
        RENTER = "renter", "renter"

    CODE_DIGITS = 6

    booking = models.ForeignKey(
        Booking,
        related_name="handover_codes",
        on_delete=models.CASCADE,
    )
    kind = models.CharField(max_length=16, choices=Kind.choices)
    code_hash = models.CharField(max_length=128)
    issued_to = models.CharField(max_length=8, choices=Party.choices)
    issued_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="issued_handover_codes",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    expires_at = models.DateTimeField()
    owner_verified = models.BooleanField(default=False)
    renter_verified = models.BooleanField(default=False)
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=5)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)
        constraints = [
            models.UniqueConstraint(
                fields=("booking", "kind"),
                name="handover_code_booking_kind_uniq",
            ),
        ]
        indexes = [
            models.Index(fields=("expires_at",), name="handover_code_expires_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.kind} code for booking {self.booking_id}"

    @classmethod
    def generate_code(cls) -> str:
        """Return a zero-padded numeric code."""
        return f"{secrets.randbelow(10**cls.CODE_DIGITS):0{cls.CODE_DIGITS}d}"

    @staticmethod
    def _hash_code(raw_code: str) -> str:
        return hashlib.sha512(raw_code.encode("utf-8")).hexdigest()

    def set_code(self, raw_code: str) -> None:
        """Hash a fresh code and reset both confirmations and the attempt counter."""
        self.code_hash = self._hash_code(raw_code)
        self.attempts = 0
        self.owner_verified = False
        self.renter_verified = False
        self.completed_at = None

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at

    def can_attempt(self, now=None) -> bool:
        if self.completed_at is not None:
            return False
        if self.attempts >= self.max_attempts:
            return False
        return not self.is_expired(now)

    def check_code(self, raw_code: str) -> bool:
        """
        Constant-time comparison of a submitted code.

        A mismatch counts against ``max_attempts``; a match does not, so the
        second party can still confirm the same code. Callers save the row.
        """
        matches = secrets.compare_digest(self._hash_code(raw_code), self.code_hash)
        if not matches:
            self.attempts += 1
        return matches

    def flag_for(self, party: str) -> str:
        return "owner_verified" if party == self.Party.OWNER else "renter_verified"

    @property
    def both_verified(self) -> bool:
        return self.owner_verified and self.renter_verified
