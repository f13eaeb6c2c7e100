"""
Dual-party handover verification for pickup (delivery) and return.

One party asks for a code, it is emailed to the chosen recipient, and both
owner and renter must confirm it. The confirmation that completes the pair
claims the handover with a conditional update, so the completion side
effects (status change, payout or late-fee settlement, documents,
notifications) run exactly once per booking and kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from core.side_effects import best_effort
from documents import services as document_services
from notifications import tasks as notification_tasks

from . import notify
from .domain import (
    InvalidBookingState,
    InvalidHandoverCode,
    assert_can_issue_code,
    assert_can_verify_code,
    compute_fee_split,
    party_of,
    return_late_fee,
)
from .models import Booking, HandoverCode
from .selectors import get_booking
from .settlement import PayoutOutcome, release_owner_payout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodeIssueResult:
    code_id: int
    kind: str
    recipient: str
    expires_at: datetime


@dataclass(frozen=True)
class VerificationResult:
    owner_verified: bool
    renter_verified: bool
    completed: bool
    booking: Booking
    payout: PayoutOutcome | None = None


def _validate_kind(kind: str) -> str:
    if kind not in HandoverCode.Kind.values:
        raise ValidationError({"kind": [f"Unknown handover kind '{kind}'."]})
    return kind


def _validate_party(value: str | None, field: str) -> str:
    if value not in HandoverCode.Party.values:
        raise ValidationError({field: ["Must be 'owner' or 'renter'."]})
    return value


def issue_code(booking_id, kind: str, *, actor, recipient: str) -> CodeIssueResult:
    """Generate a fresh code for the handover and email it to ``recipient``."""
    kind = _validate_kind(kind)
    recipient = _validate_party(recipient, "user_type")
    booking = get_booking(booking_id)
    party_of(booking, actor)
    assert_can_issue_code(booking, kind)

    raw_code = HandoverCode.generate_code()
    now = timezone.now()
    expires_at = now + timedelta(minutes=settings.HANDOVER_CODE_TTL_MINUTES)

    with transaction.atomic():
        code, _ = HandoverCode.objects.select_for_update().get_or_create(
            booking=booking,
            kind=kind,
            defaults={"expires_at": expires_at, "issued_to": recipient},
        )
        code.set_code(raw_code)
        code.expires_at = expires_at
        code.issued_to = recipient
        code.issued_by = actor
        code.max_attempts = settings.HANDOVER_CODE_MAX_ATTEMPTS
        code.save()

        if kind == HandoverCode.Kind.DELIVERY:
            Booking.objects.filter(
                pk=booking.pk, pickup_status=Booking.PickupStatus.PENDING
            ).update(pickup_status=Booking.PickupStatus.SCHEDULED, updated_at=now)
        else:
            Booking.objects.filter(
                pk=booking.pk, return_status=Booking.ReturnStatus.PENDING
            ).update(return_status=Booking.ReturnStatus.SCHEDULED, updated_at=now)

    recipient_user = booking.owner if recipient == HandoverCode.Party.OWNER else booking.renter
    best_effort(
        "notifications: queue handover code email",
        notification_tasks.send_handover_code_email.delay,
        recipient_user.pk,
        booking.pk,
        kind,
        raw_code,
        expires_at.isoformat(),
        booking_id=booking.pk,
    )
    notify.code_issued(booking, kind, recipient, actor)
    logger.info(
        "bookings: %s code issued",
        kind,
        extra={"booking_id": booking.pk, "recipient": recipient},
    )
    return CodeIssueResult(code_id=code.pk, kind=kind, recipient=recipient, expires_at=expires_at)


def verify_code(
    booking_id,
    kind: str,
    *,
    actor,
    code: str,
    party: str | None = None,
    drop_location: str = "",
) -> VerificationResult:
    """
    Record the acting party's confirmation of the handover code.

    ``party`` is the role the client claims to act as; it must match the
    actor's role in the booking. A wrong code only counts an attempt.
    """
    kind = _validate_kind(kind)
    code = (code or "").strip()
    if not code:
        raise ValidationError({"otp": ["Code is required."]})
    booking = get_booking(booking_id)
    actor_party = party_of(booking, actor)
    if party is not None and _validate_party(party, "user_type") != actor_party:
        raise ValidationError({"user_type": [f"You are the {actor_party} of this booking."]})
    assert_can_verify_code(booking, kind)

    now = timezone.now()
    rejection: str | None = None
    newly_verified = False
    claimed = False
    with transaction.atomic():
        row = (
            HandoverCode.objects.select_for_update()
            .filter(booking=booking, kind=kind)
            .first()
        )
        if row is None:
            rejection = "No active code for this booking; request a new one."
        elif not row.can_attempt(now):
            if row.completed_at is not None:
                rejection = "This handover has already been completed."
            elif row.is_expired(now):
                rejection = "This code has expired; request a new one."
            else:
                rejection = "Too many incorrect attempts; request a new code."
        elif not row.check_code(code):
            row.save(update_fields=["attempts", "updated_at"])
            rejection = "Incorrect code."
        else:
            flag = row.flag_for(actor_party)
            if not getattr(row, flag):
                setattr(row, flag, True)
                newly_verified = True
                row.save(update_fields=[flag, "updated_at"])
            if row.both_verified:
                claimed = bool(
                    HandoverCode.objects.filter(pk=row.pk, completed_at__isnull=True).update(
                        completed_at=now
                    )
                )

    if rejection:
        logger.info(
            "bookings: %s code rejected",
            kind,
            extra={"booking_id": booking.pk, "party": actor_party, "reason": rejection},
        )
        raise InvalidHandoverCode(rejection)

    payout = None
    completed = False
    if claimed:
        try:
            if kind == HandoverCode.Kind.DELIVERY:
                booking, payout = complete_delivery(booking)
            else:
                booking = finalize_return(booking, drop_location=drop_location)
            completed = True
        except InvalidBookingState:
            # Another path (legacy pickup/complete) finished the booking first.
            logger.info(
                "bookings: %s completion lost to a concurrent transition",
                kind,
                extra={"booking_id": booking.pk},
            )
    elif newly_verified and not row.both_verified:
        notify.verification_pending(booking, kind, actor_party)

    booking.refresh_from_db()
    return VerificationResult(
        owner_verified=row.owner_verified,
        renter_verified=row.renter_verified,
        completed=completed,
        booking=booking,
        payout=payout,
    )


def complete_delivery(booking: Booking) -> tuple[Booking, PayoutOutcome]:
    """Mark the item handed over, start the rental and pay the owner."""
    now = timezone.now()
    platform_fee, owner_amount = compute_fee_split(booking.total_price)
    updated = (
        Booking.objects.filter(
            pk=booking.pk,
            status__in=[Booking.Status.CONFIRMED, Booking.Status.IN_RENTAL],
        )
        .exclude(delivery_status=Booking.DeliveryStatus.DELIVERED)
        .update(
            status=Booking.Status.IN_RENTAL,
            delivery_status=Booking.DeliveryStatus.DELIVERED,
            delivery_date=now,
            pickup_status=Booking.PickupStatus.COMPLETED,
            pickup_date=now,
            platform_fee=platform_fee,
            owner_amount=owner_amount,
            updated_at=now,
        )
    )
    if not updated:
        raise InvalidBookingState("Pickup can no longer be completed for this booking.")
    booking.refresh_from_db()
    logger.info("bookings: pickup completed", extra={"booking_id": booking.pk})

    payout = release_owner_payout(booking)
    booking.refresh_from_db()
    notify.pickup_completed(booking)
    return booking, payout


def finalize_return(booking: Booking, *, drop_location: str = "") -> Booking:
    """
    Close an active rental: settle the late fee, mark it completed, and
    generate the return receipt. Shared by the return handover and the
    owner's direct completion.
    """
    now = timezone.now()
    is_late = now > booking.end_date
    changes = {
        "status": Booking.Status.COMPLETED,
        "return_status": Booking.ReturnStatus.LATE if is_late else Booking.ReturnStatus.COMPLETED,
        "return_date": now,
        "updated_at": now,
    }
    if drop_location:
        changes["drop_location"] = drop_location
    updated = Booking.objects.filter(pk=booking.pk, status=Booking.Status.IN_RENTAL).update(
        **changes
    )
    if not updated:
        raise InvalidBookingState("Only active rentals can be returned.")

    if is_late:
        fee = return_late_fee(booking.total_price, booking.end_date, now)
        # Never lower a fee the overdue monitor already charged.
        Booking.objects.filter(pk=booking.pk, late_fee__lt=fee).update(late_fee=fee)

    booking.refresh_from_db()
    logger.info(
        "bookings: return completed",
        extra={"booking_id": booking.pk, "late": is_late, "late_fee": str(booking.late_fee)},
    )
    best_effort(
        "documents: return receipt",
        document_services.generate_return_receipt,
        booking,
        booking_id=booking.pk,
    )
    notify.return_completed(booking)
    return booking


def purge_expired_codes(now: datetime | None = None) -> int:
    now = now or timezone.now()
    deleted, _ = HandoverCode.objects.filter(
        expires_at__lt=now,
        completed_at__isnull=True,
    ).delete()
    return deleted
