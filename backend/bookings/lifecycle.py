"""
Booking lifecycle: request, accept/reject, payment, pickup, cancel, complete.

Every transition is a conditional update on the booking's current status;
a stale or duplicate request raises InvalidBookingState and changes nothing.
Side effects (documents, notifications) run after the transition and are
best-effort. Payout and refund failures are recorded and returned in the
operation's result instead of being raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from core.money import from_cents, quantize_money
from core.side_effects import best_effort
from documents import services as document_services
from documents.models import Invoice
from listings.models import Listing
from payments import stripe_api
from payments.models import Payment

from . import notify
from .domain import (
    CANCELLABLE_STATUSES,
    BookingNotFound,
    InvalidBookingState,
    PaymentNotCompleted,
    assert_is_owner,
    assert_is_renter,
    assert_status,
    compute_fee_split,
    party_of,
    validate_booking_dates,
    validate_total_price,
)
from .handover import finalize_return
from .models import Booking
from .selectors import get_booking
from .settlement import refund_charge, refund_renter, release_owner_payout

logger = logging.getLogger(__name__)

DEFAULT_REJECT_REASON = "Rejected by owner"

# A charge that succeeds after the booking reached one of these is refunded.
CLOSED_BEFORE_PAYMENT = (Booking.Status.CANCELLED, Booking.Status.REJECTED)


@dataclass(frozen=True)
class AcceptResult:
    booking: Booking
    invoice: Invoice | None


@dataclass(frozen=True)
class PaymentStartResult:
    booking: Booking
    payment: Payment
    client_secret: str


@dataclass(frozen=True)
class PaymentConfirmation:
    booking: Booking
    payment: Payment
    invoice: Invoice | None
    already_processed: bool


@dataclass(frozen=True)
class PickupResult:
    booking: Booking
    transfer_id: str | None
    payout_error: str | None


@dataclass(frozen=True)
class CancelResult:
    booking: Booking
    refund_id: str | None
    refund_error: str | None


def _transition(booking: Booking, expected: Iterable[str], action: str, **changes: Any) -> Booking:
    """Apply ``changes`` only if the booking is still in one of ``expected`` statuses."""
    changes.setdefault("updated_at", timezone.now())
    updated = Booking.objects.filter(pk=booking.pk, status__in=list(expected)).update(**changes)
    if not updated:
        booking.refresh_from_db(fields=["status"])
        raise InvalidBookingState(f"Cannot {action} a booking in status '{booking.status}'.")
    booking.refresh_from_db()
    return booking


def create_rental_request(
    *,
    renter,
    listing: Listing,
    start_date: datetime,
    end_date: datetime,
    total_price: Decimal,
    notes: str = "",
) -> Booking:
    """Create a booking in ``requested`` with the platform fee split applied."""
    validate_booking_dates(start_date, end_date)
    validate_total_price(total_price)
    if not listing.is_active:
        raise ValidationError({"listing": ["This listing is not available for rent."]})
    if listing.owner_id == renter.pk:
        raise ValidationError({"listing": ["You cannot rent your own listing."]})

    total = quantize_money(Decimal(total_price))
    platform_fee, owner_amount = compute_fee_split(total)
    booking = Booking.objects.create(
        listing=listing,
        owner=listing.owner,
        renter=renter,
        start_date=start_date,
        end_date=end_date,
        total_price=total,
        platform_fee=platform_fee,
        owner_amount=owner_amount,
        notes=notes or "",
    )
    logger.info("bookings: rental requested", extra={"booking_id": booking.pk})
    notify.rental_requested(booking)
    return booking


def accept_booking(booking_id, *, actor) -> AcceptResult:
    booking = get_booking(booking_id)
    assert_is_owner(booking, actor)
    assert_status(booking, (Booking.Status.REQUESTED,), "accept")
    booking = _transition(
        booking,
        (Booking.Status.REQUESTED,),
        "accept",
        status=Booking.Status.PENDING_PAYMENT,
    )
    logger.info("bookings: accepted", extra={"booking_id": booking.pk})

    invoice = best_effort(
        "documents: invoice",
        document_services.issue_invoice,
        booking,
        booking_id=booking.pk,
    )
    best_effort(
        "documents: rental agreement",
        document_services.generate_rental_agreement,
        booking,
        booking_id=booking.pk,
    )
    notify.rental_accepted(booking, invoice)
    return AcceptResult(booking=booking, invoice=invoice)


def reject_booking(booking_id, *, actor, reason: str = "") -> Booking:
    booking = get_booking(booking_id)
    assert_is_owner(booking, actor)
    assert_status(booking, (Booking.Status.REQUESTED,), "reject")
    booking = _transition(
        booking,
        (Booking.Status.REQUESTED,),
        "reject",
        status=Booking.Status.REJECTED,
        cancel_reason=(reason or "").strip() or DEFAULT_REJECT_REASON,
    )
    logger.info("bookings: rejected", extra={"booking_id": booking.pk})
    notify.rental_rejected(booking)
    return booking


def start_payment(booking_id, *, actor) -> PaymentStartResult:
    """Create (or reuse) the charge the renter's client confirms with Stripe."""
    booking = get_booking(booking_id)
    assert_is_renter(booking, actor)
    assert_status(booking, (Booking.Status.PENDING_PAYMENT,), "pay for")
    if booking.payments.filter(status=Payment.Status.SUCCESSFUL).exists():
        raise InvalidBookingState("This booking has already been paid.")

    pending = booking.payments.filter(status=Payment.Status.INITIATED).order_by("-created_at").first()
    if pending is not None and pending.amount == booking.total_price:
        return PaymentStartResult(booking=booking, payment=pending, client_secret=pending.client_secret)

    attempt = booking.payments.count() + 1
    intent = stripe_api.create_charge_intent(
        booking_id=booking.pk,
        amount=booking.total_price,
        currency=settings.PAYMENT_CURRENCY,
        attempt=attempt,
    )
    intent_id = stripe_api.stripe_value(intent, "id", "")
    client_secret = stripe_api.stripe_value(intent, "client_secret", "")
    payment, _ = Payment.objects.get_or_create(
        gateway_payment_id=intent_id,
        defaults={
            "booking": booking,
            "renter": booking.renter,
            "owner": booking.owner,
            "client_secret": client_secret,
            "amount": booking.total_price,
            "currency": settings.PAYMENT_CURRENCY,
            "platform_fee": booking.platform_fee,
            "owner_amount": booking.owner_amount,
        },
    )
    Booking.objects.filter(pk=booking.pk, status=Booking.Status.PENDING_PAYMENT).update(
        payment_status=Booking.PaymentStatus.PENDING,
        updated_at=timezone.now(),
    )
    booking.refresh_from_db()
    logger.info(
        "bookings: payment started",
        extra={"booking_id": booking.pk, "payment_intent_id": intent_id},
    )
    return PaymentStartResult(booking=booking, payment=payment, client_secret=client_secret)


def _record_successful_payment(
    booking: Booking,
    *,
    intent_id: str,
    charge_id: str = "",
    amount: Decimal | None = None,
) -> tuple[Payment, bool]:
    """
    Mark the charge successful and confirm the booking, once per intent.

    Returns (payment, newly_recorded). Concurrent confirmations of the same
    intent race on a conditional update of the Payment row; only the winner
    moves the booking and sends notifications.

    A booking keeps at most one successful charge. A second intent that
    succeeds for an already paid booking is refunded, and the payment that
    already settled the booking is returned.
    """
    now = timezone.now()
    duplicate = None
    with transaction.atomic():
        # Serialises success events for the same booking.
        Booking.objects.select_for_update().filter(pk=booking.pk).first()
        payment, _ = Payment.objects.get_or_create(
            gateway_payment_id=intent_id,
            defaults={
                "booking": booking,
                "renter": booking.renter,
                "owner": booking.owner,
                "amount": amount if amount is not None else booking.total_price,
                "currency": settings.PAYMENT_CURRENCY,
                "platform_fee": booking.platform_fee,
                "owner_amount": booking.owner_amount,
            },
        )
        unsettled = payment.status not in (Payment.Status.SUCCESSFUL, Payment.Status.REFUNDED)
        if unsettled:
            duplicate = (
                Payment.objects.select_for_update()
                .filter(booking=booking, status=Payment.Status.SUCCESSFUL)
                .exclude(pk=payment.pk)
                .first()
            )
        if duplicate is not None:
            claimed = 0
            Payment.objects.filter(pk=payment.pk).update(
                gateway_charge_id=charge_id or payment.gateway_charge_id,
                paid_at=now,
                failure_reason="Duplicate charge for an already paid booking.",
                updated_at=now,
            )
        else:
            claimed = (
                Payment.objects.filter(pk=payment.pk)
                .exclude(status__in=[Payment.Status.SUCCESSFUL, Payment.Status.REFUNDED])
                .update(
                    status=Payment.Status.SUCCESSFUL,
                    gateway_charge_id=charge_id or payment.gateway_charge_id,
                    paid_at=now,
                    failure_reason="",
                    updated_at=now,
                )
            )
    payment.refresh_from_db()
    if duplicate is not None:
        logger.warning(
            "bookings: duplicate charge for a paid booking; refunding",
            extra={
                "booking_id": booking.pk,
                "payment_intent_id": intent_id,
                "settled_by": duplicate.gateway_payment_id,
            },
        )
        refund_charge(booking, payment)
        return duplicate, False
    if not claimed:
        return payment, False

    moved = Booking.objects.filter(pk=booking.pk, status=Booking.Status.PENDING_PAYMENT).update(
        status=Booking.Status.CONFIRMED,
        payment_status=Booking.PaymentStatus.PAID,
        updated_at=now,
    )
    booking.refresh_from_db()
    if not moved and booking.status in CLOSED_BEFORE_PAYMENT:
        # The charge landed after the booking was cancelled or rejected.
        Booking.objects.filter(pk=booking.pk).update(
            payment_status=Booking.PaymentStatus.PAID,
            updated_at=now,
        )
        logger.warning(
            "bookings: payment succeeded for a closed booking; refunding",
            extra={"booking_id": booking.pk, "status": booking.status, "payment_intent_id": intent_id},
        )
        refund_renter(booking)
        payment.refresh_from_db()
        return payment, True
    if not moved:
        logger.warning(
            "bookings: payment succeeded for a booking no longer awaiting payment",
            extra={"booking_id": booking.pk, "status": booking.status, "payment_intent_id": intent_id},
        )
        return payment, True

    logger.info("bookings: payment confirmed", extra={"booking_id": booking.pk})
    best_effort(
        "documents: mark invoice paid",
        document_services.mark_invoice_paid,
        booking,
        booking_id=booking.pk,
    )
    notify.payment_confirmed(booking, payment)
    return payment, True


def _current_invoice(booking: Booking) -> Invoice | None:
    return Invoice.objects.filter(booking=booking).first()


def confirm_payment(booking_id, payment_intent_id: str, *, actor=None) -> PaymentConfirmation:
    """
    Confirm a renter's payment after the client-side Stripe flow.

    Idempotent on the PaymentIntent id: repeating the call returns the
    recorded payment with ``already_processed=True`` and no side effects.
    """
    payment_intent_id = (payment_intent_id or "").strip()
    if not payment_intent_id:
        raise ValidationError({"payment_intent_id": ["This field is required."]})
    booking = get_booking(booking_id)
    if actor is not None:
        assert_is_renter(booking, actor)

    existing = Payment.objects.filter(
        gateway_payment_id=payment_intent_id,
        status__in=[Payment.Status.SUCCESSFUL, Payment.Status.REFUNDED],
    ).first()
    if existing is not None:
        if existing.booking_id != booking.pk:
            raise ValidationError({"payment_intent_id": ["Payment belongs to another booking."]})
        return PaymentConfirmation(
            booking=booking,
            payment=existing,
            invoice=_current_invoice(booking),
            already_processed=True,
        )

    if booking.payments.filter(status=Payment.Status.SUCCESSFUL).exists():
        raise InvalidBookingState("This booking has already been paid.")
    assert_status(booking, (Booking.Status.PENDING_PAYMENT,), "confirm payment for")

    intent = stripe_api.retrieve_payment_intent(payment_intent_id)
    metadata = stripe_api.stripe_value(intent, "metadata", {}) or {}
    intent_booking_id = stripe_api.stripe_value(metadata, "booking_id")
    if intent_booking_id and str(intent_booking_id) != str(booking.pk):
        raise ValidationError({"payment_intent_id": ["Payment belongs to another booking."]})
    if stripe_api.stripe_value(intent, "status") != "succeeded":
        raise PaymentNotCompleted("Payment has not completed yet.")

    payment, newly_recorded = _record_successful_payment(
        booking,
        intent_id=payment_intent_id,
        charge_id=stripe_api.stripe_value(intent, "latest_charge", "") or "",
        amount=from_cents(stripe_api.stripe_value(intent, "amount_received")) or None,
    )
    booking.refresh_from_db()
    return PaymentConfirmation(
        booking=booking,
        payment=payment,
        invoice=_current_invoice(booking),
        already_processed=not newly_recorded,
    )


def handle_payment_succeeded(intent: dict) -> Payment | None:
    """Webhook path for ``payment_intent.succeeded``; safe to receive repeatedly."""
    metadata = intent.get("metadata") or {}
    if metadata.get("kind") != "booking_charge":
        return None
    intent_id = intent.get("id", "")
    try:
        booking = get_booking(metadata.get("booking_id"))
    except BookingNotFound:
        logger.warning(
            "bookings: webhook for unknown booking",
            extra={"payment_intent_id": intent_id, "booking_id": metadata.get("booking_id")},
        )
        return None
    payment, _ = _record_successful_payment(
        booking,
        intent_id=intent_id,
        charge_id=intent.get("latest_charge") or "",
        amount=from_cents(intent.get("amount_received") or intent.get("amount")) or None,
    )
    return payment


def handle_payment_failed(intent: dict) -> Payment | None:
    """Webhook path for ``payment_intent.payment_failed``; the booking stays awaiting payment."""
    metadata = intent.get("metadata") or {}
    if metadata.get("kind") != "booking_charge":
        return None
    intent_id = intent.get("id", "")
    error = intent.get("last_payment_error") or {}
    reason = error.get("message", "") if isinstance(error, dict) else str(error)
    Payment.objects.filter(gateway_payment_id=intent_id, status=Payment.Status.INITIATED).update(
        status=Payment.Status.FAILED,
        failure_reason=reason,
        updated_at=timezone.now(),
    )
    Booking.objects.filter(
        pk=metadata.get("booking_id"),
        status=Booking.Status.PENDING_PAYMENT,
        payment_status__in=[Booking.PaymentStatus.UNPAID, Booking.PaymentStatus.PENDING],
    ).update(payment_status=Booking.PaymentStatus.FAILED, updated_at=timezone.now())
    logger.info(
        "bookings: payment failed",
        extra={"booking_id": metadata.get("booking_id"), "payment_intent_id": intent_id},
    )
    return Payment.objects.filter(gateway_payment_id=intent_id).first()


def confirm_pickup(booking_id, *, actor, payout_destination: str = "") -> PickupResult:
    """Single-step pickup confirmation by the owner, kept for older clients."""
    payout_destination = (payout_destination or "").strip()
    if not payout_destination:
        raise ValidationError({"payout_destination": ["A payout account is required."]})
    booking = get_booking(booking_id)
    assert_is_owner(booking, actor)
    assert_status(booking, (Booking.Status.CONFIRMED,), "confirm pickup for")
    now = timezone.now()
    booking = _transition(
        booking,
        (Booking.Status.CONFIRMED,),
        "confirm pickup for",
        status=Booking.Status.IN_RENTAL,
        pickup_status=Booking.PickupStatus.COMPLETED,
        pickup_date=now,
        updated_at=now,
    )
    logger.info("bookings: pickup confirmed by owner", extra={"booking_id": booking.pk})
    outcome = release_owner_payout(booking, destination=payout_destination)
    booking.refresh_from_db()
    notify.pickup_completed(booking)
    return PickupResult(booking=booking, transfer_id=outcome.transfer_id, payout_error=outcome.error)


def cancel_booking(booking_id, *, actor, reason: str = "") -> CancelResult:
    """Cancel as either participant; a paid booking is refunded in full."""
    booking = get_booking(booking_id)
    party = party_of(booking, actor)
    assert_status(booking, CANCELLABLE_STATUSES, "cancel")
    booking = _transition(
        booking,
        CANCELLABLE_STATUSES,
        "cancel",
        status=Booking.Status.CANCELLED,
        cancel_reason=(reason or "").strip() or f"Cancelled by {party}",
    )
    logger.info("bookings: cancelled", extra={"booking_id": booking.pk, "party": party})

    refund_id = refund_error = None
    if booking.payment_status == Booking.PaymentStatus.PAID:
        outcome = refund_renter(booking)
        refund_id, refund_error = outcome.refund_id, outcome.error
        booking.refresh_from_db()
    notify.booking_cancelled(booking, cancelled_by=actor)
    return CancelResult(booking=booking, refund_id=refund_id, refund_error=refund_error)


def complete_booking(booking_id, *, actor, drop_location: str = "") -> Booking:
    """Owner marks an active rental returned without the code exchange."""
    booking = get_booking(booking_id)
    assert_is_owner(booking, actor)
    assert_status(booking, (Booking.Status.IN_RENTAL,), "complete")
    return finalize_return(booking, drop_location=(drop_location or "").strip())
