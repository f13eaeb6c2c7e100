"""Money movements after a state change: owner payouts and renter refunds."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings
from django.utils import timezone

from payments import stripe_api
from payments.models import Payment
from payments.stripe_api import (
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
)

from . import notify
from .models import Booking

logger = logging.getLogger(__name__)

GATEWAY_ERRORS = (StripeConfigurationError, StripePaymentError, StripeTransientError)


@dataclass(frozen=True)
class PayoutOutcome:
    transfer_id: str | None
    error: str | None
    attempted: bool = True


@dataclass(frozen=True)
class RefundOutcome:
    refund_id: str | None
    error: str | None
    attempted: bool = True


def release_owner_payout(booking: Booking, *, destination: str | None = None) -> PayoutOutcome:
    """
    Transfer ``owner_amount`` to the owner once per booking.

    The payout is claimed by moving ``payout_status`` from pending/failed to
    processing; a caller that loses the claim does nothing. Gateway errors
    leave the booking in ``failed`` and are returned, not raised.
    """
    now = timezone.now()
    claimed = Booking.objects.filter(
        pk=booking.pk,
        payout_status__in=[Booking.PayoutStatus.PENDING, Booking.PayoutStatus.FAILED],
    ).update(payout_status=Booking.PayoutStatus.PROCESSING, updated_at=now)
    if not claimed:
        logger.info("bookings: payout already claimed", extra={"booking_id": booking.pk})
        booking.refresh_from_db()
        return PayoutOutcome(transfer_id=booking.payout_transfer_id or None, error=None, attempted=False)

    destination = (destination or booking.owner.stripe_account_id or "").strip()
    try:
        transfer_id = stripe_api.create_owner_transfer(
            booking_id=booking.pk,
            destination=destination,
            amount=booking.owner_amount,
            currency=settings.PAYMENT_CURRENCY,
        )
    except GATEWAY_ERRORS as exc:
        error = str(exc) or exc.__class__.__name__
        logger.warning(
            "bookings: owner payout failed",
            extra={"booking_id": booking.pk, "error": error},
        )
        Booking.objects.filter(pk=booking.pk).update(
            payout_status=Booking.PayoutStatus.FAILED,
            updated_at=timezone.now(),
        )
        Payment.objects.filter(booking=booking, status=Payment.Status.SUCCESSFUL).update(
            payout_status=Payment.PayoutStatus.FAILED,
        )
        booking.refresh_from_db()
        notify.payout_update(booking, error=error)
        return PayoutOutcome(transfer_id=None, error=error)

    paid_at = timezone.now()
    Booking.objects.filter(pk=booking.pk).update(
        payout_status=Booking.PayoutStatus.COMPLETED,
        payout_date=paid_at,
        payout_transfer_id=transfer_id,
        updated_at=paid_at,
    )
    Payment.objects.filter(booking=booking, status=Payment.Status.SUCCESSFUL).update(
        payout_status=Payment.PayoutStatus.COMPLETED,
        payout_date=paid_at,
        payout_transfer_id=transfer_id,
    )
    booking.refresh_from_db()
    logger.info(
        "bookings: owner payout sent",
        extra={"booking_id": booking.pk, "transfer_id": transfer_id},
    )
    notify.payout_update(booking)
    return PayoutOutcome(transfer_id=transfer_id, error=None)


def refund_charge(booking: Booking, payment: Payment) -> RefundOutcome:
    """
    Refund one charge in full. The refund is claimed on ``refund_status`` so
    a charge is never refunded twice; the booking itself is not touched.
    """
    claimed = Payment.objects.filter(
        pk=payment.pk,
        refund_status__in=[Payment.RefundStatus.NONE, Payment.RefundStatus.FAILED],
    ).update(refund_status=Payment.RefundStatus.REQUESTED)
    if not claimed:
        payment.refresh_from_db()
        return RefundOutcome(refund_id=payment.refund_id or None, error=None, attempted=False)

    try:
        refund_id = stripe_api.refund_payment(
            booking_id=booking.pk,
            payment_intent_id=payment.gateway_payment_id,
            amount=payment.amount,
        )
    except GATEWAY_ERRORS as exc:
        error = str(exc) or exc.__class__.__name__
        logger.warning(
            "bookings: refund failed",
            extra={
                "booking_id": booking.pk,
                "payment_intent_id": payment.gateway_payment_id,
                "error": error,
            },
        )
        Payment.objects.filter(pk=payment.pk).update(refund_status=Payment.RefundStatus.FAILED)
        return RefundOutcome(refund_id=None, error=error)

    Payment.objects.filter(pk=payment.pk).update(
        status=Payment.Status.REFUNDED,
        refund_status=Payment.RefundStatus.PROCESSED,
        refund_amount=payment.amount,
        refund_date=timezone.now(),
        refund_id=refund_id,
    )
    payment.refresh_from_db()
    logger.info(
        "bookings: charge refunded",
        extra={
            "booking_id": booking.pk,
            "payment_intent_id": payment.gateway_payment_id,
            "refund_id": refund_id,
        },
    )
    return RefundOutcome(refund_id=refund_id, error=None)


def refund_renter(booking: Booking) -> RefundOutcome:
    """Refund the booking total against its successful charge."""
    payment = (
        Payment.objects.filter(booking=booking, status=Payment.Status.SUCCESSFUL)
        .order_by("-paid_at")
        .first()
    )
    if payment is None:
        logger.warning("bookings: no successful payment to refund", extra={"booking_id": booking.pk})
        return RefundOutcome(refund_id=None, error="No successful payment found for this booking.")

    outcome = refund_charge(booking, payment)
    if outcome.attempted and outcome.error is None:
        Booking.objects.filter(pk=booking.pk).update(
            payment_status=Booking.PaymentStatus.REFUNDED,
            updated_at=timezone.now(),
        )
        booking.refresh_from_db()
        logger.info(
            "bookings: renter refunded",
            extra={"booking_id": booking.pk, "refund_id": outcome.refund_id},
        )
    return outcome
