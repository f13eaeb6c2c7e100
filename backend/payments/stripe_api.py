"""Stripe helpers for booking charges, owner payouts and refunds."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import stripe
from django.conf import settings

from core.money import to_cents

logger = logging.getLogger(__name__)
IDEMPOTENCY_VERSION = "v1"
AUTOMATIC_PAYMENT_METHODS_CONFIG = {"enabled": True, "allow_redirects": "never"}


class StripeConfigurationError(Exception):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(Exception):
    """Temporary Stripe/API issue that should be retried."""


class StripePaymentError(Exception):
    """Permanent payment failure for a booking charge, payout or refund."""


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise StripeConfigurationError("Stripe secret key not configured.")
    return api_key


def _env_label() -> str:
    return getattr(settings, "STRIPE_ENV", "dev") or "dev"


def _handle_stripe_error(exc: stripe.error.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    if isinstance(exc, stripe.error.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message) from exc
    if isinstance(
        exc,
        (
            stripe.error.RateLimitError,
            stripe.error.APIConnectionError,
            stripe.error.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.error.AuthenticationError, stripe.error.PermissionError)):
        raise StripeConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.error.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.") from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.") from exc


def stripe_value(obj: Any, field: str, default: Any = None) -> Any:
    """Safely fetch a field from a Stripe object or a plain dict payload."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(field, default)
    value = getattr(obj, field, None)
    if value is None and hasattr(obj, "get"):
        value = obj.get(field)
    return default if value is None else value


def create_charge_intent(
    *,
    booking_id: int,
    amount: Decimal,
    currency: str,
    attempt: int = 1,
) -> stripe.PaymentIntent:
    """Create the PaymentIntent the renter's client confirms to pay for a booking."""
    if amount <= Decimal("0"):
        raise StripePaymentError("Booking charge must be greater than zero.")
    amount_cents = to_cents(amount)

    stripe.api_key = _get_stripe_api_key()
    try:
        return stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=currency,
            automatic_payment_methods={**AUTOMATIC_PAYMENT_METHODS_CONFIG},
            capture_method="automatic",
            metadata={
                "kind": "booking_charge",
                "booking_id": str(booking_id),
                "env": _env_label(),
            },
            idempotency_key=(
                f"booking:{booking_id}:{IDEMPOTENCY_VERSION}:charge:{amount_cents}:{attempt}"
            ),
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)


def retrieve_payment_intent(intent_id: str) -> stripe.PaymentIntent:
    """Fetch a PaymentIntent so its status can be checked server-side."""
    if not intent_id:
        raise StripePaymentError("Payment intent id is required.")
    stripe.api_key = _get_stripe_api_key()
    try:
        return stripe.PaymentIntent.retrieve(intent_id)
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)


def create_owner_transfer(
    *,
    booking_id: int,
    destination: str,
    amount: Decimal,
    currency: str,
) -> str:
    """Transfer the owner's share of a booking to their Connect account; returns the transfer id."""
    if not destination:
        raise StripePaymentError("Owner has no payout account configured.")
    if amount <= Decimal("0"):
        raise StripePaymentError("Owner payout must be greater than zero.")

    stripe.api_key = _get_stripe_api_key()
    try:
        transfer = stripe.Transfer.create(
            amount=to_cents(amount),
            currency=currency,
            destination=destination,
            description=f"Owner payout for booking #{booking_id}",
            metadata={
                "kind": "owner_payout",
                "booking_id": str(booking_id),
                "env": _env_label(),
            },
            transfer_group=f"booking:{booking_id}:owner_payout_{IDEMPOTENCY_VERSION}",
            idempotency_key=f"booking:{booking_id}:owner_payout_{IDEMPOTENCY_VERSION}",
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)

    return stripe_value(transfer, "id", "")


def refund_payment(*, booking_id: int, payment_intent_id: str, amount: Decimal) -> str:
    """Refund a booking charge in full or in part; returns the refund id."""
    if not payment_intent_id:
        raise StripePaymentError("No charge to refund for this booking.")

    stripe.api_key = _get_stripe_api_key()
    try:
        refund = stripe.Refund.create(
            payment_intent=payment_intent_id,
            amount=to_cents(amount),
            metadata={"kind": "booking_refund", "booking_id": str(booking_id)},
            idempotency_key=f"booking:{booking_id}:refund:{payment_intent_id}_{IDEMPOTENCY_VERSION}",
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)

    return stripe_value(refund, "id", "")
