from __future__ import annotations

import json

import pytest
import stripe
from rest_framework.test import APIClient

from bookings.models import Booking
from payments.models import Payment

pytestmark = pytest.mark.django_db


def _event(booking: Booking, event_type: str, **intent_fields) -> dict:
    intent = {
        "id": "pi_hook_1",
        "amount": 100000,
        "amount_received": 100000,
        "latest_charge": "ch_hook_1",
        "metadata": {"kind": "booking_charge", "booking_id": str(booking.id), "env": "dev"},
    }
    intent.update(intent_fields)
    return {"type": event_type, "data": {"object": intent}}


def _post(event: dict):
    return APIClient().post(
        "/api/payments/stripe/webhook/",
        data=json.dumps(event),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="test_sig",
    )


def _accept_event(monkeypatch, event):
    monkeypatch.setattr(
        stripe.Webhook,
        "construct_event",
        lambda payload, sig_header, secret: event,
    )


def test_invalid_signature_is_rejected(monkeypatch):
    def bad_signature(payload, sig_header, secret):
        raise stripe.error.SignatureVerificationError("bad", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", bad_signature)

    assert _post({"type": "payment_intent.succeeded"}).status_code == 400


def test_succeeded_event_confirms_booking_once(booking_factory, monkeypatch):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    event = _event(booking, "payment_intent.succeeded")
    _accept_event(monkeypatch, event)

    assert _post(event).status_code == 200
    assert _post(event).status_code == 200

    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED
    assert booking.payment_status == Booking.PaymentStatus.PAID
    payment = Payment.objects.get(booking=booking)
    assert payment.status == Payment.Status.SUCCESSFUL
    assert payment.gateway_charge_id == "ch_hook_1"


def test_failed_event_marks_payment_failed(booking_factory, monkeypatch):
    booking = booking_factory(
        status=Booking.Status.PENDING_PAYMENT,
        payment_status=Booking.PaymentStatus.PENDING,
    )
    Payment.objects.create(
        booking=booking,
        renter=booking.renter,
        owner=booking.owner,
        gateway_payment_id="pi_hook_1",
        amount=booking.total_price,
    )
    event = _event(
        booking,
        "payment_intent.payment_failed",
        last_payment_error={"message": "Your card has insufficient funds."},
    )
    _accept_event(monkeypatch, event)

    assert _post(event).status_code == 200

    booking.refresh_from_db()
    payment = Payment.objects.get(gateway_payment_id="pi_hook_1")
    assert payment.status == Payment.Status.FAILED
    assert payment.failure_reason == "Your card has insufficient funds."
    assert booking.payment_status == Booking.PaymentStatus.FAILED
    assert booking.status == Booking.Status.PENDING_PAYMENT


def test_unrelated_events_are_acknowledged(booking_factory, monkeypatch):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    event = _event(booking, "charge.refunded")
    _accept_event(monkeypatch, event)

    assert _post(event).status_code == 200
    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING_PAYMENT
