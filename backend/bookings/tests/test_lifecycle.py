"""Tests for booking lifecycle transitions."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.core import mail
from django.core.exceptions import ValidationError
from django.utils import timezone

from bookings import lifecycle
from bookings.domain import BookingPermissionDenied, InvalidBookingState, PaymentNotCompleted
from bookings.models import Booking
from documents.models import Invoice, RentalDocument
from notifications.models import Notification
from payments.models import Payment
from payments.stripe_api import StripePaymentError

pytestmark = pytest.mark.django_db


@pytest.fixture
def fake_stripe(monkeypatch):
    """Stand-in for the charge and refund calls lifecycle makes."""
    state = {"created": [], "retrieved": [], "refunds": [], "intent_status": "succeeded"}

    def fake_create_charge_intent(**kwargs):
        state["created"].append(kwargs)
        intent_id = f"pi_test_{len(state['created'])}"
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def fake_retrieve(intent_id):
        state["retrieved"].append(intent_id)
        booking_id = state.get("booking_id")
        return {
            "id": intent_id,
            "status": state["intent_status"],
            "latest_charge": "ch_test_1",
            "amount_received": 100000,
            "metadata": {"kind": "booking_charge", "booking_id": str(booking_id)},
        }

    def fake_refund(**kwargs):
        state["refunds"].append(kwargs)
        return "re_test_1"

    monkeypatch.setattr("bookings.lifecycle.stripe_api.create_charge_intent", fake_create_charge_intent)
    monkeypatch.setattr("bookings.lifecycle.stripe_api.retrieve_payment_intent", fake_retrieve)
    monkeypatch.setattr("bookings.settlement.stripe_api.refund_payment", fake_refund)
    return state


def _notified(user, type_) -> bool:
    return Notification.objects.filter(user=user, type=type_).exists()


def test_rental_request_splits_fee_and_notifies_owner(renter_user, owner_user, listing):
    start = timezone.now() + timedelta(days=1)

    booking = lifecycle.create_rental_request(
        renter=renter_user,
        listing=listing,
        start_date=start,
        end_date=start + timedelta(days=3),
        total_price=Decimal("1000"),
    )

    assert booking.status == Booking.Status.REQUESTED
    assert booking.platform_fee == Decimal("100.00")
    assert booking.owner_amount == Decimal("900.00")
    assert booking.owner == owner_user
    assert _notified(owner_user, Notification.Type.RENTAL_REQUEST)
    assert any(owner_user.email in m.to for m in mail.outbox)


def test_rental_request_rejects_own_listing(owner_user, listing):
    start = timezone.now() + timedelta(days=1)
    with pytest.raises(ValidationError):
        lifecycle.create_rental_request(
            renter=owner_user,
            listing=listing,
            start_date=start,
            end_date=start + timedelta(days=1),
            total_price=Decimal("100"),
        )
    assert not Booking.objects.exists()


def test_rental_request_rejects_inactive_listing(renter_user, listing):
    listing.is_active = False
    listing.save()
    start = timezone.now() + timedelta(days=1)
    with pytest.raises(ValidationError):
        lifecycle.create_rental_request(
            renter=renter_user,
            listing=listing,
            start_date=start,
            end_date=start + timedelta(days=1),
            total_price=Decimal("100"),
        )


def test_accept_moves_to_pending_payment_and_issues_documents(booking_factory, owner_user, renter_user):
    booking = booking_factory()

    result = lifecycle.accept_booking(booking.pk, actor=owner_user)

    assert result.booking.status == Booking.Status.PENDING_PAYMENT
    assert result.invoice is not None
    assert result.invoice.number == f"INV-{booking.pk:06d}"
    assert result.invoice.amount == Decimal("1000.00")
    assert RentalDocument.objects.filter(
        booking=booking, kind=RentalDocument.Kind.RENTAL_AGREEMENT
    ).exists()
    assert _notified(renter_user, Notification.Type.RENTAL_ACCEPTED)


def test_accept_survives_document_failure(booking_factory, owner_user, monkeypatch):
    booking = booking_factory()

    def boom(*args, **kwargs):
        raise RuntimeError("pdf renderer down")

    monkeypatch.setattr("bookings.lifecycle.document_services.issue_invoice", boom)

    result = lifecycle.accept_booking(booking.pk, actor=owner_user)

    assert result.invoice is None
    assert result.booking.status == Booking.Status.PENDING_PAYMENT


def test_only_owner_can_accept(booking_factory, renter_user):
    booking = booking_factory()
    with pytest.raises(BookingPermissionDenied):
        lifecycle.accept_booking(booking.pk, actor=renter_user)
    booking.refresh_from_db()
    assert booking.status == Booking.Status.REQUESTED


def test_accept_twice_is_rejected(booking_factory, owner_user):
    booking = booking_factory()
    lifecycle.accept_booking(booking.pk, actor=owner_user)
    with pytest.raises(InvalidBookingState):
        lifecycle.accept_booking(booking.pk, actor=owner_user)


def test_reject_uses_default_reason(booking_factory, owner_user, renter_user):
    booking = booking_factory()

    rejected = lifecycle.reject_booking(booking.pk, actor=owner_user)

    assert rejected.status == Booking.Status.REJECTED
    assert rejected.cancel_reason == lifecycle.DEFAULT_REJECT_REASON
    assert _notified(renter_user, Notification.Type.RENTAL_REJECTED)


def test_start_payment_creates_initiated_payment(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)

    result = lifecycle.start_payment(booking.pk, actor=renter_user)

    assert result.client_secret == "pi_test_1_secret"
    assert result.payment.status == Payment.Status.INITIATED
    assert result.payment.amount == Decimal("1000.00")
    assert result.booking.payment_status == Booking.PaymentStatus.PENDING
    assert fake_stripe["created"][0]["booking_id"] == booking.pk


def test_start_payment_reuses_open_intent(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)

    first = lifecycle.start_payment(booking.pk, actor=renter_user)
    second = lifecycle.start_payment(booking.pk, actor=renter_user)

    assert second.payment.pk == first.payment.pk
    assert len(fake_stripe["created"]) == 1


def test_start_payment_requires_renter_and_pending_payment(booking_factory, owner_user, renter_user, fake_stripe):
    booking = booking_factory()
    with pytest.raises(InvalidBookingState):
        lifecycle.start_payment(booking.pk, actor=renter_user)
    with pytest.raises(BookingPermissionDenied):
        lifecycle.start_payment(booking.pk, actor=owner_user)
    assert fake_stripe["created"] == []


def test_confirm_payment_confirms_booking_once(booking_factory, owner_user, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    fake_stripe["booking_id"] = booking.pk

    first = lifecycle.confirm_payment(booking.pk, "pi_test_9", actor=renter_user)

    assert first.already_processed is False
    assert first.booking.status == Booking.Status.CONFIRMED
    assert first.booking.payment_status == Booking.PaymentStatus.PAID
    assert first.payment.status == Payment.Status.SUCCESSFUL
    assert first.payment.gateway_charge_id == "ch_test_1"
    assert _notified(renter_user, Notification.Type.PAYMENT_CONFIRMATION)
    assert _notified(owner_user, Notification.Type.PAYMENT_CONFIRMATION)
    notifications_after_first = Notification.objects.count()

    second = lifecycle.confirm_payment(booking.pk, "pi_test_9", actor=renter_user)

    assert second.already_processed is True
    assert second.payment.pk == first.payment.pk
    assert fake_stripe["retrieved"] == ["pi_test_9"]
    assert Notification.objects.count() == notifications_after_first
    assert Payment.objects.filter(booking=booking).count() == 1


def test_confirm_payment_marks_invoice_paid(booking_factory, owner_user, renter_user, fake_stripe):
    booking = booking_factory()
    lifecycle.accept_booking(booking.pk, actor=owner_user)
    fake_stripe["booking_id"] = booking.pk

    result = lifecycle.confirm_payment(booking.pk, "pi_test_1", actor=renter_user)

    assert result.invoice.status == Invoice.Status.PAID
    assert result.invoice.paid_at is not None


def test_confirm_payment_requires_succeeded_intent(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    fake_stripe["booking_id"] = booking.pk
    fake_stripe["intent_status"] = "requires_payment_method"

    with pytest.raises(PaymentNotCompleted):
        lifecycle.confirm_payment(booking.pk, "pi_test_1", actor=renter_user)

    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING_PAYMENT
    assert not Payment.objects.filter(status=Payment.Status.SUCCESSFUL).exists()


def test_confirm_payment_rejects_intent_for_another_booking(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    fake_stripe["booking_id"] = booking.pk + 100

    with pytest.raises(ValidationError):
        lifecycle.confirm_payment(booking.pk, "pi_test_1", actor=renter_user)


def test_confirm_payment_requires_intent_id(booking_factory, renter_user):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    with pytest.raises(ValidationError):
        lifecycle.confirm_payment(booking.pk, "  ", actor=renter_user)


def _intent(booking, intent_id="pi_hook_1", **extra):
    payload = {
        "id": intent_id,
        "amount": 100000,
        "amount_received": 100000,
        "latest_charge": "ch_hook_1",
        "metadata": {"kind": "booking_charge", "booking_id": str(booking.pk)},
    }
    payload.update(extra)
    return payload


def test_payment_succeeded_webhook_is_idempotent(booking_factory, renter_user):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)

    lifecycle.handle_payment_succeeded(_intent(booking))
    lifecycle.handle_payment_succeeded(_intent(booking))

    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED
    assert Payment.objects.filter(booking=booking, status=Payment.Status.SUCCESSFUL).count() == 1
    assert Notification.objects.filter(
        user=renter_user, type=Notification.Type.PAYMENT_CONFIRMATION
    ).count() == 1


def test_second_successful_intent_is_refunded_not_recorded(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)

    first = lifecycle.handle_payment_succeeded(_intent(booking, "pi_first"))
    returned = lifecycle.handle_payment_succeeded(
        _intent(booking, "pi_second", latest_charge="ch_second")
    )

    booking.refresh_from_db()
    second = Payment.objects.get(gateway_payment_id="pi_second")
    assert returned == first
    assert Payment.objects.filter(booking=booking, status=Payment.Status.SUCCESSFUL).count() == 1
    assert second.status == Payment.Status.REFUNDED
    assert second.refund_status == Payment.RefundStatus.PROCESSED
    assert second.gateway_charge_id == "ch_second"
    assert [r["payment_intent_id"] for r in fake_stripe["refunds"]] == ["pi_second"]
    assert booking.status == Booking.Status.CONFIRMED
    assert booking.payment_status == Booking.PaymentStatus.PAID
    assert Notification.objects.filter(
        user=renter_user, type=Notification.Type.PAYMENT_CONFIRMATION
    ).count() == 1


def test_late_success_after_cancel_refunds_renter(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    lifecycle.cancel_booking(booking.pk, actor=renter_user)

    payment = lifecycle.handle_payment_succeeded(_intent(booking, "pi_late"))

    booking.refresh_from_db()
    assert booking.status == Booking.Status.CANCELLED
    assert booking.payment_status == Booking.PaymentStatus.REFUNDED
    assert payment.status == Payment.Status.REFUNDED
    assert payment.refund_status == Payment.RefundStatus.PROCESSED
    assert fake_stripe["refunds"][0]["payment_intent_id"] == "pi_late"


def test_late_success_after_cancel_keeps_paid_when_refund_fails(booking_factory, renter_user, monkeypatch):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    lifecycle.cancel_booking(booking.pk, actor=renter_user)

    def failing_refund(**kwargs):
        raise StripePaymentError("Refunds are disabled.")

    monkeypatch.setattr("bookings.settlement.stripe_api.refund_payment", failing_refund)

    payment = lifecycle.handle_payment_succeeded(_intent(booking, "pi_late"))

    booking.refresh_from_db()
    assert booking.status == Booking.Status.CANCELLED
    assert booking.payment_status == Booking.PaymentStatus.PAID
    assert payment.status == Payment.Status.SUCCESSFUL
    assert payment.refund_status == Payment.RefundStatus.FAILED


def test_payment_succeeded_webhook_ignores_other_charges(booking_factory):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    intent = _intent(booking, metadata={"kind": "promotion", "booking_id": str(booking.pk)})

    assert lifecycle.handle_payment_succeeded(intent) is None
    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING_PAYMENT


def test_payment_failed_webhook_marks_failure(booking_factory, renter_user, fake_stripe):
    booking = booking_factory(status=Booking.Status.PENDING_PAYMENT)
    started = lifecycle.start_payment(booking.pk, actor=renter_user)

    lifecycle.handle_payment_failed(
        _intent(booking, started.payment.gateway_payment_id, last_payment_error={"message": "declined"})
    )

    started.payment.refresh_from_db()
    booking.refresh_from_db()
    assert started.payment.status == Payment.Status.FAILED
    assert started.payment.failure_reason == "declined"
    assert booking.payment_status == Booking.PaymentStatus.FAILED
    assert booking.status == Booking.Status.PENDING_PAYMENT


def test_confirm_pickup_requires_destination(paid_booking, owner_user):
    with pytest.raises(ValidationError):
        lifecycle.confirm_pickup(paid_booking.pk, actor=owner_user, payout_destination="")


def test_confirm_pickup_starts_rental_and_pays_owner(paid_booking, owner_user, fake_transfer):
    result = lifecycle.confirm_pickup(paid_booking.pk, actor=owner_user, payout_destination="acct_dest")

    assert result.booking.status == Booking.Status.IN_RENTAL
    assert result.booking.pickup_status == Booking.PickupStatus.COMPLETED
    assert result.booking.payout_status == Booking.PayoutStatus.COMPLETED
    assert result.transfer_id == f"tr_test_{paid_booking.pk}"
    assert result.payout_error is None
    assert fake_transfer[0]["destination"] == "acct_dest"
    assert fake_transfer[0]["amount"] == Decimal("900.00")


def test_confirm_pickup_reports_payout_failure(paid_booking, owner_user, monkeypatch):
    def failing_transfer(**kwargs):
        raise StripePaymentError("Destination account is restricted.")

    monkeypatch.setattr("bookings.settlement.stripe_api.create_owner_transfer", failing_transfer)

    result = lifecycle.confirm_pickup(paid_booking.pk, actor=owner_user, payout_destination="acct_x")

    assert result.booking.status == Booking.Status.IN_RENTAL
    assert result.booking.payout_status == Booking.PayoutStatus.FAILED
    assert result.payout_error == "Destination account is restricted."
    assert _notified(owner_user, Notification.Type.PAYOUT_UPDATE)


def test_cancel_unpaid_booking_skips_refund(booking_factory, renter_user, owner_user, fake_stripe):
    booking = booking_factory()

    result = lifecycle.cancel_booking(booking.pk, actor=renter_user, reason="Plans changed")

    assert result.booking.status == Booking.Status.CANCELLED
    assert result.booking.cancel_reason == "Plans changed"
    assert result.refund_id is None
    assert result.refund_error is None
    assert fake_stripe["refunds"] == []
    assert _notified(owner_user, Notification.Type.BOOKING_CANCELLED)


def _paid_with_payment(booking_factory):
    booking = booking_factory(
        status=Booking.Status.CONFIRMED,
        payment_status=Booking.PaymentStatus.PAID,
    )
    payment = Payment.objects.create(
        booking=booking,
        renter=booking.renter,
        owner=booking.owner,
        gateway_payment_id="pi_paid_1",
        amount=booking.total_price,
        status=Payment.Status.SUCCESSFUL,
        paid_at=timezone.now(),
    )
    return booking, payment


def test_cancel_paid_booking_refunds_renter(booking_factory, owner_user, renter_user, fake_stripe):
    booking, payment = _paid_with_payment(booking_factory)

    result = lifecycle.cancel_booking(booking.pk, actor=owner_user)

    payment.refresh_from_db()
    assert result.booking.status == Booking.Status.CANCELLED
    assert result.booking.payment_status == Booking.PaymentStatus.REFUNDED
    assert result.refund_id == "re_test_1"
    assert payment.status == Payment.Status.REFUNDED
    assert payment.refund_status == Payment.RefundStatus.PROCESSED
    assert payment.refund_amount == Decimal("1000.00")
    assert fake_stripe["refunds"][0]["payment_intent_id"] == "pi_paid_1"
    assert _notified(renter_user, Notification.Type.BOOKING_CANCELLED)


def test_cancel_keeps_cancellation_when_refund_fails(booking_factory, renter_user, monkeypatch):
    booking, payment = _paid_with_payment(booking_factory)

    def failing_refund(**kwargs):
        raise StripePaymentError("Charge already disputed.")

    monkeypatch.setattr("bookings.settlement.stripe_api.refund_payment", failing_refund)

    result = lifecycle.cancel_booking(booking.pk, actor=renter_user)

    payment.refresh_from_db()
    assert result.booking.status == Booking.Status.CANCELLED
    assert result.refund_error == "Charge already disputed."
    assert payment.refund_status == Payment.RefundStatus.FAILED
    assert payment.status == Payment.Status.SUCCESSFUL


def test_cancel_requires_participant_and_open_booking(booking_factory, other_user, renter_user):
    booking = booking_factory()
    with pytest.raises(BookingPermissionDenied):
        lifecycle.cancel_booking(booking.pk, actor=other_user)

    finished = booking_factory(status=Booking.Status.COMPLETED)
    with pytest.raises(InvalidBookingState):
        lifecycle.cancel_booking(finished.pk, actor=renter_user)


def test_complete_on_time_has_no_late_fee(active_booking, owner_user, renter_user):
    booking = lifecycle.complete_booking(active_booking.pk, actor=owner_user, drop_location="Front desk")

    assert booking.status == Booking.Status.COMPLETED
    assert booking.return_status == Booking.ReturnStatus.COMPLETED
    assert booking.late_fee == Decimal("0.00")
    assert booking.drop_location == "Front desk"
    assert RentalDocument.objects.filter(
        booking=booking, kind=RentalDocument.Kind.RETURN_RECEIPT
    ).exists()
    assert _notified(renter_user, Notification.Type.RETURN_COMPLETED)


def test_complete_late_charges_started_days(booking_factory, owner_user):
    now = timezone.now()
    booking = booking_factory(
        status=Booking.Status.IN_RENTAL,
        start_date=now - timedelta(days=5),
        end_date=now - timedelta(days=2, hours=3),
    )

    completed = lifecycle.complete_booking(booking.pk, actor=owner_user)

    assert completed.return_status == Booking.ReturnStatus.LATE
    assert completed.late_fee == Decimal("300.00")


def test_complete_never_lowers_an_escalated_fee(booking_factory, owner_user):
    now = timezone.now()
    booking = booking_factory(
        status=Booking.Status.IN_RENTAL,
        start_date=now - timedelta(days=5),
        end_date=now - timedelta(hours=2),
        late_fee=Decimal("400.00"),
    )

    completed = lifecycle.complete_booking(booking.pk, actor=owner_user)

    assert completed.late_fee == Decimal("400.00")


def test_complete_requires_owner_and_active_rental(active_booking, booking_factory, owner_user, renter_user):
    with pytest.raises(BookingPermissionDenied):
        lifecycle.complete_booking(active_booking.pk, actor=renter_user)
    confirmed = booking_factory(status=Booking.Status.CONFIRMED)
    with pytest.raises(InvalidBookingState):
        lifecycle.complete_booking(confirmed.pk, actor=owner_user)
