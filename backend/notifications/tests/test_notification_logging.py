import pytest
from django.core import mail

from bookings.models import Booking
from notifications import tasks
from notifications.models import NotificationLog

pytestmark = pytest.mark.django_db


def test_email_logging_success(booking_factory):
    booking: Booking = booking_factory(status=Booking.Status.CONFIRMED)

    sent = tasks._send_email_logged(
        "custom_type",
        to_email="user@example.com",
        subject="Test Subject",
        body="Hello",
        booking_id=booking.id,
    )

    assert sent is True
    log = NotificationLog.objects.latest("created_at")
    assert log.status == NotificationLog.Status.SENT
    assert log.type == "custom_type"
    assert log.booking_id == booking.id
    assert len(mail.outbox) == 1
    assert mail.outbox[0].from_email == "noreply@test.local"


def test_email_logging_failure(monkeypatch, booking_factory):
    booking: Booking = booking_factory(status=Booking.Status.CONFIRMED)

    def _raise(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(tasks.EmailMultiAlternatives, "send", _raise)

    sent = tasks._send_email_logged(
        "custom_fail",
        to_email="fail@example.com",
        subject="Test",
        body="Body",
        booking_id=booking.id,
    )

    assert sent is False
    log = NotificationLog.objects.latest("created_at")
    assert log.status == NotificationLog.Status.FAILED
    assert log.error == "boom"


def test_missing_recipient_is_logged_as_failure():
    assert tasks._send_email_logged("no_rcpt", to_email="", subject="s", body="b") is False
    log = NotificationLog.objects.get(type="no_rcpt")
    assert log.status == NotificationLog.Status.FAILED
    assert log.error == "missing recipient email"


def test_booking_email_includes_link(booking_factory, renter_user, settings):
    settings.FRONTEND_ORIGIN = "https://rent.example"
    booking = booking_factory()

    tasks.send_booking_email(renter_user.id, booking.id, "rental_accepted", "Accepted", "Pay now.")

    assert mail.outbox[0].to == [renter_user.email]
    assert "Pay now." in mail.outbox[0].body
    assert f"https://rent.example/bookings/{booking.id}" in mail.outbox[0].body


def test_handover_code_email_carries_code(booking_factory, renter_user):
    booking = booking_factory(status=Booking.Status.CONFIRMED)

    tasks.send_handover_code_email(
        renter_user.id, booking.id, "delivery", "482913", "2026-05-01T10:00:00+00:00"
    )

    assert "482913" in mail.outbox[0].body
    assert "pickup code" in mail.outbox[0].subject
    assert NotificationLog.objects.filter(type="delivery_code", status=NotificationLog.Status.SENT).exists()


def test_email_for_missing_user_is_skipped():
    assert tasks.send_booking_email(987654, None, "rental_request", "s", "m") is False
    assert mail.outbox == []
