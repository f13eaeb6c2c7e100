"""Shared fixtures for bookings tests."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from bookings.models import Booking
from listings.models import Listing

User = get_user_model()


def _create_user(*, username: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        **extra,
    )


@pytest.fixture
def owner_user():
    return _create_user(username="owner", stripe_account_id="acct_test_owner")


@pytest.fixture
def renter_user():
    return _create_user(username="renter")


@pytest.fixture
def other_user():
    return _create_user(username="other")


@pytest.fixture
def staff_user():
    return _create_user(username="staff", is_staff=True)


@pytest.fixture
def listing(owner_user):
    return Listing.objects.create(
        owner=owner_user,
        title="Pro Camera Kit",
        description="Mirrorless camera with two lenses.",
        daily_price=Decimal("250.00"),
        city="Pune",
        is_active=True,
    )


@pytest.fixture
def booking_factory(listing, owner_user, renter_user) -> Callable[..., Booking]:
    def _create_booking(
        *,
        listing_override: Listing | None = None,
        owner=None,
        renter=None,
        start_date=None,
        end_date=None,
        status=Booking.Status.REQUESTED,
        total_price=Decimal("1000.00"),
        **extra_fields,
    ) -> Booking:
        selected_listing = listing_override or listing
        now = timezone.now()
        return Booking.objects.create(
            listing=selected_listing,
            owner=owner or selected_listing.owner,
            renter=renter or renter_user,
            start_date=start_date or now + timedelta(days=1),
            end_date=end_date or now + timedelta(days=4),
            status=status,
            total_price=total_price,
            platform_fee=extra_fields.pop("platform_fee", Decimal("100.00")),
            owner_amount=extra_fields.pop("owner_amount", Decimal("900.00")),
            **extra_fields,
        )

    return _create_booking


@pytest.fixture
def paid_booking(booking_factory):
    """A confirmed, paid booking ready for pickup."""
    return booking_factory(
        status=Booking.Status.CONFIRMED,
        payment_status=Booking.PaymentStatus.PAID,
    )


@pytest.fixture
def active_booking(booking_factory):
    """A rental in progress whose pickup has been completed."""
    now = timezone.now()
    return booking_factory(
        status=Booking.Status.IN_RENTAL,
        payment_status=Booking.PaymentStatus.PAID,
        pickup_status=Booking.PickupStatus.COMPLETED,
        delivery_status=Booking.DeliveryStatus.DELIVERED,
        payout_status=Booking.PayoutStatus.COMPLETED,
        start_date=now - timedelta(days=2),
        end_date=now + timedelta(days=1),
    )


@pytest.fixture
def captured_codes(monkeypatch):
    """Collect plaintext handover codes instead of emailing them."""
    codes: list[dict] = []

    def fake_delay(user_id, booking_id, kind, code, expires_at):
        codes.append({"user_id": user_id, "booking_id": booking_id, "kind": kind, "code": code})

    monkeypatch.setattr(
        "bookings.handover.notification_tasks.send_handover_code_email.delay",
        fake_delay,
    )
    return codes


@pytest.fixture
def fake_transfer(monkeypatch):
    """Replace the Stripe owner transfer with a recorder."""
    calls: list[dict] = []

    def fake_create_owner_transfer(**kwargs):
        calls.append(kwargs)
        return f"tr_test_{kwargs['booking_id']}"

    monkeypatch.setattr(
        "bookings.settlement.stripe_api.create_owner_transfer",
        fake_create_owner_transfer,
    )
    return calls

