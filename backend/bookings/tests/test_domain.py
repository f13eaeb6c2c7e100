"""Tests for booking domain validation helpers and money math."""

from __future__ import annotations

from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from bookings.domain import (
    BookingPermissionDenied,
    InvalidBookingState,
    assert_can_issue_code,
    assert_is_owner,
    assert_is_renter,
    calendar_window,
    compute_fee_split,
    escalated_late_fee,
    initial_late_fee,
    late_days,
    party_of,
    return_late_fee,
    validate_booking_dates,
    validate_total_price,
)
from bookings.models import Booking, HandoverCode

END = datetime(2026, 3, 10, 12, 0, tzinfo=dt_timezone.utc)


def test_fee_split_takes_ten_percent():
    assert compute_fee_split(Decimal("1000")) == (Decimal("100.00"), Decimal("900.00"))


def test_fee_split_rounds_half_up_and_sums_to_total():
    fee, owner = compute_fee_split(Decimal("10.05"))
    assert fee == Decimal("1.01")
    assert fee + owner == Decimal("10.05")


def test_fee_split_respects_configured_rate(settings):
    settings.PLATFORM_FEE_RATE = Decimal("0.15")
    assert compute_fee_split(Decimal("200.00")) == (Decimal("30.00"), Decimal("170.00"))


@pytest.mark.parametrize(
    "returned_at,expected",
    [
        (END - timedelta(hours=1), 0),
        (END, 0),
        (END + timedelta(minutes=1), 1),
        (END + timedelta(days=1), 1),
        (END + timedelta(days=2, hours=3), 3),
    ],
)
def test_late_days_rounds_partial_days_up(returned_at, expected):
    assert late_days(END, returned_at) == expected


def test_return_late_fee_is_ten_percent_per_started_day():
    fee = return_late_fee(Decimal("1000"), END, END + timedelta(days=2, hours=3))
    assert fee == Decimal("300.00")


def test_return_late_fee_is_zero_when_on_time():
    assert return_late_fee(Decimal("1000"), END, END) == Decimal("0")


def test_initial_late_fee_is_five_percent():
    assert initial_late_fee(Decimal("1000")) == Decimal("50.00")


def test_escalated_late_fee_counts_whole_days_only():
    assert escalated_late_fee(Decimal("1000"), END, END + timedelta(hours=23)) == (0, Decimal("0"))
    assert escalated_late_fee(Decimal("1000"), END, END + timedelta(hours=49)) == (2, Decimal("200.00"))


def test_validate_booking_dates_requires_both():
    with pytest.raises(ValidationError):
        validate_booking_dates(None, timezone.now())


def test_validate_booking_dates_rejects_reversed_range():
    start = timezone.now() + timedelta(days=2)
    with pytest.raises(ValidationError) as excinfo:
        validate_booking_dates(start, start - timedelta(hours=1))
    assert "end_date" in excinfo.value.message_dict


def test_validate_booking_dates_rejects_past_start():
    start = timezone.now() - timedelta(days=2)
    with pytest.raises(ValidationError) as excinfo:
        validate_booking_dates(start, start + timedelta(days=3))
    assert "start_date" in excinfo.value.message_dict


def test_validate_booking_dates_accepts_today():
    start = timezone.now() + timedelta(minutes=5)
    validate_booking_dates(start, start + timedelta(days=1))


@pytest.mark.parametrize("value", [None, Decimal("0"), Decimal("-1")])
def test_validate_total_price_must_be_positive(value):
    with pytest.raises(ValidationError):
        validate_total_price(value)


@pytest.mark.django_db
def test_party_guards(booking_factory, owner_user, renter_user, other_user):
    booking = booking_factory()

    assert party_of(booking, owner_user) == HandoverCode.Party.OWNER
    assert party_of(booking, renter_user) == HandoverCode.Party.RENTER
    with pytest.raises(BookingPermissionDenied):
        party_of(booking, other_user)
    with pytest.raises(BookingPermissionDenied):
        assert_is_owner(booking, renter_user)
    with pytest.raises(BookingPermissionDenied):
        assert_is_renter(booking, owner_user)


@pytest.mark.django_db
def test_delivery_code_requires_confirmed_undelivered_booking(booking_factory):
    requested = booking_factory()
    with pytest.raises(InvalidBookingState):
        assert_can_issue_code(requested, HandoverCode.Kind.DELIVERY)

    delivered = booking_factory(
        status=Booking.Status.IN_RENTAL,
        delivery_status=Booking.DeliveryStatus.DELIVERED,
    )
    with pytest.raises(InvalidBookingState):
        assert_can_issue_code(delivered, HandoverCode.Kind.DELIVERY)
    assert_can_issue_code(delivered, HandoverCode.Kind.RETURN)


@pytest.mark.django_db
def test_return_code_requires_active_rental(booking_factory):
    booking = booking_factory(status=Booking.Status.CONFIRMED)
    with pytest.raises(InvalidBookingState):
        assert_can_issue_code(booking, HandoverCode.Kind.RETURN)


def test_calendar_window_defaults_to_six_months_from_this_month():
    now = timezone.make_aware(datetime(2026, 10, 18, 12, 0))

    start, end = calendar_window(now=now)

    assert start == timezone.make_aware(datetime(2026, 10, 1))
    assert end == timezone.make_aware(datetime(2027, 4, 1))


def test_calendar_window_rejects_reversed_range():
    start = timezone.make_aware(datetime(2026, 5, 1))
    with pytest.raises(ValidationError):
        calendar_window(start, start - timedelta(days=1))
