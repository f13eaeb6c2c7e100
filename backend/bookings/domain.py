"""Domain helpers for booking validation, money math and state guards."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from core.money import ZERO, quantize_money

from .models import Booking, HandoverCode

ONE_DAY = timedelta(days=1)
CALENDAR_MONTHS = 6

# Statuses from which either participant may cancel.
CANCELLABLE_STATUSES = (
    Booking.Status.REQUESTED,
    Booking.Status.ACCEPTED,
    Booking.Status.PENDING_PAYMENT,
    Booking.Status.CONFIRMED,
    Booking.Status.IN_RENTAL,
)

# Statuses that hold a listing's dates once the owner has accepted.
# Plain requested bookings remain allowed to overlap.
BLOCKING_STATUSES = (
    Booking.Status.ACCEPTED,
    Booking.Status.PENDING_PAYMENT,
    Booking.Status.CONFIRMED,
    Booking.Status.IN_RENTAL,
)

# A booking stays under the overdue monitor's watch while in these return states.
MONITORED_RETURN_STATUSES = (
    Booking.ReturnStatus.PENDING,
    Booking.ReturnStatus.SCHEDULED,
    Booking.ReturnStatus.LATE,
)


class BookingNotFound(Exception):
    """No booking exists with the requested id."""


class BookingPermissionDenied(Exception):
    """The acting user is not the party allowed to perform this operation."""


class InvalidBookingState(Exception):
    """The booking is not in a state that allows the requested transition."""


class InvalidHandoverCode(Exception):
    """The handover code is missing, expired, exhausted or does not match."""


class PaymentNotCompleted(Exception):
    """The payment processor reports the charge has not succeeded."""


def platform_fee_rate() -> Decimal:
    return Decimal(str(getattr(settings, "PLATFORM_FEE_RATE", "0.10")))


def compute_fee_split(total_price: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split a booking total into (platform_fee, owner_amount).

    The fee is rounded half-up to the cent and the owner gets the remainder,
    so the two parts always add back up to the total.
    """
    total = quantize_money(Decimal(total_price))
    platform_fee = quantize_money(total * platform_fee_rate())
    return platform_fee, total - platform_fee


def late_days(end_date: datetime, returned_at: datetime) -> int:
    """Days late, rounded up; zero when returned on or before the deadline."""
    overdue = returned_at - end_date
    if overdue <= timedelta(0):
        return 0
    return math.ceil(overdue / ONE_DAY)


def return_late_fee(total_price: Decimal, end_date: datetime, returned_at: datetime) -> Decimal:
    days = late_days(end_date, returned_at)
    if days <= 0:
        return ZERO
    rate = Decimal(str(settings.LATE_FEE_DAILY_RATE))
    return quantize_money(Decimal(total_price) * days * rate)


def initial_late_fee(total_price: Decimal) -> Decimal:
    """Fee applied when a rental first becomes overdue past the grace period."""
    return quantize_money(Decimal(total_price) * Decimal(str(settings.LATE_FEE_INITIAL_RATE)))


def escalated_late_fee(total_price: Decimal, end_date: datetime, now: datetime) -> tuple[int, Decimal]:
    """Return (whole days overdue, fee for those days); escalation counts full days only."""
    days = int((now - end_date) // ONE_DAY)
    if days <= 0:
        return 0, ZERO
    rate = Decimal(str(settings.LATE_FEE_DAILY_RATE))
    return days, quantize_money(Decimal(total_price) * days * rate)


def _aware(value: datetime) -> datetime:
    if timezone.is_naive(value):
        return timezone.make_aware(value)
    return value


def validate_booking_dates(start_date: datetime | None, end_date: datetime | None) -> None:
    """Validate that the provided dates exist and form a valid, non-past range."""
    if not start_date or not end_date:
        raise ValidationError({"non_field_errors": ["Start and end dates are required."]})
    start_date, end_date = _aware(start_date), _aware(end_date)
    if start_date >= end_date:
        raise ValidationError({"end_date": ["End date must be after start date."]})
    if timezone.localtime(start_date).date() < timezone.localdate():
        raise ValidationError({"start_date": ["Start date cannot be in the past."]})


def _month_start(year: int, month: int) -> datetime:
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return timezone.make_aware(datetime(year, month, 1))


def calendar_window(
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    now: datetime | None = None,
    months: int = CALENDAR_MONTHS,
) -> tuple[datetime, datetime]:
    """Resolve the availability calendar window; defaults to ``months`` from this month."""
    today = timezone.localtime(now or timezone.now())
    start = _aware(start) if start else _month_start(today.year, today.month)
    if end:
        end = _aware(end)
    else:
        local_start = timezone.localtime(start)
        end = _month_start(local_start.year, local_start.month + months)
    if start >= end:
        raise ValidationError({"end": ["End must be after start."]})
    return start, end


def validate_total_price(total_price: Decimal | None) -> None:
    if total_price is None or Decimal(total_price) <= ZERO:
        raise ValidationError({"total_price": ["Total price must be greater than zero."]})


def assert_is_owner(booking: Booking, user) -> None:
    if getattr(user, "pk", None) != booking.owner_id:
        raise BookingPermissionDenied("Only the owner of this booking can do that.")


def assert_is_renter(booking: Booking, user) -> None:
    if getattr(user, "pk", None) != booking.renter_id:
        raise BookingPermissionDenied("Only the renter of this booking can do that.")


def party_of(booking: Booking, user) -> str:
    """Return the user's role in the booking or raise if they are not a participant."""
    party = booking.party_of(user)
    if party is None:
        raise BookingPermissionDenied("You are not a participant in this booking.")
    return party


def assert_status(booking: Booking, allowed: Iterable[str], action: str) -> None:
    allowed = tuple(allowed)
    if booking.status not in allowed:
        raise InvalidBookingState(
            f"Cannot {action} a booking in status '{booking.status}'."
        )


def assert_can_issue_code(booking: Booking, kind: str) -> None:
    if kind == HandoverCode.Kind.DELIVERY:
        assert_status(
            booking,
            (Booking.Status.CONFIRMED, Booking.Status.IN_RENTAL),
            "start pickup for",
        )
        if booking.delivery_status == Booking.DeliveryStatus.DELIVERED:
            raise InvalidBookingState("Pickup has already been completed for this booking.")
    elif kind == HandoverCode.Kind.RETURN:
        assert_status(booking, (Booking.Status.IN_RENTAL,), "start a return for")
    else:
        raise ValidationError({"kind": ["Unknown handover kind."]})


def assert_can_verify_code(booking: Booking, kind: str) -> None:
    # Same preconditions as issuing: a code can only complete an open handover.
    assert_can_issue_code(booking, kind)
