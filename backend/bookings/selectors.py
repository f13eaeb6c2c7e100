from __future__ import annotations

from datetime import datetime

from django.db.models import QuerySet

from .domain import BLOCKING_STATUSES, BookingNotFound
from .models import Booking


def get_booking(booking_id) -> Booking:
    try:
        return Booking.objects.select_related("listing", "owner", "renter").get(pk=booking_id)
    except (Booking.DoesNotExist, ValueError, TypeError):
        raise BookingNotFound(f"Booking {booking_id} not found.") from None


def blocking_bookings(listing_id, start: datetime, end: datetime) -> QuerySet[Booking]:
    """Bookings holding any part of [start, end) for the listing."""
    return (
        Booking.objects.filter(
            listing_id=listing_id,
            status__in=BLOCKING_STATUSES,
            start_date__lt=end,
            end_date__gt=start,
        )
        .order_by("start_date", "end_date")
    )
