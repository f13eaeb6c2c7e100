"""
Periodic overdue monitor for active rentals.

A single scan walks every in-rental booking that is not yet returned and
applies, in order: the pre-deadline reminder, the deadline notice, the
first overdue warning with its initial late fee, and the daily late-fee
escalation. Each step is claimed with a conditional UPDATE before anyone
is notified, so overlapping scans never double-send or lower a fee.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import notify
from .domain import MONITORED_RETURN_STATUSES, escalated_late_fee, initial_late_fee
from .models import Booking

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    scanned: int = 0
    reminders: int = 0
    deadlines: int = 0
    warnings: int = 0
    escalations: int = 0
    errors: int = 0


def _reminder_lead() -> timedelta:
    return timedelta(hours=settings.RETURN_REMINDER_LEAD_HOURS)


def _grace() -> timedelta:
    return timedelta(minutes=settings.OVERDUE_GRACE_MINUTES)


def monitored_bookings(now: datetime):
    """Active rentals whose reminder window has opened."""
    return Booking.objects.filter(
        status=Booking.Status.IN_RENTAL,
        return_status__in=MONITORED_RETURN_STATUSES,
        end_date__lte=now + _reminder_lead(),
    ).select_related("listing", "owner", "renter")


def _claim(booking: Booking, latch: str, **changes) -> bool:
    """Flip ``latch`` from False to True; only one scan can win."""
    changes[latch] = True
    changes["updated_at"] = timezone.now()
    return bool(
        Booking.objects.filter(
            pk=booking.pk,
            status=Booking.Status.IN_RENTAL,
            **{latch: False},
        ).update(**changes)
    )


def _send_reminder(booking: Booking, now: datetime) -> bool:
    if not (booking.end_date - _reminder_lead() <= now <= booking.end_date):
        return False
    if booking.reminder_sent or not _claim(booking, "reminder_sent"):
        return False
    notify.return_reminder(booking)
    return True


def _send_deadline(booking: Booking, now: datetime) -> bool:
    overdue = now - booking.end_date
    if overdue < timedelta(0) or overdue > _grace():
        return False
    if booking.deadline_sent or not _claim(booking, "deadline_sent"):
        return False
    notify.return_deadline(booking)
    return True


def _send_warning(booking: Booking, now: datetime) -> bool:
    if now - booking.end_date < _grace():
        return False
    if booking.warning_sent:
        return False
    fee = initial_late_fee(booking.total_price)
    with transaction.atomic():
        if not _claim(booking, "warning_sent", return_status=Booking.ReturnStatus.LATE):
            return False
        Booking.objects.filter(pk=booking.pk, late_fee__lt=fee).update(late_fee=fee)
    booking.refresh_from_db()
    notify.overdue_warning(booking)
    return True


def _escalate(booking: Booking, now: datetime) -> bool:
    days, fee = escalated_late_fee(booking.total_price, booking.end_date, now)
    if days < 1:
        return False
    raised = Booking.objects.filter(
        pk=booking.pk,
        status=Booking.Status.IN_RENTAL,
        late_fee__lt=fee,
    ).update(late_fee=fee, return_status=Booking.ReturnStatus.LATE, updated_at=timezone.now())
    if not raised:
        return False
    booking.refresh_from_db()
    logger.info(
        "bookings: late fee escalated",
        extra={"booking_id": booking.pk, "days_late": days, "late_fee": str(fee)},
    )
    notify.escalated_overdue(booking, days)
    return True


def process_booking(booking: Booking, now: datetime, summary: ScanSummary) -> None:
    if _send_reminder(booking, now):
        summary.reminders += 1
    if _send_deadline(booking, now):
        summary.deadlines += 1
    if _send_warning(booking, now):
        summary.warnings += 1
    if _escalate(booking, now):
        summary.escalations += 1


def scan_overdue_rentals(now: datetime | None = None) -> ScanSummary:
    """Run one pass of the overdue monitor and return what it did."""
    now = now or timezone.now()
    summary = ScanSummary()
    for booking in monitored_bookings(now):
        summary.scanned += 1
        try:
            process_booking(booking, now, summary)
        except Exception:
            summary.errors += 1
            logger.exception(
                "bookings: overdue scan failed for booking",
                extra={"booking_id": booking.pk},
            )
    if summary.scanned:
        logger.info("bookings: overdue scan finished", extra=vars(summary))
    return summary
