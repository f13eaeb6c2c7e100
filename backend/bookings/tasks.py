"""Celery tasks for bookings."""

from __future__ import annotations

import logging
from dataclasses import asdict

from celery import shared_task

from .handover import purge_expired_codes
from .overdue import scan_overdue_rentals as run_overdue_scan

logger = logging.getLogger(__name__)


@shared_task(name="bookings.scan_overdue_rentals")
def scan_overdue_rentals() -> dict:
    """
    Send return reminders and deadline notices, and escalate late fees.

    Returns the scan counters so beat/flower show what each run did.
    """
    return asdict(run_overdue_scan())


@shared_task(name="bookings.purge_expired_handover_codes")
def purge_expired_handover_codes() -> int:
    """Delete handover codes that expired without completing."""
    deleted = purge_expired_codes()
    if deleted:
        logger.info("bookings: purged expired handover codes", extra={"deleted": deleted})
    return deleted
