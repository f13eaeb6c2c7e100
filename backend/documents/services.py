"""Create and store the documents attached to a booking."""

from __future__ import annotations

import logging

from django.core.files.base import ContentFile
from django.utils import timezone

from .models import Invoice, RentalDocument
from .pdf import RENDERERS, render_invoice_pdf

logger = logging.getLogger(__name__)


def invoice_number(booking) -> str:
    return f"INV-{booking.pk:06d}"


def issue_invoice(booking) -> Invoice:
    """Return the booking's invoice, creating and rendering it on first call."""
    invoice, created = Invoice.objects.get_or_create(
        booking=booking,
        defaults={
            "number": invoice_number(booking),
            "amount": booking.total_price,
            "platform_fee": booking.platform_fee,
        },
    )
    if created or not invoice.pdf:
        pdf_bytes = render_invoice_pdf(booking, invoice)
        invoice.pdf.save(f"{invoice.number}.pdf", ContentFile(pdf_bytes), save=True)
        logger.info("documents: invoice %s issued", invoice.number, extra={"booking_id": booking.pk})
    return invoice


def mark_invoice_paid(booking) -> Invoice | None:
    Invoice.objects.filter(booking=booking, status=Invoice.Status.ISSUED).update(
        status=Invoice.Status.PAID,
        paid_at=timezone.now(),
    )
    return Invoice.objects.filter(booking=booking).first()


def _generate(booking, kind: str) -> RentalDocument:
    document, _ = RentalDocument.objects.get_or_create(booking=booking, kind=kind)
    pdf_bytes = RENDERERS[kind](booking)
    document.pdf.save(f"booking-{booking.pk}-{kind}.pdf", ContentFile(pdf_bytes), save=True)
    logger.info("documents: %s generated", kind, extra={"booking_id": booking.pk})
    return document


def generate_rental_agreement(booking) -> RentalDocument:
    return _generate(booking, RentalDocument.Kind.RENTAL_AGREEMENT)


def generate_return_receipt(booking) -> RentalDocument:
    return _generate(booking, RentalDocument.Kind.RETURN_RECEIPT)
