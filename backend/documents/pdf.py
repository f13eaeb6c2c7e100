"""Render booking documents (invoice, rental agreement, return receipt) as PDFs."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import Callable, Iterable, Tuple

from django.conf import settings
from django.utils import timezone
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

Row = Tuple[str, str]
Section = Tuple[str, Iterable[Row]]


def _format_datetime(value: datetime | None) -> str:
    if not value:
        return "N/A"
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return f"{value.strftime('%b')} {value.day}, {value.year} {value.strftime('%H:%M')}"


def _format_currency(amount: Decimal | None, currency: str | None = None) -> str:
    code = (currency or getattr(settings, "PAYMENT_CURRENCY", "inr")).upper()
    return f"{code} {(amount or Decimal('0')):,.2f}"


def _render(title: str, header_rows: Iterable[str], sections: Iterable[Section]) -> bytes:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter)
    pdf.setTitle(title)

    width, height = letter
    margin = 0.9 * inch
    y = height - margin

    def new_section(name: str, *, spacing: float = 0.22) -> None:
        nonlocal y
        pdf.setFont("Helvetica-Bold", 13)
        pdf.drawString(margin, y, name)
        y -= spacing * inch

    def draw_row(label: str, value: str, *, label_width: float = 2.0) -> None:
        nonlocal y
        pdf.setFont("Helvetica-Bold", 10)
        pdf.drawString(margin, y, label)
        pdf.setFont("Helvetica", 10)
        pdf.drawString(margin + label_width * inch, y, value)
        y -= 0.18 * inch

    pdf.setStrokeColorRGB(0.85, 0.85, 0.85)
    pdf.setFillColorRGB(0, 0, 0)

    pdf.setFont("Helvetica-Bold", 22)
    pdf.drawString(margin, y, getattr(settings, "SITE_NAME", "Rentals"))
    pdf.setFont("Helvetica", 10)
    pdf.drawString(margin, y - 0.2 * inch, title)

    header_x = width - margin - 2.6 * inch
    pdf.setFont("Helvetica-Bold", 10)
    for offset, line in enumerate(header_rows):
        pdf.drawString(header_x, y - offset * 0.18 * inch, line)
    y -= 0.65 * inch

    pdf.line(margin, y, width - margin, y)
    y -= 0.25 * inch

    for name, rows in sections:
        new_section(name, spacing=0.2)
        for label, value in rows:
            draw_row(label, value)
        y -= 0.1 * inch

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def _booking_rows(booking) -> list[Row]:
    return [
        ("Item", getattr(booking.listing, "title", "Listing")),
        ("Start", _format_datetime(booking.start_date)),
        ("Return by", _format_datetime(booking.end_date)),
        ("Owner", booking.owner.display_name),
        ("Renter", booking.renter.display_name),
        ("Booking ID", str(booking.pk)),
    ]


def render_invoice_pdf(booking, invoice) -> bytes:
    return _render(
        "Rental Invoice",
        [
            f"Invoice No: {invoice.number}",
            f"Issued on: {_format_datetime(invoice.issued_at or timezone.now())}",
        ],
        [
            ("Booking", _booking_rows(booking)),
            (
                "Charges",
                [
                    ("Rental total", _format_currency(booking.total_price, invoice.currency)),
                    ("Platform fee (incl.)", _format_currency(booking.platform_fee, invoice.currency)),
                    ("Amount due", _format_currency(invoice.amount, invoice.currency)),
                ],
            ),
        ],
    )


def render_rental_agreement_pdf(booking) -> bytes:
    return _render(
        "Rental Agreement",
        [f"Booking: #{booking.pk}", f"Generated: {_format_datetime(timezone.now())}"],
        [
            ("Parties and item", _booking_rows(booking)),
            (
                "Terms",
                [
                    ("Rental total", _format_currency(booking.total_price)),
                    ("Handover", "Pickup and return confirmed by both parties with a one-time code"),
                    (
                        "Late returns",
                        f"{Decimal(settings.LATE_FEE_DAILY_RATE) * 100:.0f}% of the total per day late",
                    ),
                ],
            ),
        ],
    )


def render_return_receipt_pdf(booking) -> bytes:
    late = booking.return_status == "late"
    return _render(
        "Return Receipt",
        [f"Booking: #{booking.pk}", f"Returned: {_format_datetime(booking.return_date)}"],
        [
            ("Booking", _booking_rows(booking)),
            (
                "Return",
                [
                    ("Status", "Late" if late else "On time"),
                    ("Drop location", booking.drop_location or "N/A"),
                    ("Late fee", _format_currency(booking.late_fee)),
                ],
            ),
        ],
    )


RENDERERS: dict[str, Callable[..., bytes]] = {
    "rental_agreement": render_rental_agreement_pdf,
    "return_receipt": render_return_receipt_pdf,
}
