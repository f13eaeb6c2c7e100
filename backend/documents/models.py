from django.db import models


class Invoice(models.Model):
    """Invoice issued to the renter when the owner accepts a booking."""

    class Status(models.TextChoices):
        ISSUED = "issued", "Issued"
        PAID = "paid", "Paid"
        VOID = "void", "Void"

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="invoice",
    )
    number = models.CharField(max_length=32, unique=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=8, default="inr")
    status = models.CharField(max_length=8, choices=Status.choices, default=Status.ISSUED)
    pdf = models.FileField(upload_to="documents/invoices/", blank=True)
    issued_at = models.DateTimeField(auto_now_add=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-issued_at"]

    def __str__(self) -> str:
        return f"{self.number} ({self.status})"


class RentalDocument(models.Model):
    """Generated agreement or return receipt attached to a booking."""

    class Kind(models.TextChoices):
        RENTAL_AGREEMENT = "rental_agreement", "Rental agreement"
        RETURN_RECEIPT = "return_receipt", "Return receipt"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="documents",
    )
    kind = models.CharField(max_length=24, choices=Kind.choices)
    pdf = models.FileField(upload_to="documents/rentals/", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=("booking", "kind"),
                name="rental_document_booking_kind_uniq",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.kind} for booking {self.booking_id}"
