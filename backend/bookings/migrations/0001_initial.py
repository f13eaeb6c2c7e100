import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("start_date", models.DateTimeField()),
                (
                    "end_date",
                    models.DateTimeField(
                        help_text="Agreed return deadline, must be after start_date."
                    ),
                ),
                ("total_price", models.DecimalField(decimal_places=2, max_digits=10)),
                ("platform_fee", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("owner_amount", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("late_fee", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("requested", "requested"),
                            ("accepted", "accepted"),
                            ("rejected", "rejected"),
                            ("pending_payment", "pending payment"),
                            ("confirmed", "confirmed"),
                            ("in_rental", "in rental"),
                            ("cancelled", "cancelled"),
                            ("completed", "completed"),
                        ],
                        default="requested",
                        max_length=24,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("unpaid", "unpaid"),
                            ("pending", "pending"),
                            ("paid", "paid"),
                            ("refunded", "refunded"),
                            ("failed", "failed"),
                        ],
                        default="unpaid",
                        max_length=16,
                    ),
                ),
                (
                    "pickup_status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("scheduled", "scheduled"),
                            ("completed", "completed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "delivery_status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("out_for_delivery", "out for delivery"),
                            ("delivered", "delivered"),
                        ],
                        default="pending",
                        max_length=24,
                    ),
                ),
                (
                    "return_status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("scheduled", "scheduled"),
                            ("completed", "completed"),
                            ("late", "late"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "payout_status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("processing", "processing"),
                            ("completed", "completed"),
                            ("failed", "failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("pickup_date", models.DateTimeField(blank=True, null=True)),
                ("delivery_date", models.DateTimeField(blank=True, null=True)),
                ("return_date", models.DateTimeField(blank=True, null=True)),
                ("payout_date", models.DateTimeField(blank=True, null=True)),
                ("payout_transfer_id", models.CharField(blank=True, default="", max_length=255)),
                ("drop_location", models.CharField(blank=True, default="", max_length=255)),
                ("cancel_reason", models.TextField(blank=True, default="")),
                ("notes", models.TextField(blank=True, default="")),
                ("reminder_sent", models.BooleanField(default=False)),
                ("deadline_sent", models.BooleanField(default=False)),
                ("warning_sent", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings",
                        to="listings.listing",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings_as_owner",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings_as_renter",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["listing", "start_date", "end_date"],
                        name="bookings_bo_listing_4b1d2e_idx",
                    ),
                    models.Index(fields=["renter", "status"], name="bookings_bo_renter__9c3f0a_idx"),
                    models.Index(fields=["owner", "status"], name="bookings_bo_owner_i_7e21b5_idx"),
                    models.Index(fields=["status", "end_date"], name="bookings_bo_status_5d8a41_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="HandoverCode",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("delivery", "delivery"), ("return", "return")], max_length=16
                    ),
                ),
                ("code_hash", models.CharField(max_length=128)),
                (
                    "issued_to",
                    models.CharField(
                        choices=[("owner", "owner"), ("renter", "renter")], max_length=8
                    ),
                ),
                ("expires_at", models.DateTimeField()),
                ("owner_verified", models.BooleanField(default=False)),
                ("renter_verified", models.BooleanField(default=False)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("max_attempts", models.PositiveIntegerField(default=5)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="handover_codes",
                        to="bookings.booking",
                    ),
                ),
                (
                    "issued_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="issued_handover_codes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["expires_at"], name="handover_code_expires_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("booking", "kind"), name="handover_code_booking_kind_uniq"
                    ),
                ],
            },
        ),
    ]
