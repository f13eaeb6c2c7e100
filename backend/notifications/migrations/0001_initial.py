import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("rental_request", "Rental request"),
                            ("rental_accepted", "Rental accepted"),
                            ("rental_rejected", "Rental rejected"),
                            ("payment_confirmation", "Payment confirmation"),
                            ("pickup_requested", "Pickup requested"),
                            ("pickup_initiated", "Pickup initiated"),
                            ("pickup_verification_pending", "Pickup verification pending"),
                            ("pickup_completed", "Pickup completed"),
                            ("return_requested", "Return requested"),
                            ("return_initiated", "Return initiated"),
                            ("return_verification_pending", "Return verification pending"),
                            ("return_completed", "Return completed"),
                            ("booking_cancelled", "Booking cancelled"),
                            ("payout_update", "Payout update"),
                            ("return_reminder", "Return reminder"),
                            ("return_deadline", "Return deadline"),
                            ("overdue_warning", "Overdue warning"),
                            ("escalated_overdue", "Escalated overdue"),
                        ],
                        max_length=40,
                    ),
                ),
                ("message", models.TextField()),
                ("is_read", models.BooleanField(default=False)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="bookings.booking",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["user", "is_read", "created_at"],
                        name="notif_user_read_created_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="NotificationLog",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("channel", models.CharField(choices=[("email", "Email")], max_length=8)),
                ("type", models.CharField(max_length=128)),
                ("booking_id", models.IntegerField(blank=True, null=True)),
                ("status", models.CharField(choices=[("sent", "Sent"), ("failed", "Failed")], max_length=8)),
                ("error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="notification_logs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["created_at"], name="notification_created_65a70b_idx"),
                    models.Index(
                        fields=["booking_id", "created_at"], name="notification_booking_7d8d32_idx"
                    ),
                    models.Index(fields=["type", "created_at"], name="notification_type_cre_136b3c_idx"),
                ],
            },
        ),
    ]
