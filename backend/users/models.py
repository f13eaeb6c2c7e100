from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace user; the same account can own listings and rent from others."""

    external_id = models.CharField(
        max_length=128,
        unique=True,
        null=True,
        blank=True,
        help_text="Subject id issued by the external identity provider.",
    )
    phone = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Optional E.164 formatted phone number.",
    )
    stripe_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Connect account that receives owner payouts.",
    )

    @property
    def display_name(self) -> str:
        full_name = (self.get_full_name() or "").strip()
        return full_name or self.username or f"user-{self.pk}"
