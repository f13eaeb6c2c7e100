"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from rest_framework import serializers

from listings.models import Listing

from .models import Booking, HandoverCode


class BookingSerializer(serializers.ModelSerializer):
    """Serialize Booking instances for API usage."""

    listing_title = serializers.ReadOnlyField(source="listing.title")
    owner_username = serializers.ReadOnlyField(source="owner.username")
    renter_username = serializers.ReadOnlyField(source="renter.username")
    invoice_number = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = (
            "id",
            "listing",
            "listing_title",
            "owner",
            "owner_username",
            "renter",
            "renter_username",
            "start_date",
            "end_date",
            "total_price",
            "platform_fee",
            "owner_amount",
            "late_fee",
            "status",
            "payment_status",
            "pickup_status",
            "delivery_status",
            "return_status",
            "payout_status",
            "pickup_date",
            "delivery_date",
            "return_date",
            "payout_date",
            "drop_location",
            "cancel_reason",
            "notes",
            "invoice_number",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_invoice_number(self, obj: Booking) -> str | None:
        invoice = getattr(obj, "invoice", None)
        return invoice.number if invoice is not None else None


class RentalRequestSerializer(serializers.Serializer):
    """Input for a renter's rental request."""

    listing = serializers.PrimaryKeyRelatedField(queryset=Listing.objects.all())
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    total_price = serializers.DecimalField(max_digits=10, decimal_places=2)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ConfirmPaymentSerializer(serializers.Serializer):
    payment_intent_id = serializers.CharField()


class ConfirmPickupSerializer(serializers.Serializer):
    payout_destination = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        help_text="Stripe connected account that receives the owner payout.",
    )


class CompleteSerializer(serializers.Serializer):
    drop_location = serializers.CharField(required=False, allow_blank=True, default="")


class GenerateCodeSerializer(serializers.Serializer):
    user_type = serializers.ChoiceField(
        choices=HandoverCode.Party.choices,
        help_text="Party who receives the code by email.",
    )


class VerifyCodeSerializer(serializers.Serializer):
    otp = serializers.CharField(required=False, allow_blank=True, default="")
    user_type = serializers.ChoiceField(
        choices=HandoverCode.Party.choices,
        required=False,
        allow_null=True,
        default=None,
    )
    drop_location = serializers.CharField(required=False, allow_blank=True, default="")


class AvailabilityCheckSerializer(serializers.Serializer):
    listing = serializers.PrimaryKeyRelatedField(queryset=Listing.objects.filter(is_active=True))
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs["start_date"] >= attrs["end_date"]:
            raise serializers.ValidationError({"end_date": "End date must be after start date."})
        return attrs


class AvailabilityCalendarSerializer(serializers.Serializer):
    """Optional window for the calendar; defaults to six months from this month."""

    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)


class UnavailablePeriodSerializer(serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = ("start_date", "end_date", "status", "payment_status")
        read_only_fields = fields
