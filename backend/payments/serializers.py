from rest_framework import serializers

from .models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = (
            "id",
            "booking",
            "gateway",
            "gateway_payment_id",
            "amount",
            "currency",
            "platform_fee",
            "owner_amount",
            "status",
            "failure_reason",
            "paid_at",
            "payout_status",
            "refund_status",
            "refund_amount",
            "created_at",
        )
        read_only_fields = fields
