"""Stripe webhook endpoint."""

from __future__ import annotations

import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from bookings import lifecycle

logger = logging.getLogger(__name__)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Handle Stripe webhook callbacks for booking charges."""
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=endpoint_secret,
        )
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.error.SignatureVerificationError:
        return Response(status=status.HTTP_400_BAD_REQUEST)

    event_type = event.get("type")
    data_object = event.get("data", {}).get("object", {}) or {}

    if event_type == "payment_intent.succeeded":
        lifecycle.handle_payment_succeeded(data_object)
    elif event_type == "payment_intent.payment_failed":
        lifecycle.handle_payment_failed(data_object)
    else:
        logger.debug("stripe_webhook: ignoring event", extra={"event_type": event_type})
    return Response(status=status.HTTP_200_OK)
