"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging
from dataclasses import asdict

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from documents.serializers import InvoiceSerializer
from listings.models import Listing
from payments.serializers import PaymentSerializer
from payments.stripe_api import (
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
)

from . import handover, lifecycle
from .domain import (
    BookingNotFound,
    BookingPermissionDenied,
    InvalidBookingState,
    InvalidHandoverCode,
    PaymentNotCompleted,
    calendar_window,
)
from .models import Booking
from .overdue import scan_overdue_rentals
from .selectors import blocking_bookings
from .serializers import (
    AvailabilityCalendarSerializer,
    AvailabilityCheckSerializer,
    BookingSerializer,
    CompleteSerializer,
    ConfirmPaymentSerializer,
    ConfirmPickupSerializer,
    GenerateCodeSerializer,
    ReasonSerializer,
    RentalRequestSerializer,
    UnavailablePeriodSerializer,
    VerifyCodeSerializer,
)

logger = logging.getLogger(__name__)

HANDOVER_KIND = r"(?P<kind>delivery|return)"

DOMAIN_ERRORS = (
    ValidationError,
    BookingNotFound,
    BookingPermissionDenied,
    InvalidBookingState,
    InvalidHandoverCode,
    PaymentNotCompleted,
    StripeConfigurationError,
    StripeTransientError,
    StripePaymentError,
)


def _error_response(exc: Exception) -> Response:
    """Translate a domain or gateway error into the HTTP response clients expect."""
    if isinstance(exc, ValidationError):
        if hasattr(exc, "error_dict"):
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response({"detail": " ".join(exc.messages)}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, BookingNotFound):
        return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, BookingPermissionDenied):
        return Response({"detail": str(exc)}, status=status.HTTP_403_FORBIDDEN)
    if isinstance(exc, InvalidBookingState):
        return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, StripeTransientError):
        return Response(
            {"detail": "Temporary payment issue; please retry."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, StripeConfigurationError):
        logger.error("payments: stripe is not configured", exc_info=exc)
        return Response(
            {"detail": "Payment processor is not configured; please try again later."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    # InvalidHandoverCode, PaymentNotCompleted, StripePaymentError
    return Response({"detail": str(exc) or "Request failed."}, status=status.HTTP_400_BAD_REQUEST)


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    """Bookings of the caller plus every lifecycle transition."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated,)
    filterset_fields = ["status", "payment_status", "return_status", "listing"]
    ordering_fields = ["created_at", "start_date", "end_date"]

    def get_queryset(self):
        """Restrict bookings to the authenticated participant; staff see all."""
        user = self.request.user
        qs = Booking.objects.select_related("listing", "owner", "renter")
        if not user.is_staff:
            qs = qs.filter(Q(owner=user) | Q(renter=user))
        return qs.order_by("-created_at")

    def _input(self, serializer_class):
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    def _booking_data(self, booking: Booking) -> dict:
        return self.get_serializer(booking).data

    @action(detail=False, methods=["post"], url_path="rental-request")
    def rental_request(self, request, *args, **kwargs):
        data = self._input(RentalRequestSerializer)
        try:
            booking = lifecycle.create_rental_request(renter=request.user, **data)
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(self._booking_data(booking), status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        try:
            result = lifecycle.accept_booking(pk, actor=request.user)
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        invoice = InvoiceSerializer(result.invoice).data if result.invoice else None
        return Response(
            {"booking": self._booking_data(result.booking), "invoice": invoice},
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        data = self._input(ReasonSerializer)
        try:
            booking = lifecycle.reject_booking(pk, actor=request.user, reason=data["reason"])
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(self._booking_data(booking), status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, pk=None):
        """Create the Stripe PaymentIntent the renter's client confirms."""
        try:
            result = lifecycle.start_payment(pk, actor=request.user)
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(
            {
                "booking": self._booking_data(result.booking),
                "payment": PaymentSerializer(result.payment).data,
                "client_secret": result.client_secret,
                "publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path="confirm-payment")
    def confirm_payment(self, request, pk=None):
        data = self._input(ConfirmPaymentSerializer)
        try:
            result = lifecycle.confirm_payment(
                pk, data["payment_intent_id"], actor=request.user
            )
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        invoice = InvoiceSerializer(result.invoice).data if result.invoice else None
        return Response(
            {
                "booking": self._booking_data(result.booking),
                "payment": PaymentSerializer(result.payment).data,
                "invoice": invoice,
                "already_processed": result.already_processed,
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["put"], url_path="confirm-pickup")
    def confirm_pickup(self, request, pk=None):
        """Owner-only pickup confirmation without the code exchange."""
        data = self._input(ConfirmPickupSerializer)
        try:
            result = lifecycle.confirm_pickup(
                pk, actor=request.user, payout_destination=data["payout_destination"]
            )
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(
            {
                "booking": self._booking_data(result.booking),
                "transfer_id": result.transfer_id,
                "payout_error": result.payout_error,
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["put"], url_path="complete")
    def complete(self, request, pk=None):
        data = self._input(CompleteSerializer)
        try:
            booking = lifecycle.complete_booking(
                pk, actor=request.user, drop_location=data["drop_location"]
            )
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(self._booking_data(booking), status=status.HTTP_200_OK)

    @action(detail=True, methods=["put"], url_path="cancel")
    def cancel(self, request, pk=None):
        """Cancel a booking (owner or renter); paid bookings are refunded."""
        data = self._input(ReasonSerializer)
        try:
            result = lifecycle.cancel_booking(pk, actor=request.user, reason=data["reason"])
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(
            {
                "booking": self._booking_data(result.booking),
                "refund": {"refund_id": result.refund_id, "error": result.refund_error},
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path=f"{HANDOVER_KIND}/generate-otp")
    def generate_otp(self, request, pk=None, kind=None):
        data = self._input(GenerateCodeSerializer)
        try:
            result = handover.issue_code(pk, kind, actor=request.user, recipient=data["user_type"])
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        return Response(
            {
                "kind": result.kind,
                "recipient": result.recipient,
                "expires_at": result.expires_at,
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path=f"{HANDOVER_KIND}/verify-otp")
    def verify_otp(self, request, pk=None, kind=None):
        data = self._input(VerifyCodeSerializer)
        try:
            result = handover.verify_code(
                pk,
                kind,
                actor=request.user,
                code=data["otp"],
                party=data["user_type"],
                drop_location=data["drop_location"],
            )
        except DOMAIN_ERRORS as exc:
            return _error_response(exc)
        payload = {
            "owner_verified": result.owner_verified,
            "renter_verified": result.renter_verified,
            "completed": result.completed,
            "booking": self._booking_data(result.booking),
        }
        if result.payout is not None:
            payload["transfer_id"] = result.payout.transfer_id
            payload["payout_error"] = result.payout.error
        return Response(payload, status=status.HTTP_200_OK)

    @action(
        detail=False,
        methods=["get"],
        url_path="availability/check",
        permission_classes=[permissions.AllowAny],
    )
    def availability_check(self, request, *args, **kwargs):
        """Report whether a listing is free for the requested [start, end) range."""
        query = AvailabilityCheckSerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        conflicts = blocking_bookings(data["listing"].pk, data["start_date"], data["end_date"])
        count = conflicts.count()
        return Response(
            {
                "listing": data["listing"].pk,
                "available": count == 0,
                "conflicting_bookings": count,
            },
            status=status.HTTP_200_OK,
        )

    @action(
        detail=False,
        methods=["get"],
        url_path=r"availability/calendar/(?P<listing_id>\d+)",
        permission_classes=[permissions.AllowAny],
    )
    def availability_calendar(self, request, listing_id=None, *args, **kwargs):
        """Return the periods a listing is taken within the calendar window."""
        listing = get_object_or_404(Listing.objects.filter(is_active=True), pk=listing_id)
        query = AvailabilityCalendarSerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        try:
            start, end = calendar_window(
                query.validated_data.get("start"), query.validated_data.get("end")
            )
        except ValidationError as exc:
            return _error_response(exc)
        periods = blocking_bookings(listing.pk, start, end)
        return Response(
            {
                "listing": listing.pk,
                "range": {"start": start, "end": end},
                "unavailable_periods": UnavailablePeriodSerializer(periods, many=True).data,
                "total_bookings": len(periods),
            },
            status=status.HTTP_200_OK,
        )

    @action(
        detail=False,
        methods=["post"],
        url_path="check-overdue",
        permission_classes=[permissions.IsAdminUser],
    )
    def check_overdue(self, request, *args, **kwargs):
        """Run the overdue monitor now instead of waiting for the next beat."""
        summary = scan_overdue_rentals()
        return Response(asdict(summary), status=status.HTTP_200_OK)
