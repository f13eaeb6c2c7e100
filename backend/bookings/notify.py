"""
Booking notifications: one function per lifecycle event.

Each event writes in-app notifications and queues the matching emails.
Every call is best-effort, so a notifier failure never undoes the state
change that triggered it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from core.side_effects import best_effort
from notifications import tasks as notification_tasks
from notifications.models import Notification
from notifications.services import create_notification

from .models import Booking, HandoverCode

T = Notification.Type


def _title(booking: Booking) -> str:
    return getattr(booking.listing, "title", None) or f"booking #{booking.pk}"


def _money(amount: Decimal | None) -> str:
    return f"{(amount or Decimal('0')):.2f}"


def _send(
    user,
    type_: str,
    message: str,
    *,
    booking: Booking,
    action: str = "",
    subject: str | None = None,
    **extra: Any,
) -> None:
    metadata = {"event": type_, "action": action, "booking_id": booking.pk}
    metadata.update({key: str(value) for key, value in extra.items()})
    best_effort(
        f"notifications: create {type_}",
        create_notification,
        user,
        type_,
        message,
        booking=booking,
        metadata=metadata,
        booking_id=booking.pk,
    )
    if subject:
        best_effort(
            f"notifications: queue {type_} email",
            notification_tasks.send_booking_email.delay,
            user.pk,
            booking.pk,
            type_,
            subject,
            message,
            booking_id=booking.pk,
        )


def rental_requested(booking: Booking) -> None:
    _send(
        booking.owner,
        T.RENTAL_REQUEST,
        f"{booking.renter.display_name} wants to rent {_title(booking)}.",
        booking=booking,
        action="review_request",
        subject=f"New rental request for {_title(booking)}",
    )


def rental_accepted(booking: Booking, invoice=None) -> None:
    extra = {"invoice_number": invoice.number} if invoice is not None else {}
    _send(
        booking.renter,
        T.RENTAL_ACCEPTED,
        f"Your request for {_title(booking)} was accepted. Complete payment of "
        f"{_money(booking.total_price)} to confirm it.",
        booking=booking,
        action="complete_payment",
        subject=f"Your rental of {_title(booking)} was accepted",
        **extra,
    )


def rental_rejected(booking: Booking) -> None:
    _send(
        booking.renter,
        T.RENTAL_REJECTED,
        f"Your request for {_title(booking)} was declined: {booking.cancel_reason}",
        booking=booking,
        subject=f"Your rental of {_title(booking)} was declined",
    )


def payment_confirmed(booking: Booking, payment) -> None:
    _send(
        booking.renter,
        T.PAYMENT_CONFIRMATION,
        f"Payment of {_money(payment.amount)} for {_title(booking)} received. Your booking is confirmed.",
        booking=booking,
        action="schedule_pickup",
        subject=f"Payment received for {_title(booking)}",
        payment_id=payment.gateway_payment_id,
    )
    _send(
        booking.owner,
        T.PAYMENT_CONFIRMATION,
        f"{booking.renter.display_name} paid for {_title(booking)}. Prepare the item for pickup.",
        booking=booking,
        action="prepare_pickup",
        subject=f"Booking confirmed for {_title(booking)}",
    )


def booking_cancelled(booking: Booking, *, cancelled_by) -> None:
    other = booking.owner if cancelled_by.pk == booking.renter_id else booking.renter
    _send(
        other,
        T.BOOKING_CANCELLED,
        f"The booking for {_title(booking)} was cancelled. {booking.cancel_reason}".strip(),
        booking=booking,
        subject=f"Booking for {_title(booking)} cancelled",
    )


def payout_update(booking: Booking, *, error: str | None = None) -> None:
    if error:
        message = f"Your payout of {_money(booking.owner_amount)} for {_title(booking)} failed: {error}"
    else:
        message = f"Your payout of {_money(booking.owner_amount)} for {_title(booking)} is on its way."
    _send(
        booking.owner,
        T.PAYOUT_UPDATE,
        message,
        booking=booking,
        action="check_payout_account" if error else "",
        subject=f"Payout update for {_title(booking)}",
    )


_LABELS = {HandoverCode.Kind.DELIVERY: "pickup", HandoverCode.Kind.RETURN: "return"}

_REQUESTED = {
    HandoverCode.Kind.DELIVERY: T.PICKUP_REQUESTED,
    HandoverCode.Kind.RETURN: T.RETURN_REQUESTED,
}
_INITIATED = {
    HandoverCode.Kind.DELIVERY: T.PICKUP_INITIATED,
    HandoverCode.Kind.RETURN: T.RETURN_INITIATED,
}
_PENDING = {
    HandoverCode.Kind.DELIVERY: T.PICKUP_VERIFICATION_PENDING,
    HandoverCode.Kind.RETURN: T.RETURN_VERIFICATION_PENDING,
}


def code_issued(booking: Booking, kind: str, recipient: str, actor) -> None:
    """Tell the party who did not receive the code who started the handover."""
    label = _LABELS[kind]
    if recipient == HandoverCode.Party.RENTER:
        notified, holder, type_ = booking.owner, booking.renter, _REQUESTED[kind]
    else:
        notified, holder, type_ = booking.renter, booking.owner, _INITIATED[kind]
    starter = "You" if getattr(actor, "pk", None) == notified.pk else actor.display_name
    _send(
        notified,
        type_,
        f"{starter} started the {label} of {_title(booking)}. "
        f"{holder.display_name} received the code; ask them for it and confirm it.",
        booking=booking,
        action=f"verify_{label}_code",
        started_by=getattr(actor, "pk", ""),
    )


def verification_pending(booking: Booking, kind: str, verified_party: str) -> None:
    label = _LABELS[kind]
    if verified_party == HandoverCode.Party.OWNER:
        waiting, verifier = booking.renter, booking.owner
    else:
        waiting, verifier = booking.owner, booking.renter
    _send(
        waiting,
        _PENDING[kind],
        f"{verifier.display_name} confirmed the {label} code for {_title(booking)}. "
        f"Confirm it too to finish the {label}.",
        booking=booking,
        action=f"verify_{label}_code",
    )


def pickup_completed(booking: Booking) -> None:
    for user in (booking.owner, booking.renter):
        _send(
            user,
            T.PICKUP_COMPLETED,
            f"Pickup of {_title(booking)} is complete. The rental is now active until "
            f"{booking.end_date:%Y-%m-%d %H:%M}.",
            booking=booking,
            subject=f"Pickup complete for {_title(booking)}",
        )


def return_completed(booking: Booking) -> None:
    if booking.return_status == Booking.ReturnStatus.LATE:
        message = (
            f"{_title(booking)} was returned late. A late fee of {_money(booking.late_fee)} applies."
        )
    else:
        message = f"{_title(booking)} was returned on time. The rental is complete."
    for user in (booking.owner, booking.renter):
        _send(
            user,
            T.RETURN_COMPLETED,
            message,
            booking=booking,
            subject=f"Return complete for {_title(booking)}",
            late_fee=_money(booking.late_fee),
        )


def return_reminder(booking: Booking) -> None:
    _send(
        booking.renter,
        T.RETURN_REMINDER,
        f"Reminder: {_title(booking)} is due back by {booking.end_date:%Y-%m-%d %H:%M}.",
        booking=booking,
        action="schedule_return",
        subject=f"{_title(booking)} is due back soon",
    )


def return_deadline(booking: Booking) -> None:
    _send(
        booking.renter,
        T.RETURN_DEADLINE,
        f"The return deadline for {_title(booking)} has passed. Return it now to avoid late fees.",
        booking=booking,
        action="return_item",
        subject=f"Return deadline reached for {_title(booking)}",
    )
    _send(
        booking.owner,
        T.RETURN_DEADLINE,
        f"The return deadline for {_title(booking)} has passed.",
        booking=booking,
    )


def overdue_warning(booking: Booking) -> None:
    _send(
        booking.renter,
        T.OVERDUE_WARNING,
        f"{_title(booking)} is overdue. A late fee of {_money(booking.late_fee)} now applies "
        f"and grows each day until it is returned.",
        booking=booking,
        action="return_item",
        subject=f"{_title(booking)} is overdue",
        late_fee=_money(booking.late_fee),
    )
    _send(
        booking.owner,
        T.OVERDUE_WARNING,
        f"{_title(booking)} has not been returned on time. The renter has been warned.",
        booking=booking,
        late_fee=_money(booking.late_fee),
    )


def escalated_overdue(booking: Booking, days_late: int) -> None:
    _send(
        booking.renter,
        T.ESCALATED_OVERDUE,
        f"{_title(booking)} is {days_late} day(s) overdue. Your late fee is now "
        f"{_money(booking.late_fee)}.",
        booking=booking,
        action="return_item",
        subject=f"{_title(booking)} is {days_late} day(s) overdue",
        days_late=days_late,
        late_fee=_money(booking.late_fee),
    )
