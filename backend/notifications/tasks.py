from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.utils import timezone

from notifications.models import NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _frontend_link(path: str) -> str:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    return f"{frontend_origin}{path}" if frontend_origin else ""


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    body: str,
    user_id: int | None = None,
    booking_id: int | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    message = EmailMultiAlternatives(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        error_text = str(exc) or exc.__class__.__name__
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "user_id": user_id},
        )
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error=error_text,
        )
        return False

    _log_notification(
        "email",
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


@shared_task(queue="emails")
def send_booking_email(user_id: int, booking_id: int, type_: str, subject: str, message: str):
    """Email a booking participant the same text they see in-app."""
    user = _get_user(user_id)
    if not user:
        return False
    site_name = getattr(settings, "SITE_NAME", "Rentals")
    link = _frontend_link(f"/bookings/{booking_id}")
    body_lines = [f"Hi {user.display_name},", "", message]
    if link:
        body_lines += ["", f"View the booking: {link}"]
    body_lines += ["", f"The {site_name} team"]
    return _send_email_logged(
        type_,
        to_email=user.email,
        subject=subject,
        body="\n".join(body_lines),
        user_id=user_id,
        booking_id=booking_id,
    )


@shared_task(queue="emails")
def send_handover_code_email(user_id: int, booking_id: int, kind: str, code: str, expires_at: str):
    """Deliver a pickup/return handover code to the party who will read it out."""
    user = _get_user(user_id)
    if not user:
        return False
    label = "pickup" if kind == "delivery" else "return"
    try:
        expiry = timezone.localtime(datetime.fromisoformat(expires_at)).strftime("%H:%M")
    except (TypeError, ValueError):
        expiry = expires_at
    body = (
        f"Hi {user.display_name},\n\n"
        f"Your {label} code for booking #{booking_id} is {code}.\n"
        f"Share it with the other party at handover; both of you must confirm it "
        f"before {expiry}.\n"
    )
    return _send_email_logged(
        f"{kind}_code",
        to_email=user.email,
        subject=f"Your {label} code for booking #{booking_id}",
        body=body,
        user_id=user_id,
        booking_id=booking_id,
    )
