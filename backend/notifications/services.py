from __future__ import annotations

import logging
from typing import Any

from .models import Notification

logger = logging.getLogger(__name__)


def create_notification(
    user,
    type_: str,
    message: str,
    *,
    booking=None,
    metadata: dict[str, Any] | None = None,
) -> Notification:
    """Persist an in-app notification for ``user``."""
    notification = Notification.objects.create(
        user=user,
        type=type_,
        message=message,
        booking=booking,
        metadata=metadata or {},
    )
    logger.info(
        "notifications: created %s",
        type_,
        extra={"user_id": getattr(user, "pk", None), "booking_id": getattr(booking, "pk", None)},
    )
    return notification


def mark_read(notification: Notification, *, is_read: bool = True) -> Notification:
    if notification.is_read != is_read:
        notification.is_read = is_read
        notification.save(update_fields=["is_read"])
    return notification


def mark_all_read(user) -> int:
    return Notification.objects.filter(user=user, is_read=False).update(is_read=True)
