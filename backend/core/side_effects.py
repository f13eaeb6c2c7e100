"""Helpers for side effects that must never abort the primary operation."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def best_effort(
    label: str,
    func: Callable[..., T],
    /,
    *args: Any,
    booking_id: int | None = None,
    **kwargs: Any,
) -> T | None:
    """
    Run ``func`` and return its result, or None when it raises.

    Failures are logged with the operation label and booking id so a failed
    notification, document render or queue hand-off stays visible without
    rolling back the state change that triggered it.
    """
    try:
        return func(*args, **kwargs)
    except Exception:
        logger.warning(
            "%s failed",
            label,
            extra={"booking_id": booking_id, "operation": label},
            exc_info=True,
        )
        return None
