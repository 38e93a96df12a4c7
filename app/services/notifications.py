from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from typing import Any

from app.settings import get_settings

logger = logging.getLogger("app.notifications")


class NotificationEvent(str, enum.Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_APPROVED = "TASK_APPROVED"
    TASK_COMPLETED = "TASK_COMPLETED"


NotificationSink = Callable[[int, NotificationEvent, dict[str, Any]], None]


def log_notification_sink(user_id: int, event: NotificationEvent, payload: dict[str, Any]) -> None:
    logger.info(
        "notification_dispatched",
        extra={"user_id": user_id, "event": event.value, "payload": payload},
    )


# Process-wide registry; delivery transports register here at startup and tests reset it.
_sink: NotificationSink = log_notification_sink


def register_notification_sink(sink: NotificationSink) -> None:
    global _sink
    _sink = sink


def reset_notification_sink() -> None:
    global _sink
    _sink = log_notification_sink


def get_notification_sink() -> NotificationSink:
    return _sink


def notify_user(user_id: int | None, event: NotificationEvent, payload: dict[str, Any] | None = None) -> bool:
    """Best-effort delivery. Returns whether the sink accepted the event; never raises."""
    if user_id is None or not get_settings().notifications_enabled:
        return False

    try:
        get_notification_sink()(user_id, event, dict(payload or {}))
    except Exception:
        logger.exception(
            "notification_send_failed",
            extra={"user_id": user_id, "event": event.value},
        )
        return False
    return True
