from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Literal

from tenant_config.context import get_correlation_id
from tenant_config.core.events import event_bus
from tenant_config.metrics import observe_notification

NotificationLevel = Literal["success", "error", "info"]
Notifier = Callable[[NotificationLevel, str], None]

published_notifications: list[dict[str, Any]] = []


def notify(level: NotificationLevel, message: str) -> None:
    notification = {
        "level": level,
        "message": message,
        "correlation_id": get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    published_notifications.append(notification)
    observe_notification(level)
    event_bus.publish("tenant_config.notification", notification)
