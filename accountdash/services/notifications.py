"""
Per-session notification queue (success / info / error messages).
"""

from collections import deque
from collections.abc import Callable

from structlog import get_logger

from accountdash.models.domain import Notification, NotificationType

logger = get_logger(__name__)

Listener = Callable[[Notification], None]


class Notifier:
    """Queues user-facing messages until the dashboard drains them."""

    def __init__(self, max_pending: int = 50) -> None:
        self._pending: deque[Notification] = deque(maxlen=max_pending)
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def notify(self, type: NotificationType, message: str) -> Notification:
        notification = Notification(type=type, message=message)
        self._pending.append(notification)
        logger.info("notification_queued", type=type.value, message=message)
        for listener in self._listeners:
            try:
                listener(notification)
            except Exception as exc:
                logger.warning("notification_listener_failed", error=str(exc))
        return notification

    def show_success(self, message: str) -> Notification:
        return self.notify(NotificationType.SUCCESS, message)

    def show_info(self, message: str) -> Notification:
        return self.notify(NotificationType.INFO, message)

    def show_error(self, message: str) -> Notification:
        return self.notify(NotificationType.ERROR, message)

    def pending(self) -> list[Notification]:
        return list(self._pending)

    def drain(self) -> list[Notification]:
        """Return and forget all queued notifications."""
        drained = list(self._pending)
        self._pending.clear()
        return drained
