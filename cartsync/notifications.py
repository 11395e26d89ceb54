"""
Non-blocking user-facing notifications.

Sync failures never interrupt a cart action. They are posted here and the UI
layer decides how to show them (toast, banner, log line). Listeners are
called synchronously; a failing listener is logged and skipped so one broken
renderer cannot take down the cart.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    """A single message for the user."""
    level: NotificationLevel
    message: str
    hint: Optional[str] = None
    kind: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[Notification], None]


class Notifier:
    """
    Notification channel for one session.

    Usage:
        notifier = Notifier()
        notifier.subscribe(lambda n: print(n.level, n.message))
        notifier.error("Failed to update quantity", kind="transient")
    """

    def __init__(self, history_limit: int = 50):
        self.history_limit = history_limit
        self.history: List[Notification] = []
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(
        self,
        level: NotificationLevel,
        message: str,
        hint: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> Notification:
        notification = Notification(level=level, message=message, hint=hint, kind=kind)
        self.history.append(notification)
        if len(self.history) > self.history_limit:
            del self.history[: len(self.history) - self.history_limit]

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as exc:
                logger.warning("Notification listener failed: %s", exc)
        return notification

    def success(self, message: str) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message)

    def warning(self, message: str, hint: Optional[str] = None, kind: Optional[str] = None) -> Notification:
        return self.notify(NotificationLevel.WARNING, message, hint=hint, kind=kind)

    def error(self, message: str, hint: Optional[str] = None, kind: Optional[str] = None) -> Notification:
        return self.notify(NotificationLevel.ERROR, message, hint=hint, kind=kind)
