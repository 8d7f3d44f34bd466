"""Non-blocking, user-visible notifications (the toast of the web client)."""
import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, List

from pydantic import BaseModel, Field

from family_chat.config import settings

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    level: NotificationLevel
    title: str
    description: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


NotificationListener = Callable[[Notification], None]

_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


class Notifier:
    def __init__(self, history_size: int = None):
        self._history: Deque[Notification] = deque(maxlen=history_size or settings.notification_history_size)
        self._listeners: List[NotificationListener] = []

    @property
    def history(self) -> List[Notification]:
        return list(self._history)

    def add_listener(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: NotificationListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def notify(self, level: NotificationLevel, title: str, description: str) -> Notification:
        notification = Notification(level=level, title=title, description=description)
        logger.log(_LOG_LEVELS[level], f"{title}: {description}")
        self._history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
        return notification

    def info(self, title: str, description: str) -> Notification:
        return self.notify(NotificationLevel.INFO, title, description)

    def warning(self, title: str, description: str) -> Notification:
        return self.notify(NotificationLevel.WARNING, title, description)

    def error(self, title: str, description: str) -> Notification:
        return self.notify(NotificationLevel.ERROR, title, description)
