"""
Transient user notifications, the toast-equivalent of the session core.
"""

import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger("notebook_session.notifications")


class Level(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Level.SUCCESS: logging.INFO,
    Level.INFO: logging.INFO,
    Level.WARNING: logging.WARNING,
    Level.ERROR: logging.ERROR,
}


class Notification(BaseModel):
    level: Level
    message: str
    created_at: datetime = Field(default_factory=datetime.now)


class Notifier:
    """
    Collects notifications and forwards them to listeners.

    Every notification is logged and kept in a bounded history so a UI that
    attaches late can still show the most recent ones.
    """

    def __init__(self, limit: int = 100):
        self.history: deque[Notification] = deque(maxlen=limit)
        self._listeners: list[Callable[[Notification], None]] = []

    def listen(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unlisten():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unlisten

    def notify(self, level: Level, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        logger.log(_LOG_LEVELS[level], message)
        self.history.append(notification)
        for listener in list(self._listeners):
            listener(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.notify(Level.SUCCESS, message)

    def info(self, message: str) -> Notification:
        return self.notify(Level.INFO, message)

    def warning(self, message: str) -> Notification:
        return self.notify(Level.WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(Level.ERROR, message)

    @property
    def last(self) -> Optional[Notification]:
        return self.history[-1] if self.history else None

    def messages(self) -> list[str]:
        return [n.message for n in self.history]
