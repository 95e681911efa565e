"""
Transient status messages shown to the person in front of the kiosk.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from config import NOTIFICATION_HISTORY

logger = logging.getLogger(__name__)


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


@dataclass
class Notification:
    message: str
    level: Level
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_error(self) -> bool:
        return self.level in (Level.WARNING, Level.ERROR)


class Notifier:
    """
    Keeps the last few notifications and forwards each one to an optional sink
    (a display, a speaker, a test probe).
    """

    def __init__(self, sink: Optional[Callable[[Notification], None]] = None, history: int = NOTIFICATION_HISTORY):
        self.sink = sink
        self._history = deque(maxlen=history)

    def notify(self, message: str, level: Level = Level.INFO) -> Notification:
        notification = Notification(message, Level(level))
        self._history.append(notification)
        logger.log(_LOG_LEVELS[notification.level], f"[{notification.level.value}] {message}")
        if self.sink is not None:
            self.sink(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.notify(message, Level.SUCCESS)

    def info(self, message: str) -> Notification:
        return self.notify(message, Level.INFO)

    def warning(self, message: str) -> Notification:
        return self.notify(message, Level.WARNING)

    def error(self, message: str) -> Notification:
        return self.notify(message, Level.ERROR)

    @property
    def latest(self) -> Optional[Notification]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> List[Notification]:
        return list(self._history)

    def clear(self):
        self._history.clear()
