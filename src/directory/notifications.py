"""
User-facing notifications emitted by the DirectoryController.

A notification is the headless equivalent of a UI toast: a short title,
a description, and a level. The controller hands each one to a notifier
callable; the default notifier writes it to the structured log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, TypeVar

import structlog

from .errors import DirectoryError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class NotificationLevel(Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    level: NotificationLevel = NotificationLevel.INFO

    @property
    def is_error(self) -> bool:
        return self.level is NotificationLevel.ERROR

    def to_dict(self) -> dict:
        return {"title": self.title, "description": self.description, "level": self.level.value}


Notifier = Callable[[Notification], None]


def log_notifier(notification: Notification) -> None:
    """Default notifier: structured log line per notification."""
    if notification.is_error:
        logger.warning("Directory notification", title=notification.title,
                       description=notification.description)
    else:
        logger.info("Directory notification", title=notification.title,
                    description=notification.description)


class NotificationLog:
    """Notifier that keeps every notification in memory (handy for the API layer and tests)."""

    def __init__(self, forward: Optional[Notifier] = None):
        self.items: List[Notification] = []
        self._forward = forward

    def __call__(self, notification: Notification) -> None:
        self.items.append(notification)
        if self._forward is not None:
            self._forward(notification)

    @property
    def last(self) -> Optional[Notification]:
        return self.items[-1] if self.items else None

    def clear(self) -> None:
        self.items.clear()


@dataclass
class ActionResult(Generic[T]):
    """
    Outcome of one controller operation.

    ``ok`` is True only when the remote work succeeded and the local delta
    was committed. On failure ``error`` holds the classified DirectoryError.
    """
    ok: bool
    notification: Notification
    value: Optional[T] = None
    error: Optional[DirectoryError] = None
    details: dict = field(default_factory=dict)

    @property
    def message(self) -> str:
        return self.notification.description

    @classmethod
    def success(cls, title: str, description: str, value: Any = None, **details: Any) -> "ActionResult":
        return cls(ok=True, notification=Notification(title, description), value=value, details=details)

    @classmethod
    def failure(cls, title: str, error: DirectoryError, **details: Any) -> "ActionResult":
        return cls(
            ok=False,
            notification=Notification(title, error.message, NotificationLevel.ERROR),
            error=error,
            details=details,
        )
