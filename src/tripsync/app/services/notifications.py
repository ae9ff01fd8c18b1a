"""User-facing notification sinks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class NotificationSink(Protocol):
    def notify(self, message: str, severity: Severity) -> None: ...


class LoggingSink:
    """Route notifications to the log; used when no UI is attached."""

    _levels = {
        Severity.SUCCESS: logging.INFO,
        Severity.INFO: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.ERROR: logging.ERROR,
    }

    def notify(self, message: str, severity: Severity) -> None:
        logger.log(self._levels.get(severity, logging.INFO), "[%s] %s", severity.value, message)


@dataclass(slots=True, frozen=True)
class Notice:
    message: str
    severity: Severity


class RecordingSink:
    """Keep every notification in memory."""

    def __init__(self) -> None:
        self.notices: list[Notice] = []

    def notify(self, message: str, severity: Severity) -> None:
        self.notices.append(Notice(message, severity))

    def messages(self, severity: Severity | None = None) -> list[str]:
        return [
            notice.message
            for notice in self.notices
            if severity is None or notice.severity is severity
        ]


class SafeNotifier:
    """Wrap a sink so that ``notify`` never raises."""

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink or LoggingSink()

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        try:
            self._sink.notify(message, severity)
        except Exception:
            logger.warning("Notification sink failed for %r", message, exc_info=True)

    def success(self, message: str) -> None:
        self.notify(message, Severity.SUCCESS)

    def error(self, message: str) -> None:
        self.notify(message, Severity.ERROR)

    def warning(self, message: str) -> None:
        self.notify(message, Severity.WARNING)


__all__ = [
    "LoggingSink",
    "Notice",
    "NotificationSink",
    "RecordingSink",
    "SafeNotifier",
    "Severity",
]
