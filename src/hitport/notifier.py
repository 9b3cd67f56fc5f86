import logging
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    EXPORT_DONE = "export-done"
    IMPORT_DONE = "import-done"
    IMPORT_ERROR = "import-error"


class Notifier(Protocol):
    def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Reports completions to the log. Delivery to people is someone else's job."""

    def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        if kind is NotificationKind.IMPORT_ERROR:
            logger.error("[%s] %s", kind.value, payload)
        else:
            logger.info("[%s] %s", kind.value, payload)


def notify_safely(notifier: Notifier | None, kind: NotificationKind, payload: dict[str, Any]) -> None:
    """Fire and forget: a failing notifier is logged and never affects the caller."""
    if notifier is None:
        return
    try:
        notifier.notify(kind, payload)
    except Exception:
        logger.exception("Notifier failed to deliver %s", kind.value)
