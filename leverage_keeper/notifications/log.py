"""Notifier that writes to the logging tree; always available."""
import logging

from ..models import Notification, Severity

logger = logging.getLogger(__name__)

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class LogNotifier:
    async def send(self, notification: Notification) -> bool:
        logger.log(
            _LEVELS[notification.severity],
            "[%s] %s -> %s: %s",
            notification.category.value,
            notification.header,
            notification.recipient or "-",
            notification.detail,
        )
        return True
