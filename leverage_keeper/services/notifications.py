"""Best-effort notification fan-out."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from ..interfaces.notifier import Notifier
from ..models import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Deliver a notification to every configured channel.

    Delivery failures are logged and swallowed: a notification must never
    undo the state change that triggered it.
    """

    def __init__(self, notifiers: Iterable[Notifier] = ()) -> None:
        self._notifiers: list[Notifier] = list(notifiers)

    def add(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    async def dispatch(self, notification: Notification) -> int:
        """Return how many channels accepted the notification."""
        delivered = 0
        for notifier in self._notifiers:
            try:
                if await notifier.send(notification):
                    delivered += 1
            except Exception as e:
                logger.error(
                    "Notifier %s failed for '%s': %s",
                    type(notifier).__name__,
                    notification.header,
                    e,
                )
        return delivered
