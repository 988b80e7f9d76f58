"""Notifier protocol — notification channel abstraction."""
from typing import Protocol

from ..models import Notification


class Notifier(Protocol):
    """Abstract interface for delivering notifications (best effort)."""

    async def send(self, notification: Notification) -> bool: ...
