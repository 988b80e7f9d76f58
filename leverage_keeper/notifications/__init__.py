"""Notification channels."""
from .email import EmailNotifier
from .log import LogNotifier
from .telegram import TelegramNotifier

__all__ = ["TelegramNotifier", "EmailNotifier", "LogNotifier"]
