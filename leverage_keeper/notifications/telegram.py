"""Telegram notification service."""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig
from ..models import Notification, Severity

logger = logging.getLogger(__name__)

_ICONS = {
    Severity.INFO: "ℹ️",
    Severity.WARNING: "⚠️",
    Severity.ERROR: "🚨",
}


def render_message(notification: Notification) -> str:
    """HTML body: bold header, detail, then one line per metadata entry."""
    lines = [
        f"{_ICONS[notification.severity]} <b>{html.escape(notification.header)}</b>",
        "",
        html.escape(notification.detail),
    ]
    if notification.recipient:
        lines.append(f"\nOwner: <code>{html.escape(notification.recipient)}</code>")
    for key, value in notification.metadata.items():
        lines.append(f"{html.escape(str(key))}: <code>{html.escape(str(value))}</code>")
    return "\n".join(lines)


class TelegramNotifier:
    """Send notifications via Telegram bots.

    INFO goes to the log bot without sound; WARNING and ERROR go to the
    alert bot.
    """

    def __init__(self, config: TelegramConfig) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id

    async def _send_message(
        self, message: str, bot_token: str, silent: bool = False
    ) -> bool:
        """Send Telegram message using specified bot."""
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": message,
            "parse_mode": "HTML",
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return True
                logger.error("Failed to send Telegram message: %s", response.status)
                return False

    async def send(self, notification: Notification) -> bool:
        message = render_message(notification)
        if notification.severity == Severity.INFO:
            sent = await self._send_message(message, self.log_bot_token, silent=True)
        else:
            sent = await self._send_message(message, self.alert_bot_token, silent=False)
        if sent:
            logger.info("Telegram %s sent: %s", notification.severity.value, notification.header)
        return sent
