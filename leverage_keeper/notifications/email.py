"""Email notification service."""
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..config import EmailConfig
from ..models import Notification, Severity

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Send WARNING and ERROR notifications via email."""

    def __init__(self, config: EmailConfig) -> None:
        self.alert_email = config.alert_email
        self.smtp_server = config.smtp_server
        self.smtp_port = config.smtp_port
        self.sender_email = config.sender_email
        self.sender_password = config.sender_password

    def _build_message(self, notification: Notification) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = self.sender_email
        msg["To"] = self.alert_email
        msg["Subject"] = notification.header

        body = [notification.detail, ""]
        if notification.recipient:
            body.append(f"Owner: {notification.recipient}")
        body.extend(f"{k}: {v}" for k, v in notification.metadata.items())
        msg.attach(MIMEText("\n".join(body), "plain"))
        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
            server.starttls()
            server.login(self.sender_email, self.sender_password)
            server.send_message(msg)

    async def send(self, notification: Notification) -> bool:
        if notification.severity == Severity.INFO:
            return False

        if not self.alert_email:
            logger.debug("No alert email configured, skipping email")
            return False

        if not self.sender_email or not self.sender_password:
            logger.warning("Email credentials not configured")
            return False

        msg = self._build_message(notification)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email: %s", e)
            return False
        logger.info("Alert email sent to %s", self.alert_email)
        return True
