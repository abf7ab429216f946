"""SMTP e-mail client. smtplib is blocking, so sends run in the default executor."""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from shared.config import get_settings
from shared.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


class EmailClient:
    """Plain-text e-mail over the configured SMTP relay."""

    def __init__(self):
        settings = get_settings()
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.username = settings.SMTP_USERNAME
        self.password = settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS
        self.from_address = settings.EMAIL_FROM

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_address)

    def _send_sync(self, to: str, subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        msg.attach(MIMEText(body, "plain"))

        if self.port == 465:
            server = smtplib.SMTP_SSL(
                self.host, self.port, context=ssl.create_default_context(), timeout=30
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=30)
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())

        try:
            if self.username:
                server.login(self.username, self.password)
            server.sendmail(self.from_address.split("<")[-1].rstrip(">"), [to], msg.as_string())
        finally:
            server.quit()

    async def send(self, to: str, subject: str, body: str) -> None:
        """
        Send an e-mail.

        Raises:
            NotificationDeliveryError: If SMTP is not configured or the relay fails
        """
        if not self.configured:
            raise NotificationDeliveryError("email", "SMTP_HOST / EMAIL_FROM not configured")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, to, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            # SMTPRecipientsRefused renders the refused addresses
            reason = "recipient refused" if isinstance(e, smtplib.SMTPRecipientsRefused) else str(e)
            logger.error(f"E-mail send failed: {reason}", extra={"email": to})
            raise NotificationDeliveryError("email", reason) from e

        logger.info(f"E-mail sent: subject={subject!r}", extra={"email": to})
