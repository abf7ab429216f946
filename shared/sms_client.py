"""Twilio SMS client (REST API over httpx)."""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.circuit_breaker import call_with_breaker, messaging_breaker
from shared.config import get_settings
from shared.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


class TwilioSmsClient:
    """Send SMS messages through Twilio's Messages resource."""

    def __init__(self):
        settings = get_settings()
        self.api_url = settings.TWILIO_API_URL.rstrip("/")
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.from_number = settings.TWILIO_FROM_NUMBER

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _create_message(self, to: str, body: str) -> str | None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.api_url}/Accounts/{self.account_sid}/Messages.json",
                data={"To": to, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=10.0,
            )
            response.raise_for_status()
            return response.json().get("sid")

    async def send_text(self, to: str, body: str) -> str | None:
        """
        Send an SMS.

        Returns:
            Twilio message SID

        Raises:
            NotificationDeliveryError: If Twilio is not configured or rejects the message
        """
        if not (self.account_sid and self.auth_token and self.from_number):
            raise NotificationDeliveryError("sms", "Twilio credentials not configured")

        try:
            sid = await call_with_breaker(messaging_breaker, self._create_message, to, body)
        except Exception as e:
            logger.error(f"SMS send failed: {e}", extra={"phone": to})
            raise NotificationDeliveryError("sms", str(e)) from e

        logger.info(f"SMS sent: sid={sid}", extra={"phone": to})
        return sid
