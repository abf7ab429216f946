"""
Facebook Messenger client for outbound text messages.

Sends messages through the Graph API Send endpoint to a page-scoped user id
(PSID). Messages to booked customers are tagged CONFIRMED_EVENT_UPDATE so they
are deliverable outside the 24-hour standard messaging window.
"""

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


def _describe_error(exc: Exception) -> str:
    # httpx error text embeds the request URL, which carries the page token
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.HTTPError):
        return type(exc).__name__
    return str(exc)


class MessengerClient:
    """Client for the Messenger Send API."""

    def __init__(self):
        settings = get_settings()
        self.api_url = settings.MESSENGER_GRAPH_API_URL.rstrip("/")
        self.page_access_token = settings.MESSENGER_PAGE_ACCESS_TOKEN

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post_message(self, psid: str, text: str, tag: str | None) -> str | None:
        payload = {
            "recipient": {"id": psid},
            "message": {"text": text},
            "messaging_type": "MESSAGE_TAG" if tag else "RESPONSE",
        }
        if tag:
            payload["tag"] = tag

        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.api_url}/me/messages",
                params={"access_token": self.page_access_token},
                json=payload,
                timeout=10.0,
            )
            response.raise_for_status()
            return response.json().get("message_id")

    async def send_text(
        self,
        psid: str,
        text: str,
        tag: str | None = "CONFIRMED_EVENT_UPDATE",
    ) -> str | None:
        """
        Send a text message to a Messenger user.

        Returns:
            Graph API message id

        Raises:
            NotificationDeliveryError: If the page token is missing or the API rejects the send
        """
        if not self.page_access_token:
            raise NotificationDeliveryError("messenger", "MESSENGER_PAGE_ACCESS_TOKEN not configured")

        try:
            message_id = await call_with_breaker(
                messaging_breaker, self._post_message, psid, text, tag
            )
        except Exception as e:
            reason = _describe_error(e)
            logger.error(f"Messenger send failed: {reason}", extra={"psid": psid})
            raise NotificationDeliveryError("messenger", reason) from e

        logger.info(f"Messenger message sent: message_id={message_id}", extra={"psid": psid})
        return message_id
