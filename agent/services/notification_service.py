"""
Notification dispatch - deliver text to a lead on the right channel.

Each channel is independent: a Messenger outage never blocks an e-mail and
vice versa. Callers decide how to audit failures; this module only raises
``NotificationDeliveryError`` for a failed send and returns False when a lead
has no handle for the channel.
"""

import logging

from database.models import Channel, Lead
from shared.email_client import EmailClient
from shared.messenger_client import MessengerClient
from shared.sms_client import TwilioSmsClient

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        messenger: MessengerClient | None = None,
        sms: TwilioSmsClient | None = None,
        email: EmailClient | None = None,
    ):
        self.messenger = messenger or MessengerClient()
        self.sms = sms or TwilioSmsClient()
        self.email = email or EmailClient()

    @staticmethod
    def primary_handle(lead: Lead) -> tuple[Channel, str] | None:
        """Chat channel and recipient handle for a lead, if one is known."""
        if lead.channel == Channel.MESSENGER and lead.messenger_psid:
            return Channel.MESSENGER, lead.messenger_psid
        if lead.phone:
            return Channel.SMS, lead.phone
        return None

    async def send_primary(self, lead: Lead, text: str) -> bool:
        """
        Send on the lead's chat channel.

        Returns:
            True if sent, False if the lead has no chat handle

        Raises:
            NotificationDeliveryError: If the channel rejected the message
        """
        target = self.primary_handle(lead)
        if target is None:
            logger.info("No chat handle for lead, skipping message", extra={"lead_id": lead.id})
            return False

        channel, handle = target
        if channel == Channel.MESSENGER:
            await self.messenger.send_text(handle, text)
            handle_field = "psid"
        else:
            await self.sms.send_text(handle, text)
            handle_field = "phone"
        logger.info(
            f"Sent {channel.value} message",
            extra={"lead_id": lead.id, handle_field: handle},
        )
        return True

    async def send_email(self, lead: Lead, subject: str, body: str) -> bool:
        """
        E-mail the lead.

        Returns:
            True if sent, False if the lead has no address or SMTP is not configured
        """
        if not lead.email or not self.email.configured:
            return False
        await self.email.send(lead.email, subject, body)
        logger.info("Sent e-mail", extra={"lead_id": lead.id, "email": lead.email})
        return True
