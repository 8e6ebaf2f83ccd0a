"""
Outbound WhatsApp messaging.
- TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN present: Twilio REST API.
- Missing: simulator (logs the message and returns a SIM- reference).
"""
from __future__ import annotations
import asyncio
import random
import string

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from giggle.core.config import get_settings
from giggle.core.errors import CollaboratorError
from giggle.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

WHATSAPP_PREFIX = "whatsapp:"


def strip_channel_prefix(address: str) -> str:
    address = (address or "").strip()
    if address.startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address


class TwilioMessenger:
    def __init__(self, account_sid: str = None, auth_token: str = None, from_number: str = None):
        self._client = Client(account_sid or settings.TWILIO_ACCOUNT_SID,
                              auth_token or settings.TWILIO_AUTH_TOKEN)
        self.from_number = from_number or settings.TWILIO_WHATSAPP_NUMBER

    def _create(self, to: str, body: str) -> str:
        message = self._client.messages.create(
            body=body,
            from_=self.from_number,
            to=f"{WHATSAPP_PREFIX}{strip_channel_prefix(to)}",
        )
        return message.sid

    async def send_message(self, to: str, body: str) -> str:
        try:
            sid = await asyncio.to_thread(self._create, to, body)
        except TwilioException as exc:
            logger.error("Twilio send to %s failed: %s", to, exc)
            raise CollaboratorError(f"WhatsApp delivery failed: {exc}") from exc
        logger.info("[TWILIO] sent message sid=%s to=%s", sid, to)
        return sid


class SimulatedMessenger:
    """Keeps an outbox so tests and local runs can see what would have been sent."""

    def __init__(self):
        self.outbox: list[tuple[str, str]] = []

    async def send_message(self, to: str, body: str) -> str:
        sid = "SIM-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=10))
        self.outbox.append((strip_channel_prefix(to), body))
        logger.info("[SIM] message sid=%s to=%s chars=%d", sid, to, len(body))
        return sid


def build_messenger():
    if settings.twilio_configured:
        return TwilioMessenger()
    logger.info("Twilio not configured, using simulated messenger")
    return SimulatedMessenger()
