"""WhatsApp channel via a self-hosted Evolution API gateway.

Endpoint: ``POST {base_url}/message/sendText/{instance}`` with the
gateway key in the ``apikey`` header. The gateway answers with the queued
message key on success.
"""

from urllib.parse import quote

import httpx

from carealert.exceptions import (
    ChannelPermanentFailure,
    ChannelTransientFailure,
    FailureReason,
)
from carealert.models.notification_attempt import Channel
from carealert.services.care_directory import phone_digits
from carealert.services.channels.base import ChannelAdapter
from carealert.services.message_builder import Message
from carealert.services.permission_resolver import ContactInfo

WHATSAPP_JID_SUFFIX = "@s.whatsapp.net"

# E.164 allows at most 15 digits; shorter than 8 is never a full number
MIN_PHONE_DIGITS = 8
MAX_PHONE_DIGITS = 15


def to_whatsapp_jid(phone: str) -> str:
    """Normalize a phone number to a WhatsApp JID.

    Raises:
        ChannelPermanentFailure: The value is not phone-shaped.
    """
    if any(c.isalpha() for c in phone):
        raise ChannelPermanentFailure(FailureReason.INVALID_ADDRESS, "phone contains letters")
    digits = phone_digits(phone)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise ChannelPermanentFailure(
            FailureReason.INVALID_ADDRESS, f"phone has {len(digits)} digits"
        )
    return f"{digits}{WHATSAPP_JID_SUFFIX}"


class WhatsAppAdapter(ChannelAdapter):
    channel = Channel.WHATSAPP

    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not instance:
            raise ValueError("WhatsApp gateway instance name is required")
        super().__init__(timeout_seconds=timeout_seconds, transport=transport)
        self._url = f"{base_url.rstrip('/')}/message/sendText/{quote(instance, safe='')}"
        self._api_key = api_key

    async def _deliver(self, contact: ContactInfo, message: Message) -> None:
        if not contact.phone:
            raise ChannelPermanentFailure(FailureReason.INVALID_ADDRESS, "no phone number")
        jid = to_whatsapp_jid(contact.phone)

        response = await self._request(
            "POST",
            self._url,
            headers={"apikey": self._api_key},
            json={"number": jid, "text": message.text},
        )
        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ChannelTransientFailure(
                FailureReason.PROVIDER_UNAVAILABLE, "gateway returned invalid JSON"
            ) from e

        if not isinstance(data, dict) or not (data.get("key") or data.get("message")):
            detail = data.get("error") if isinstance(data, dict) else None
            raise ChannelTransientFailure(
                FailureReason.PROVIDER_UNAVAILABLE,
                str(detail or "gateway did not queue the message"),
            )
