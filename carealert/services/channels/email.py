"""Email channel via the Resend HTTP API."""

import httpx

from carealert.exceptions import ChannelPermanentFailure, FailureReason
from carealert.models.notification_attempt import Channel
from carealert.services.channels.base import ChannelAdapter
from carealert.services.message_builder import Message
from carealert.services.permission_resolver import ContactInfo


class EmailAdapter(ChannelAdapter):
    """Sends HTML + text email through Resend."""

    channel = Channel.EMAIL

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, transport=transport)
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url.rstrip("/")

    async def _deliver(self, contact: ContactInfo, message: Message) -> None:
        if not contact.email or "@" not in contact.email:
            raise ChannelPermanentFailure(
                FailureReason.INVALID_ADDRESS, "no usable email address"
            )

        response = await self._request(
            "POST",
            f"{self._api_url}/emails",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "from": self._sender,
                "to": [contact.email],
                "subject": message.subject,
                "html": message.html,
                "text": message.text,
            },
        )

        # Resend answers 422 for malformed recipient addresses
        if response.status_code == 422:
            raise ChannelPermanentFailure(
                FailureReason.INVALID_ADDRESS, f"422 {response.text[:200]}"
            )
        self._raise_for_status(response)
