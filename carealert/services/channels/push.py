"""Push channel via a webhook relay (n8n-style workflow).

The relay owns device tokens; it receives the recipient's phone number
and the rendered message and fans out to the devices registered for it.
"""

from datetime import UTC, datetime

import httpx

from carealert.exceptions import ChannelPermanentFailure, FailureReason
from carealert.models.notification_attempt import Channel
from carealert.services.channels.base import ChannelAdapter
from carealert.services.message_builder import Message
from carealert.services.permission_resolver import ContactInfo


class PushAdapter(ChannelAdapter):
    channel = Channel.PUSH

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, transport=transport)
        self._webhook_url = webhook_url

    async def _deliver(self, contact: ContactInfo, message: Message) -> None:
        if not contact.phone:
            raise ChannelPermanentFailure(FailureReason.INVALID_ADDRESS, "no phone number")

        response = await self._request(
            "POST",
            self._webhook_url,
            json={
                "phone": contact.phone,
                "name": contact.name,
                "title": message.subject,
                "body": message.text,
                "alert": {
                    "id": str(message.alert_id),
                    "severity": message.severity.value,
                    "round": message.round_number,
                },
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        self._raise_for_status(response)
