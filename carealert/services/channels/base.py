"""Channel adapter base class.

An adapter delivers one message to one person over one provider. It
never raises on delivery problems: every outcome comes back as a
``SendResult`` carrying a reason code from the shared failure taxonomy.
Transient failures are retried exactly once, immediately.
"""

import abc
from dataclasses import dataclass

import httpx

from carealert.exceptions import (
    ChannelError,
    ChannelPermanentFailure,
    ChannelTransientFailure,
    FailureReason,
)
from carealert.logging_config import get_logger
from carealert.models.notification_attempt import Channel
from carealert.services.message_builder import Message
from carealert.services.permission_resolver import ContactInfo

logger = get_logger(__name__)

MAX_ATTEMPTS = 2


@dataclass(frozen=True)
class SendResult:
    """Outcome of one adapter ``send`` call (including its retry)."""

    delivered: bool
    failure: ChannelError | None = None
    attempts: int = 1

    @property
    def reason(self) -> FailureReason | None:
        return self.failure.reason if self.failure else None


class ChannelAdapter(abc.ABC):
    """Delivers messages over one channel with a bounded timeout."""

    channel: Channel

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def send(self, contact: ContactInfo, message: Message) -> SendResult:
        """Deliver ``message`` to ``contact``, retrying one transient failure."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                await self._deliver(contact, message)
            except ChannelTransientFailure as e:
                if attempt < MAX_ATTEMPTS:
                    logger.info(
                        "Transient channel failure, retrying",
                        channel=self.channel.value,
                        reason=e.reason.value,
                        detail=e.detail,
                    )
                    continue
                return SendResult(delivered=False, failure=e, attempts=attempt)
            except ChannelPermanentFailure as e:
                return SendResult(delivered=False, failure=e, attempts=attempt)
            else:
                return SendResult(delivered=True, attempts=attempt)

        # Unreachable: the loop always returns
        raise AssertionError("retry loop exited without a result")

    @abc.abstractmethod
    async def _deliver(self, contact: ContactInfo, message: Message) -> None:
        """Perform one provider call.

        Raises:
            ChannelTransientFailure: Worth retrying.
            ChannelPermanentFailure: Never worth retrying.
        """

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Issue an HTTP request, mapping transport errors onto the taxonomy."""
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ChannelTransientFailure(FailureReason.TIMEOUT, str(e) or "timed out") from e
        except httpx.TransportError as e:
            raise ChannelTransientFailure(FailureReason.NETWORK, str(e) or "network error") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Map a provider HTTP status onto the failure taxonomy."""
        status = response.status_code
        if status < 400:
            return

        detail = f"{status} {response.text[:200]}"
        if status == 429:
            raise ChannelTransientFailure(FailureReason.RATE_LIMITED, detail)
        if status == 408:
            raise ChannelTransientFailure(FailureReason.TIMEOUT, detail)
        if status >= 500:
            raise ChannelTransientFailure(FailureReason.PROVIDER_UNAVAILABLE, detail)
        raise ChannelPermanentFailure(FailureReason.REJECTED, detail)
