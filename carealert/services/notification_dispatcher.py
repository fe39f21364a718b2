"""Notification dispatcher.

Fans one dispatch round out to every (recipient, channel) pair at once,
one asyncio task per pair. A failure on one pair never affects another:
each task records its own audit entry and reports back. The round
counts as successful once every task has run, whatever the outcomes.
"""

import asyncio
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from carealert.exceptions import FailureReason
from carealert.logging_config import alert_context, get_logger
from carealert.models.alert import Alert
from carealert.models.notification_attempt import AttemptOutcome, Channel, NotificationAttempt
from carealert.services.alert_store import AlertStore
from carealert.services.channels.base import ChannelAdapter
from carealert.services.message_builder import Message, build_message
from carealert.services.permission_resolver import Recipient

logger = get_logger(__name__)


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one (recipient, channel) pair in a round."""

    recipient_id: uuid.UUID
    channel: Channel
    outcome: AttemptOutcome
    failure_reason: FailureReason | None = None
    error_detail: str | None = None


@dataclass
class DispatchReport:
    """Consolidated result of a completed dispatch round."""

    alert_id: uuid.UUID
    round_number: int
    results: list[AttemptResult] = field(default_factory=list)

    def _count(self, outcome: AttemptOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def sent(self) -> int:
        return self._count(AttemptOutcome.SENT)

    @property
    def failed(self) -> int:
        return self._count(AttemptOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(AttemptOutcome.SKIPPED)


class DispatchRound:
    """Handle on an initiated round whose sends may still be in flight."""

    def __init__(
        self,
        alert_id: uuid.UUID,
        round_number: int,
        tasks: list[asyncio.Task[AttemptResult]],
    ):
        self.alert_id = alert_id
        self.round_number = round_number
        self._tasks = tasks

    @property
    def pair_count(self) -> int:
        return len(self._tasks)

    def done(self) -> bool:
        return all(task.done() for task in self._tasks)

    async def wait(self) -> DispatchReport:
        """Wait for every attempt of the round and collect the report."""
        results = await asyncio.gather(*self._tasks)
        return DispatchReport(
            alert_id=self.alert_id,
            round_number=self.round_number,
            results=list(results),
        )


def dedupe_pairs(recipients: list[Recipient]) -> list[tuple[Recipient, Channel]]:
    """Unique (recipient, channel) pairs, first occurrence wins."""
    seen: set[tuple[uuid.UUID, Channel]] = set()
    pairs: list[tuple[Recipient, Channel]] = []
    for recipient in recipients:
        for channel in recipient.channels:
            key = (recipient.recipient_id, channel)
            if key in seen:
                continue
            seen.add(key)
            pairs.append((recipient, channel))
    return pairs


class NotificationDispatcher:
    """Concurrent, failure-isolated fan-out over channel adapters."""

    def __init__(self, store: AlertStore, adapters: Mapping[Channel, ChannelAdapter]):
        self._store = store
        self._adapters = dict(adapters)
        self._in_flight: set[asyncio.Task[AttemptResult]] = set()

    @property
    def enabled_channels(self) -> frozenset[Channel]:
        return frozenset(self._adapters)

    def start_round(
        self,
        alert: Alert,
        patient_name: str,
        recipients: list[Recipient],
        round_number: int,
        message: Message | None = None,
    ) -> DispatchRound:
        """Initiate a round and return without waiting for delivery.

        ``message`` defaults to the standard caregiver message for the
        round. Must be called from a running event loop.
        """
        if message is None:
            message = build_message(alert, patient_name, round_number)
        pairs = dedupe_pairs(recipients)

        tasks: list[asyncio.Task[AttemptResult]] = []
        for recipient, channel in pairs:
            task = asyncio.create_task(
                self._attempt(alert.id, recipient, channel, message, round_number),
                name=f"dispatch:{alert.id}:{round_number}:{recipient.recipient_id}:{channel.value}",
            )
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)

        logger.info(
            "Dispatch round started",
            alert_id=str(alert.id),
            round_number=round_number,
            recipients=len({r.recipient_id for r, _ in pairs}),
            pairs=len(pairs),
        )
        if not pairs:
            logger.warning(
                "Dispatch round has no recipients",
                alert_id=str(alert.id),
                round_number=round_number,
            )

        return DispatchRound(alert.id, round_number, tasks)

    async def dispatch(
        self,
        alert: Alert,
        patient_name: str,
        recipients: list[Recipient],
        round_number: int,
    ) -> DispatchReport:
        """Run a full round and return its report."""
        return await self.start_round(alert, patient_name, recipients, round_number).wait()

    async def drain(self) -> None:
        """Wait for every in-flight attempt (shutdown, tests)."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _attempt(
        self,
        alert_id: uuid.UUID,
        recipient: Recipient,
        channel: Channel,
        message: Message,
        round_number: int,
    ) -> AttemptResult:
        with alert_context(alert_id):
            adapter = self._adapters.get(channel)
            if adapter is None:
                result = AttemptResult(
                    recipient_id=recipient.recipient_id,
                    channel=channel,
                    outcome=AttemptOutcome.SKIPPED,
                    failure_reason=FailureReason.NOT_CONFIGURED,
                    error_detail=f"no adapter configured for {channel.value}",
                )
            else:
                result = await self._send(adapter, recipient, channel, message)

            await self._record(alert_id, round_number, result)
            return result

    async def _send(
        self,
        adapter: ChannelAdapter,
        recipient: Recipient,
        channel: Channel,
        message: Message,
    ) -> AttemptResult:
        try:
            sent = await adapter.send(recipient.contact, message)
        except Exception as e:
            logger.error(
                "Channel adapter raised unexpectedly",
                channel=channel.value,
                recipient_id=str(recipient.recipient_id),
                exc_info=True,
            )
            return AttemptResult(
                recipient_id=recipient.recipient_id,
                channel=channel,
                outcome=AttemptOutcome.FAILED,
                failure_reason=FailureReason.UNEXPECTED,
                error_detail=f"{type(e).__name__}: {e}"[:500],
            )

        if sent.delivered:
            logger.info(
                "Notification sent",
                channel=channel.value,
                recipient_id=str(recipient.recipient_id),
                attempts=sent.attempts,
            )
            return AttemptResult(
                recipient_id=recipient.recipient_id,
                channel=channel,
                outcome=AttemptOutcome.SENT,
            )

        logger.warning(
            "Notification failed",
            channel=channel.value,
            recipient_id=str(recipient.recipient_id),
            reason=sent.reason.value if sent.reason else None,
            attempts=sent.attempts,
        )
        return AttemptResult(
            recipient_id=recipient.recipient_id,
            channel=channel,
            outcome=AttemptOutcome.FAILED,
            failure_reason=sent.reason,
            error_detail=sent.failure.detail[:500] if sent.failure else None,
        )

    async def _record(self, alert_id: uuid.UUID, round_number: int, result: AttemptResult) -> None:
        try:
            await self._store.append_attempt(
                NotificationAttempt(
                    alert_id=alert_id,
                    recipient_id=result.recipient_id,
                    channel=result.channel,
                    round_number=round_number,
                    attempted_at=datetime.now(UTC),
                    outcome=result.outcome,
                    failure_reason=result.failure_reason.value if result.failure_reason else None,
                    error_detail=result.error_detail,
                )
            )
        except Exception:
            logger.error(
                "Failed to record notification attempt",
                channel=result.channel.value,
                recipient_id=str(result.recipient_id),
                outcome=result.outcome.value,
                exc_info=True,
            )
