"""Persistence for alerts, their escalation timers and audit trail.

Every method runs in its own short session. Status changes are single
conditional UPDATEs, so two writers racing on the same alert can never
both succeed: the loser sees zero updated rows. The escalation timer row
is removed or rewritten in the same transaction as the status change.
"""

import asyncio
import uuid
import weakref
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.logging_config import get_logger
from carealert.models.alert import Alert, AlertSeverity, AlertStatus
from carealert.models.escalation_timer import EscalationTimer
from carealert.models.notification_attempt import NotificationAttempt

logger = get_logger(__name__)


class AlertStore:
    """Alert, timer and audit trail storage."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def locked(self, alert_id: uuid.UUID) -> AsyncIterator[None]:
        """Serialize read-check-write sequences on one alert in this process."""
        lock = self._locks.get(alert_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[alert_id] = lock
        async with lock:
            yield

    # ── Alerts ──

    async def insert(self, alert: Alert, timer: EscalationTimer | None = None) -> Alert:
        """Persist a new alert and its first timer atomically."""
        async with self._session_maker() as db:
            db.add(alert)
            if timer is not None:
                # Parent row must exist before the timer's FK is checked
                await db.flush()
                db.add(timer)
            await db.commit()
        return alert

    async def get(self, alert_id: uuid.UUID) -> Alert | None:
        async with self._session_maker() as db:
            return await db.get(Alert, alert_id)

    async def transition(
        self,
        alert_id: uuid.UUID,
        allowed_from: Iterable[AlertStatus],
        values: dict[str, Any],
    ) -> bool:
        """Apply ``values`` if the alert is still in one of ``allowed_from``.

        Any pending escalation timer is deleted in the same transaction.

        Returns:
            True if this call won; False if the alert was not in an allowed
            status (already moved by someone else, or unknown).
        """
        async with self._session_maker() as db:
            result = await db.execute(
                update(Alert)
                .where(Alert.id == alert_id, Alert.status.in_(list(allowed_from)))
                .values(**values)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await db.execute(delete(EscalationTimer).where(EscalationTimer.alert_id == alert_id))
            await db.commit()
        return True

    async def apply_escalation(
        self,
        alert_id: uuid.UUID,
        expected_step: int,
        severity: AlertSeverity,
        escalated_at: datetime,
        next_timer: tuple[int, datetime] | None,
    ) -> bool:
        """Record one escalation step and replace the timer.

        Only applies while the alert is active and still at
        ``expected_step``, so a step is never applied twice.
        """
        async with self._session_maker() as db:
            result = await db.execute(
                update(Alert)
                .where(
                    Alert.id == alert_id,
                    Alert.status == AlertStatus.ACTIVE,
                    Alert.escalation_step == expected_step,
                )
                .values(
                    severity=severity,
                    last_escalated_at=escalated_at,
                    escalation_step=expected_step + 1,
                )
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await db.execute(delete(EscalationTimer).where(EscalationTimer.alert_id == alert_id))
            if next_timer is not None:
                step_index, fire_at = next_timer
                db.add(EscalationTimer(alert_id=alert_id, step_index=step_index, fire_at=fire_at))
            await db.commit()
        return True

    async def set_severity(self, alert_id: uuid.UUID, severity: AlertSeverity) -> bool:
        """Manual severity change; refused once the alert is terminal."""
        async with self._session_maker() as db:
            result = await db.execute(
                update(Alert)
                .where(
                    Alert.id == alert_id,
                    Alert.status.in_([AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED]),
                )
                .values(severity=severity)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False
            await db.commit()
        return True

    async def active_alerts_without_timer(self) -> list[Alert]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(Alert)
                .outerjoin(EscalationTimer, EscalationTimer.alert_id == Alert.id)
                .where(Alert.status == AlertStatus.ACTIVE, EscalationTimer.alert_id.is_(None))
                .order_by(Alert.created_at)
            )
            return list(result.scalars().all())

    # ── Timers ──

    async def get_timer(self, alert_id: uuid.UUID) -> EscalationTimer | None:
        async with self._session_maker() as db:
            return await db.get(EscalationTimer, alert_id)

    async def save_timer(
        self,
        alert_id: uuid.UUID,
        step_index: int,
        fire_at: datetime,
        initial_round: bool = False,
    ) -> bool:
        """Write the timer row if the alert is still active.

        Returns:
            False if the alert is no longer active (nothing written).
        """
        async with self._session_maker() as db:
            status = await db.scalar(select(Alert.status).where(Alert.id == alert_id))
            if status != AlertStatus.ACTIVE:
                return False

            await db.execute(delete(EscalationTimer).where(EscalationTimer.alert_id == alert_id))
            db.add(
                EscalationTimer(
                    alert_id=alert_id,
                    step_index=step_index,
                    fire_at=fire_at,
                    initial_round=initial_round,
                )
            )
            await db.commit()
        return True

    async def complete_initial_round(
        self,
        alert_id: uuid.UUID,
        next_fire_at: datetime | None,
    ) -> bool:
        """Clear the pending initial round marker of an active alert.

        The marker timer becomes the step 0 timer firing at ``next_fire_at``,
        or is removed when the policy has no steps. Only one caller can win.

        Returns:
            False if there was no pending initial round (already sent, or
            the alert is no longer active).
        """
        active = select(Alert.id).where(Alert.id == alert_id, Alert.status == AlertStatus.ACTIVE)
        pending = (
            EscalationTimer.alert_id == alert_id,
            EscalationTimer.initial_round.is_(True),
            EscalationTimer.alert_id.in_(active),
        )

        async with self._session_maker() as db:
            if next_fire_at is None:
                statement = delete(EscalationTimer).where(*pending)
            else:
                statement = (
                    update(EscalationTimer)
                    .where(*pending)
                    .values(step_index=0, fire_at=next_fire_at, initial_round=False)
                )
            result = await db.execute(
                statement.execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False
            await db.commit()
        return True

    async def delete_timer(self, alert_id: uuid.UUID) -> None:
        async with self._session_maker() as db:
            await db.execute(delete(EscalationTimer).where(EscalationTimer.alert_id == alert_id))
            await db.commit()

    async def pending_timers(self) -> list[EscalationTimer]:
        """Timers of active alerts, soonest first."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(EscalationTimer)
                .join(Alert, Alert.id == EscalationTimer.alert_id)
                .where(Alert.status == AlertStatus.ACTIVE)
                .order_by(EscalationTimer.fire_at)
            )
            return list(result.scalars().all())

    async def delete_orphan_timers(self) -> int:
        """Remove timers whose alert is no longer active."""
        async with self._session_maker() as db:
            inactive = select(Alert.id).where(Alert.status != AlertStatus.ACTIVE)
            result = await db.execute(
                delete(EscalationTimer).where(EscalationTimer.alert_id.in_(inactive))
            )
            await db.commit()
        if result.rowcount:
            logger.info("Removed orphan escalation timers", count=result.rowcount)
        return result.rowcount or 0

    # ── Audit trail ──

    async def append_attempt(self, attempt: NotificationAttempt) -> None:
        async with self._session_maker() as db:
            db.add(attempt)
            await db.commit()

    async def attempts(self, alert_id: uuid.UUID) -> list[NotificationAttempt]:
        """Audit trail of an alert in the order attempts were recorded."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(NotificationAttempt)
                .where(NotificationAttempt.alert_id == alert_id)
                .order_by(NotificationAttempt.attempted_at, NotificationAttempt.round_number)
            )
            return list(result.scalars().all())
