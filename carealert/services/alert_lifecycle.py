"""Alert state machine.

Legal transitions::

    active -> acknowledged -> resolved
    active -> resolved
    active -> false_alarm
    acknowledged -> false_alarm

RESOLVED and FALSE_ALARM are terminal. Every transition away from ACTIVE
removes the pending escalation timer in the same transaction, so no
escalation can fire after a person has responded.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Uuid, func, literal

from carealert.exceptions import (
    AlertNotFound,
    DirectoryUnavailable,
    InvalidTransition,
    SubjectNotFound,
    Unauthorized,
)
from carealert.logging_config import alert_context, get_logger
from carealert.models.alert import (
    DEFAULT_SEVERITY,
    Alert,
    AlertKind,
    AlertSeverity,
    AlertStatus,
)
from carealert.models.base import UTCDateTime
from carealert.models.escalation_timer import EscalationTimer
from carealert.models.notification_attempt import NotificationAttempt
from carealert.services.alert_store import AlertStore
from carealert.services.care_directory import CareDirectory
from carealert.services.escalation_scheduler import EscalationScheduler
from carealert.services.notification_dispatcher import DispatchRound
from carealert.services.permission_resolver import PermissionResolver
from carealert.services.round_launcher import RoundLauncher

logger = get_logger(__name__)

ALLOWED_FROM: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.ACTIVE}),
    AlertStatus.RESOLVED: frozenset({AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED}),
    AlertStatus.FALSE_ALARM: frozenset({AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED}),
}


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    return current in ALLOWED_FROM.get(target, frozenset())


@dataclass
class AlertCreation:
    """A freshly created alert and its initial dispatch round."""

    alert: Alert
    dispatch: DispatchRound


class AlertLifecycle:
    """Creates alerts and moves them through their lifecycle."""

    def __init__(
        self,
        store: AlertStore,
        directory: CareDirectory,
        resolver: PermissionResolver,
        launcher: RoundLauncher,
        scheduler: EscalationScheduler,
    ):
        self._store = store
        self._directory = directory
        self._resolver = resolver
        self._launcher = launcher
        self._scheduler = scheduler

    async def create(
        self,
        kind: AlertKind,
        patient_id: uuid.UUID,
        context: dict[str, Any] | None = None,
        severity: AlertSeverity | None = None,
    ) -> AlertCreation:
        """Persist a new active alert and start the initial dispatch round.

        The alert is written together with a timer marking its initial
        round as pending. Once round 0 has been initiated that timer becomes
        the one for policy step 0. The call returns without waiting for
        delivery; outcomes land in the audit trail asynchronously.

        Raises:
            SubjectNotFound: The patient does not exist.
            DirectoryUnavailable: Recipients could not be resolved. The
                alert is persisted and round 0 is retried by the escalation
                scheduler; ``alert_id`` is set on the error.
        """
        patient = await self._directory.get_profile(patient_id)
        if patient is None:
            raise SubjectNotFound(str(patient_id))

        now = datetime.now(UTC)
        alert = Alert(
            id=uuid.uuid4(),
            patient_id=patient_id,
            kind=kind,
            severity=severity or DEFAULT_SEVERITY[kind],
            status=AlertStatus.ACTIVE,
            context=dict(context or {}),
            escalation_step=0,
            created_at=now,
            updated_at=now,
        )
        pending = EscalationTimer(
            alert_id=alert.id,
            step_index=0,
            fire_at=now + self._scheduler.retry_delay,
            initial_round=True,
        )

        await self._store.insert(alert, pending)

        with alert_context(alert.id):
            logger.info(
                "Alert created",
                patient_id=str(patient_id),
                kind=kind.value,
                severity=alert.severity.value,
            )

            try:
                plan = await self._launcher.plan(alert)
            except DirectoryUnavailable as e:
                self._scheduler.schedule(alert.id, pending.fire_at)
                logger.warning(
                    "Initial dispatch round postponed, care directory unavailable",
                    retry_at=pending.fire_at.isoformat(),
                )
                raise DirectoryUnavailable(str(e), alert_id=alert.id) from e

            dispatch = await self._scheduler.start_initial_round(alert, plan, now)
            if dispatch is None:
                # Someone responded while recipients were being resolved
                current = await self._store.get(alert.id)
                return AlertCreation(
                    alert=current or alert,
                    dispatch=DispatchRound(alert.id, 0, []),
                )

        return AlertCreation(alert=alert, dispatch=dispatch)

    async def get(self, alert_id: uuid.UUID) -> Alert:
        alert = await self._store.get(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    async def audit_log(self, alert_id: uuid.UUID) -> list[NotificationAttempt]:
        """Every notification attempt of an alert, oldest first."""
        await self.get(alert_id)
        return await self._store.attempts(alert_id)

    async def acknowledge(
        self,
        alert_id: uuid.UUID,
        recipient_id: uuid.UUID,
        note: str | None = None,
    ) -> Alert:
        """A recipient has seen the alert and is handling it.

        Raises:
            AlertNotFound: Unknown alert.
            Unauthorized: The actor may not act on this patient's alerts.
            InvalidTransition: The alert is no longer active.
        """
        now = datetime.now(UTC)
        return await self._transition(
            alert_id,
            recipient_id,
            AlertStatus.ACKNOWLEDGED,
            {
                "acknowledged_by": recipient_id,
                "acknowledged_at": now,
                "acknowledgment_note": note,
            },
        )

    async def resolve(
        self,
        alert_id: uuid.UUID,
        recipient_id: uuid.UUID,
        note: str | None = None,
    ) -> Alert:
        """Close the alert; the person is safe."""
        return await self._close(alert_id, recipient_id, AlertStatus.RESOLVED, note)

    async def mark_false_alarm(
        self,
        alert_id: uuid.UUID,
        recipient_id: uuid.UUID,
        note: str | None = None,
    ) -> Alert:
        """Close the alert as not a real incident."""
        return await self._close(alert_id, recipient_id, AlertStatus.FALSE_ALARM, note)

    async def override_severity(self, alert_id: uuid.UUID, severity: AlertSeverity) -> Alert:
        """Set severity manually; the only way severity may go down.

        Raises:
            AlertNotFound: Unknown alert.
            InvalidTransition: The alert is already closed.
        """
        with alert_context(alert_id):
            async with self._store.locked(alert_id):
                alert = await self.get(alert_id)
                if not await self._store.set_severity(alert_id, severity):
                    current = await self._store.get(alert_id)
                    raise InvalidTransition(
                        alert_id,
                        current.status.value if current else None,
                        f"severity {severity.value}",
                    )
            logger.info(
                "Alert severity overridden",
                previous=alert.severity.value,
                severity=severity.value,
            )
        return await self.get(alert_id)

    async def _close(
        self,
        alert_id: uuid.UUID,
        recipient_id: uuid.UUID,
        target: AlertStatus,
        note: str | None,
    ) -> Alert:
        now = datetime.now(UTC)
        actor = literal(recipient_id, Uuid())
        stamp = literal(now, UTCDateTime())
        return await self._transition(
            alert_id,
            recipient_id,
            target,
            {
                "resolved_by": recipient_id,
                "resolved_at": now,
                "resolution_note": note,
                # Closing an unacknowledged alert also counts as the response
                "acknowledged_by": func.coalesce(Alert.acknowledged_by, actor),
                "acknowledged_at": func.coalesce(Alert.acknowledged_at, stamp),
            },
        )

    async def _transition(
        self,
        alert_id: uuid.UUID,
        actor_id: uuid.UUID,
        target: AlertStatus,
        values: dict[str, Any],
    ) -> Alert:
        allowed_from = ALLOWED_FROM[target]

        with alert_context(alert_id):
            async with self._store.locked(alert_id):
                alert = await self.get(alert_id)

                if not await self._resolver.is_authorized(alert.patient_id, actor_id):
                    logger.warning(
                        "Unauthorized alert action",
                        actor_id=str(actor_id),
                        target=target.value,
                    )
                    raise Unauthorized(actor_id, alert.patient_id)

                if alert.status not in allowed_from:
                    raise InvalidTransition(alert_id, alert.status.value, target.value)

                won = await self._store.transition(
                    alert_id,
                    allowed_from,
                    {"status": target, **values},
                )
                if not won:
                    # Another worker moved the alert between our read and write
                    current = await self._store.get(alert_id)
                    raise InvalidTransition(
                        alert_id,
                        current.status.value if current else None,
                        target.value,
                    )

            self._scheduler.cancel(alert_id)
            logger.info(
                "Alert status changed",
                previous=alert.status.value,
                status=target.value,
                actor_id=str(actor_id),
            )

        return await self.get(alert_id)
