"""Escalation scheduler.

Each active alert has at most one pending escalation timer. The timer is
durable (an ``escalation_timers`` row written in the same transaction as
the alert change that armed it) and is executed by a single-shot
APScheduler ``DateTrigger`` job. After a restart, ``recover`` rebuilds
the jobs from the rows, so no pending escalation is lost.

When a timer fires and the alert is still active, the next policy step
is applied: severity is raised to the step's floor, the recipient tier
widens, a new dispatch round starts and the next timer is armed. When
the policy runs out the alert stays active with no timer until a person
acts on it.

An alert whose first round could not be sent (care directory
unreachable) keeps a timer marked ``initial_round``. Firing it retries
round 0; policy step 0 is armed only once round 0 has gone out.
"""

import uuid
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from carealert.exceptions import DirectoryUnavailable
from carealert.logging_config import alert_context, get_logger
from carealert.models.alert import Alert, AlertStatus
from carealert.services.alert_store import AlertStore
from carealert.services.escalation_policy import EscalationPolicyProvider
from carealert.services.notification_dispatcher import DispatchRound
from carealert.services.permission_resolver import RecipientPlan
from carealert.services.round_launcher import RoundLauncher

logger = get_logger(__name__)

JOB_PREFIX = "escalation:"

# Jobs may be dispatched a little before the stored fire time
EARLY_FIRE_TOLERANCE = timedelta(seconds=1)


def job_id(alert_id: uuid.UUID) -> str:
    return f"{JOB_PREFIX}{alert_id}"


class EscalationScheduler:
    """Arms, cancels and fires per-alert escalation timers."""

    def __init__(
        self,
        store: AlertStore,
        policies: EscalationPolicyProvider,
        launcher: RoundLauncher,
        scheduler: AsyncIOScheduler | None = None,
        retry_delay_seconds: float = 60.0,
    ):
        self._store = store
        self._policies = policies
        self._launcher = launcher
        self._scheduler = scheduler
        self._retry_delay = timedelta(seconds=retry_delay_seconds)

    @property
    def retry_delay(self) -> timedelta:
        """How long a round blocked by the care directory waits to retry."""
        return self._retry_delay

    def attach(self, scheduler: AsyncIOScheduler) -> None:
        """Use ``scheduler`` to run timer jobs from now on."""
        self._scheduler = scheduler

    # ── Timers ──

    async def arm(
        self,
        alert_id: uuid.UUID,
        step_index: int,
        fire_at: datetime,
        initial_round: bool = False,
    ) -> bool:
        """Persist and schedule the timer for ``step_index``.

        Returns:
            False if the alert is no longer active (nothing armed).
        """
        if not await self._store.save_timer(alert_id, step_index, fire_at, initial_round):
            return False
        self.schedule(alert_id, fire_at)
        return True

    def schedule(self, alert_id: uuid.UUID, fire_at: datetime) -> None:
        """(Re)schedule the in-memory job for an already persisted timer."""
        if self._scheduler is None:
            return

        self._scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=fire_at),
            args=[alert_id],
            id=job_id(alert_id),
            name=f"Escalate alert {alert_id}",
            replace_existing=True,
            misfire_grace_time=None,
            coalesce=True,
        )
        logger.debug(
            "Escalation job scheduled",
            alert_id=str(alert_id),
            fire_at=fire_at.isoformat(),
        )

    def cancel(self, alert_id: uuid.UUID) -> None:
        """Drop the in-memory job; the timer row goes with the status change."""
        if self._scheduler is None:
            return
        if self._scheduler.get_job(job_id(alert_id)) is not None:
            self._scheduler.remove_job(job_id(alert_id))
            logger.debug("Escalation job cancelled", alert_id=str(alert_id))

    def has_job(self, alert_id: uuid.UUID) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(job_id(alert_id)) is not None

    async def has_pending_timer(self, alert_id: uuid.UUID) -> bool:
        return await self._store.get_timer(alert_id) is not None

    # ── Firing ──

    async def _run(self, alert_id: uuid.UUID) -> None:
        """APScheduler entry point; one alert's failure must not kill the job runner."""
        try:
            await self.fire(alert_id)
        except Exception:
            logger.error("Escalation failed", alert_id=str(alert_id), exc_info=True)

    async def fire(
        self,
        alert_id: uuid.UUID,
        now: datetime | None = None,
    ) -> DispatchRound | None:
        """Apply the pending escalation step of an alert.

        A no-op (returns None) unless the alert is still active and its
        timer is due. ``now`` defaults to the current time.

        Returns:
            The started dispatch round, or None if nothing was escalated.
        """
        now = now or datetime.now(UTC)

        with alert_context(alert_id):
            alert = await self._store.get(alert_id)
            if alert is None or alert.status != AlertStatus.ACTIVE:
                logger.debug("Escalation skipped, alert not active")
                return None

            timer = await self._store.get_timer(alert_id)
            if timer is None:
                logger.debug("Escalation skipped, no pending timer")
                return None

            if timer.fire_at - now > EARLY_FIRE_TOLERANCE:
                self.schedule(alert_id, timer.fire_at)
                return None

            if timer.initial_round:
                return await self._retry_initial_round(alert, now)

            policy = await self._policies.policy_for(alert.patient_id)
            step = policy.step(timer.step_index)
            if step is None:
                # Policy was shortened after the timer was armed
                await self._store.delete_timer(alert_id)
                logger.info("Escalation policy exhausted", step_index=timer.step_index)
                return None

            try:
                plan = await self._launcher.plan(alert)
            except DirectoryUnavailable:
                retry_at = now + self._retry_delay
                if await self.arm(alert_id, timer.step_index, retry_at):
                    logger.warning(
                        "Escalation postponed, care directory unavailable",
                        step_index=timer.step_index,
                        retry_at=retry_at.isoformat(),
                    )
                return None

            async with self._store.locked(alert_id):
                alert = await self._store.get(alert_id)
                if (
                    alert is None
                    or alert.status != AlertStatus.ACTIVE
                    or alert.escalation_step != timer.step_index
                ):
                    logger.debug("Escalation superseded")
                    return None

                previous = alert.last_escalated_at or alert.created_at
                escalated_at = max(now, previous + timedelta(microseconds=1))
                severity = alert.severity.at_least(step.severity_floor)

                next_step = policy.step(timer.step_index + 1)
                next_timer = (
                    (timer.step_index + 1, escalated_at + timedelta(seconds=next_step.delay_seconds))
                    if next_step is not None
                    else None
                )

                applied = await self._store.apply_escalation(
                    alert_id,
                    expected_step=alert.escalation_step,
                    severity=severity,
                    escalated_at=escalated_at,
                    next_timer=next_timer,
                )
                if not applied:
                    logger.debug("Escalation superseded")
                    return None

                alert = await self._store.get(alert_id)
                dispatch = self._launcher.start(
                    alert,
                    plan,
                    step.recipient_tier,
                    round_number=alert.escalation_step,
                )

            logger.info(
                "Alert escalated",
                step=alert.escalation_step,
                severity=severity.value,
                recipient_tier=step.recipient_tier.value,
            )

            if next_timer is not None:
                self.schedule(alert_id, next_timer[1])
            else:
                logger.info("Escalation policy exhausted, alert stays active")

            return dispatch

    async def start_initial_round(
        self,
        alert: Alert,
        plan: RecipientPlan,
        started_at: datetime,
    ) -> DispatchRound | None:
        """Send round 0 and arm policy step 0 from ``started_at``.

        Round 0 goes out only while the alert is active and its initial
        round is still pending, so a response that arrived in the meantime
        suppresses it.

        Returns:
            The started round, or None if it was no longer due.
        """
        policy = await self._policies.policy_for(alert.patient_id)
        first_step = policy.step(0)
        fire_at = (
            started_at + timedelta(seconds=first_step.delay_seconds)
            if first_step is not None
            else None
        )

        with alert_context(alert.id):
            async with self._store.locked(alert.id):
                if not await self._store.complete_initial_round(alert.id, fire_at):
                    logger.info("Initial dispatch round skipped, alert no longer pending")
                    return None

                dispatch = self._launcher.start_initial(alert, plan)
                if fire_at is not None:
                    self.schedule(alert.id, fire_at)

        return dispatch

    async def _retry_initial_round(self, alert: Alert, now: datetime) -> DispatchRound | None:
        try:
            plan = await self._launcher.plan(alert)
        except DirectoryUnavailable:
            retry_at = now + self._retry_delay
            if await self.arm(alert.id, 0, retry_at, initial_round=True):
                logger.warning(
                    "Initial dispatch round postponed, care directory unavailable",
                    retry_at=retry_at.isoformat(),
                )
            return None

        dispatch = await self.start_initial_round(alert, plan, now)
        if dispatch is not None:
            logger.info("Initial dispatch round sent after retry", pairs=dispatch.pair_count)
        return dispatch

    # ── Recovery ──

    async def recover(self) -> int:
        """Re-arm every pending escalation from durable state.

        Schedules a job for each persisted timer of an active alert and
        recreates timers that are missing (from ``last_escalated_at`` or
        ``created_at`` plus the next step's delay). Also removes timers
        left behind by alerts that are no longer active.

        Returns:
            Number of timers scheduled.
        """
        scheduled = 0

        for timer in await self._store.pending_timers():
            self.schedule(timer.alert_id, timer.fire_at)
            scheduled += 1

        for alert in await self._store.active_alerts_without_timer():
            try:
                policy = await self._policies.policy_for(alert.patient_id)
                step = policy.step(alert.escalation_step)
                if step is None:
                    continue
                base = alert.last_escalated_at or alert.created_at
                fire_at = base + timedelta(seconds=step.delay_seconds)
                if await self.arm(alert.id, alert.escalation_step, fire_at):
                    scheduled += 1
                    logger.info(
                        "Escalation timer recreated",
                        alert_id=str(alert.id),
                        step_index=alert.escalation_step,
                        fire_at=fire_at.isoformat(),
                    )
            except Exception:
                logger.error(
                    "Failed to recover escalation timer",
                    alert_id=str(alert.id),
                    exc_info=True,
                )

        await self._store.delete_orphan_timers()

        logger.info("Escalation timers recovered", scheduled=scheduled)
        return scheduled
