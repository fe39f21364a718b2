"""Starts dispatch rounds for alerts.

Shared by alert creation and escalation: resolve who must be told (with
retries while the care directory is unreachable), narrow the list to the
round's recipient tier, then hand it to the dispatcher.

For check-in alert kinds the initial round goes to the patient alone,
asking whether they are okay; caregivers are reached by the escalation
rounds that follow if the patient does not respond.
"""

import asyncio
from collections.abc import Iterable

from carealert.exceptions import DirectoryUnavailable
from carealert.logging_config import get_logger
from carealert.models.alert import Alert, AlertKind
from carealert.schemas.escalation_policy import RecipientTier
from carealert.services.message_builder import build_check_in_message, build_message
from carealert.services.notification_dispatcher import DispatchRound, NotificationDispatcher
from carealert.services.permission_resolver import (
    PermissionResolver,
    RecipientPlan,
    select_tier,
)

logger = get_logger(__name__)


class RoundLauncher:
    def __init__(
        self,
        resolver: PermissionResolver,
        dispatcher: NotificationDispatcher,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        check_in_kinds: Iterable[AlertKind] = (),
    ):
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._check_in_kinds = frozenset(check_in_kinds)

    def checks_in_first(self, alert: Alert, plan: RecipientPlan) -> bool:
        """Whether the patient is asked before any caregiver is told."""
        return alert.kind in self._check_in_kinds and plan.patient is not None

    async def plan(self, alert: Alert) -> RecipientPlan:
        """Resolve recipients, retrying with exponential backoff.

        Raises:
            DirectoryUnavailable: Still unreachable after the last attempt.
        """
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return await self._resolver.plan(alert.patient_id, alert.kind)
            except DirectoryUnavailable:
                if attempt == self._retry_attempts:
                    logger.error(
                        "Care directory unavailable, giving up on dispatch round",
                        alert_id=str(alert.id),
                        attempts=attempt,
                    )
                    raise
                delay = self._retry_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "Care directory unavailable, retrying",
                    alert_id=str(alert.id),
                    attempt=attempt,
                    retry_in_seconds=delay,
                )
                await asyncio.sleep(delay)

        raise AssertionError("retry loop exited without a result")

    def start_initial(self, alert: Alert, plan: RecipientPlan) -> DispatchRound:
        """Round 0: a patient check-in, or the primary caregivers."""
        if self.checks_in_first(alert, plan):
            logger.info("Sending check-in to patient", alert_id=str(alert.id))
            return self._dispatcher.start_round(
                alert,
                plan.patient_name,
                [plan.patient],
                0,
                message=build_check_in_message(alert, plan.patient_name),
            )

        if alert.kind in self._check_in_kinds:
            logger.warning(
                "Patient has no usable channel, notifying caregivers instead",
                alert_id=str(alert.id),
            )
        return self.start(alert, plan, RecipientTier.PRIMARY, 0)

    def start(
        self,
        alert: Alert,
        plan: RecipientPlan,
        tier: RecipientTier,
        round_number: int,
    ) -> DispatchRound:
        recipients = select_tier(plan.recipients, tier)
        message = build_message(
            alert,
            plan.patient_name,
            round_number,
            check_in_unanswered=round_number > 0 and self.checks_in_first(alert, plan),
        )
        return self._dispatcher.start_round(
            alert, plan.patient_name, recipients, round_number, message=message
        )
