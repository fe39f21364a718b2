"""Escalation policy provider.

The service-wide default comes from settings, or from a JSON policy file
that is re-read whenever its modification time changes. Patients may
carry their own policy row, which replaces the default entirely.
"""

import os
import uuid

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.config import Settings
from carealert.logging_config import get_logger
from carealert.models.escalation_policy import PatientEscalationPolicy
from carealert.schemas.escalation_policy import EscalationPolicy, EscalationStep

logger = get_logger(__name__)


def policy_from_settings(settings: Settings) -> EscalationPolicy:
    """Build the default policy from the three parallel settings lists."""
    delays = settings.escalation_step_delays_seconds
    floors = settings.escalation_step_severity_floors
    tiers = settings.escalation_step_tiers
    if not len(delays) == len(floors) == len(tiers):
        msg = (
            "escalation_step_delays_seconds, escalation_step_severity_floors and "
            "escalation_step_tiers must have the same length"
        )
        raise ValueError(msg)

    return EscalationPolicy(
        steps=[
            EscalationStep(delay_seconds=delay, severity_floor=floor, recipient_tier=tier)
            for delay, floor, tier in zip(delays, floors, tiers, strict=True)
        ]
    )


class EscalationPolicyProvider:
    """Hands out the effective escalation policy for a patient."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        default: EscalationPolicy,
        policy_file: str | None = None,
    ):
        self._session_maker = session_maker
        self._default = default
        self._policy_file = policy_file or None
        self._file_mtime: float | None = None

    def default_policy(self) -> EscalationPolicy:
        """Current default policy, reloading the policy file if it changed.

        A file that cannot be read or fails validation is logged and the
        previously loaded policy stays in effect.
        """
        if self._policy_file is None:
            return self._default

        try:
            mtime = os.stat(self._policy_file).st_mtime
        except OSError as e:
            logger.warning(
                "Escalation policy file not readable, keeping current policy",
                path=self._policy_file,
                error=str(e),
            )
            return self._default

        if mtime != self._file_mtime:
            try:
                with open(self._policy_file, encoding="utf-8") as f:
                    policy = EscalationPolicy.model_validate_json(f.read())
            except (OSError, ValidationError) as e:
                logger.error(
                    "Invalid escalation policy file, keeping current policy",
                    path=self._policy_file,
                    error=str(e),
                )
            else:
                self._default = policy
                logger.info(
                    "Escalation policy reloaded",
                    path=self._policy_file,
                    steps=len(policy.steps),
                )
            self._file_mtime = mtime

        return self._default

    async def get_patient_policy(self, patient_id: uuid.UUID) -> EscalationPolicy | None:
        async with self._session_maker() as db:
            result = await db.execute(
                select(PatientEscalationPolicy).where(
                    PatientEscalationPolicy.patient_id == patient_id
                )
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return EscalationPolicy(steps=row.steps)

    async def policy_for(self, patient_id: uuid.UUID) -> EscalationPolicy:
        """Patient override if one exists, otherwise the default."""
        policy = await self.get_patient_policy(patient_id)
        return policy if policy is not None else self.default_policy()

    async def set_patient_policy(
        self,
        patient_id: uuid.UUID,
        policy: EscalationPolicy,
    ) -> PatientEscalationPolicy:
        """Create or replace the policy override of a patient."""
        steps = [step.model_dump(mode="json") for step in policy.steps]

        async with self._session_maker() as db:
            result = await db.execute(
                select(PatientEscalationPolicy).where(
                    PatientEscalationPolicy.patient_id == patient_id
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = PatientEscalationPolicy(patient_id=patient_id, steps=steps)
                db.add(row)
            else:
                row.steps = steps
            await db.commit()
            await db.refresh(row)

        logger.info(
            "Patient escalation policy updated",
            patient_id=str(patient_id),
            steps=len(steps),
        )
        return row

    async def clear_patient_policy(self, patient_id: uuid.UUID) -> bool:
        """Drop a patient's override. Returns False if there was none."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(PatientEscalationPolicy).where(
                    PatientEscalationPolicy.patient_id == patient_id
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            await db.delete(row)
            await db.commit()
        return True
