"""Escalation policy schemas.

The policy is configuration, not part of the alert record. It is
validated here once, whether it comes from settings, the policy file, a
per-patient row or the API.
"""

import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from carealert.models.alert import AlertSeverity


class RecipientTier(str, enum.Enum):
    """Which recipients a dispatch round reaches."""

    PRIMARY = "primary"  # primary caregivers only
    ALL = "all"  # primary and backup caregivers


class EscalationStep(BaseModel):
    """One escalation level: wait, raise severity, widen the audience."""

    model_config = ConfigDict(frozen=True)

    delay_seconds: int = Field(
        gt=0,
        description="Seconds without a response before this step fires.",
    )
    severity_floor: AlertSeverity = Field(
        description="Severity is raised to this value if currently lower.",
    )
    recipient_tier: RecipientTier = RecipientTier.ALL


class EscalationPolicy(BaseModel):
    """Ordered escalation steps; an empty list means no escalation."""

    model_config = ConfigDict(frozen=True)

    steps: list[EscalationStep] = Field(default_factory=list, max_length=20)

    @model_validator(mode="after")
    def validate_floors_non_decreasing(self) -> "EscalationPolicy":
        """Severity never goes down during escalation."""
        for previous, current in zip(self.steps, self.steps[1:], strict=False):
            if current.severity_floor.rank < previous.severity_floor.rank:
                msg = "severity_floor must not decrease from one step to the next"
                raise ValueError(msg)
        return self

    def step(self, index: int) -> EscalationStep | None:
        """Step at ``index`` or None once the policy is exhausted."""
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None


class PatientEscalationPolicyResponse(BaseModel):
    """Per-patient policy override as stored."""

    model_config = ConfigDict(from_attributes=True)

    patient_id: uuid.UUID
    steps: list[EscalationStep]
    updated_at: datetime


class EscalationPolicyResponse(BaseModel):
    """Effective policy with its origin."""

    source: str = Field(description="'default' or 'patient'")
    steps: list[EscalationStep]
