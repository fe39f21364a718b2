"""Alert schemas.

Request and response schemas for alert lifecycle actions and the audit
trail.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from carealert.models.alert import AlertKind, AlertSeverity, AlertStatus
from carealert.models.notification_attempt import AttemptOutcome, Channel


class AlertActionRequest(BaseModel):
    """Acknowledge / resolve / false-alarm request from a recipient."""

    recipient_id: uuid.UUID
    note: str | None = Field(default=None, max_length=2000)


class SeverityOverrideRequest(BaseModel):
    """Manual severity change."""

    severity: AlertSeverity


class NotificationAttemptResponse(BaseModel):
    """One audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    recipient_id: uuid.UUID
    channel: Channel
    round_number: int
    attempted_at: datetime
    outcome: AttemptOutcome
    failure_reason: str | None
    error_detail: str | None


class AlertResponse(BaseModel):
    """Single alert response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    patient_id: uuid.UUID
    kind: AlertKind
    severity: AlertSeverity
    status: AlertStatus
    context: dict[str, Any]
    escalation_step: int
    created_at: datetime
    last_escalated_at: datetime | None
    acknowledged_by: uuid.UUID | None
    acknowledged_at: datetime | None
    acknowledgment_note: str | None
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    resolution_note: str | None


class AlertDetailResponse(AlertResponse):
    """Alert with its notification audit trail."""

    notified_recipients: list[NotificationAttemptResponse]
