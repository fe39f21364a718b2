"""Trigger ingress schemas."""

import uuid
from typing import Any

from pydantic import BaseModel, Field

from carealert.models.alert import AlertKind, AlertSeverity, AlertStatus


class TriggerEvent(BaseModel):
    """A raw safety signal from an automation pipeline or a person.

    ``patient_identifier`` is the patient's email address or phone number.
    """

    patient_identifier: str = Field(min_length=1, max_length=255)
    kind: AlertKind
    context: dict[str, Any] = Field(default_factory=dict)
    severity_hint: AlertSeverity | None = Field(
        default=None,
        description="Overrides the default severity for the alert kind.",
    )


class TriggerResponse(BaseModel):
    """Result of an accepted trigger."""

    alert_id: uuid.UUID
    status: AlertStatus
    severity: AlertSeverity
    recipients_notified: int = Field(
        description="(recipient, channel) pairs in the initial dispatch round.",
    )
