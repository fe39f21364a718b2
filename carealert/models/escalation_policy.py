"""Per-patient escalation policy override model.

Patients without a row use the service-wide default policy.
"""

import uuid
from typing import Any

from sqlalchemy import ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carealert.models.base import Base, JSONType, TimestampMixin


class PatientEscalationPolicy(Base, TimestampMixin):
    """Ordered escalation steps for one patient.

    ``steps`` holds a JSON list of
    ``{"delay_seconds": int, "severity_floor": str, "recipient_tier": str}``.
    """

    __tablename__ = "escalation_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    steps: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    def __repr__(self) -> str:
        return f"<PatientEscalationPolicy(patient_id={self.patient_id}, steps={len(self.steps)})>"
