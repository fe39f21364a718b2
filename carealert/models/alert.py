"""Safety alert model.

An alert is the permanent record of one safety event: it is created by a
trigger, moved through its lifecycle by caregivers and the escalation
scheduler, and never deleted.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carealert.models.base import Base, JSONType, TimestampMixin, UTCDateTime, enum_column


class AlertKind(str, enum.Enum):
    """Category of the triggering signal."""

    PROLONGED_INACTIVITY = "prolonged_inactivity"
    FALL_DETECTED = "fall_detected"
    OUT_OF_RANGE_VITAL = "out_of_range_vital"
    DISTRESS_SIGNAL = "distress_signal"
    MISSED_CHECKIN = "missed_checkin"
    MANUAL_REPORT = "manual_report"


class AlertSeverity(str, enum.Enum):
    """Ordered severity: LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def at_least(self, floor: "AlertSeverity") -> "AlertSeverity":
        """Return the higher of ``self`` and ``floor``."""
        return floor if floor.rank > self.rank else self


_SEVERITY_ORDER = [
    AlertSeverity.LOW,
    AlertSeverity.MEDIUM,
    AlertSeverity.HIGH,
    AlertSeverity.CRITICAL,
]


class AlertStatus(str, enum.Enum):
    """Lifecycle status. RESOLVED and FALSE_ALARM are terminal."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"

    @property
    def is_terminal(self) -> bool:
        return self in (AlertStatus.RESOLVED, AlertStatus.FALSE_ALARM)


# Severity assigned on creation when the trigger gives no hint
DEFAULT_SEVERITY: dict[AlertKind, AlertSeverity] = {
    AlertKind.PROLONGED_INACTIVITY: AlertSeverity.MEDIUM,
    AlertKind.FALL_DETECTED: AlertSeverity.HIGH,
    AlertKind.OUT_OF_RANGE_VITAL: AlertSeverity.MEDIUM,
    AlertKind.DISTRESS_SIGNAL: AlertSeverity.CRITICAL,
    AlertKind.MISSED_CHECKIN: AlertSeverity.LOW,
    AlertKind.MANUAL_REPORT: AlertSeverity.HIGH,
}


class Alert(Base, TimestampMixin):
    """A tracked safety event for one patient.

    ``escalation_step`` counts the escalation policy steps already applied
    (0 right after creation). The notification audit trail lives in the
    ``notification_attempts`` table.
    """

    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind: Mapped[AlertKind] = mapped_column(
        enum_column(AlertKind, "alertkind"),
        nullable=False,
    )

    severity: Mapped[AlertSeverity] = mapped_column(
        enum_column(AlertSeverity, "alertseverity"),
        nullable=False,
    )

    status: Mapped[AlertStatus] = mapped_column(
        enum_column(AlertStatus, "alertstatus"),
        nullable=False,
        default=AlertStatus.ACTIVE,
        index=True,
    )

    # Where / why: sensor zone, metric and value, free text from the reporter
    context: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    escalation_step: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    last_escalated_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    acknowledged_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )

    acknowledged_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    acknowledgment_note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        index=True,
    )

    resolution_note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Alert(kind={self.kind.value}, "
            f"severity={self.severity.value}, "
            f"status={self.status.value})>"
        )
