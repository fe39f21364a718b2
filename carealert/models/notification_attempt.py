"""Notification attempt model.

One row per (recipient, channel) pair per dispatch round, written after
the channel adapter call resolves. Together the rows of an alert form its
append-only audit trail.
"""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carealert.models.base import Base, UTCDateTime, enum_column


class Channel(str, enum.Enum):
    """Independent delivery medium."""

    EMAIL = "email"
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    PUSH = "push"


class AttemptOutcome(str, enum.Enum):
    """Result of one adapter call."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationAttempt(Base):
    """Audit record of one send to one recipient on one channel."""

    __tablename__ = "notification_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("alerts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )

    channel: Mapped[Channel] = mapped_column(
        enum_column(Channel, "notificationchannel"),
        nullable=False,
    )

    # 0 = initial round, n = escalation step n
    round_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    attempted_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    outcome: Mapped[AttemptOutcome] = mapped_column(
        enum_column(AttemptOutcome, "attemptoutcome"),
        nullable=False,
    )

    # FailureReason code for failed / skipped attempts
    failure_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    error_detail: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationAttempt(alert={self.alert_id}, "
            f"recipient={self.recipient_id}, channel={self.channel.value}, "
            f"outcome={self.outcome.value})>"
        )
