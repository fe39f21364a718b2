"""Durable escalation timer model.

A row exists exactly while an escalation is pending for an active alert.
Persisting the timer lets any worker re-arm it after a restart.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

from carealert.models.base import Base, UTCDateTime


class EscalationTimer(Base):
    """Pending single-shot timer for one alert.

    ``step_index`` is the escalation policy step applied when it fires.
    While ``initial_round`` is set the alert's first dispatch round has not
    gone out yet; firing retries that round instead of escalating.
    """

    __tablename__ = "escalation_timers"

    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("alerts.id", ondelete="CASCADE"),
        primary_key=True,
    )

    step_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    fire_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )

    initial_round: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationTimer(alert={self.alert_id}, "
            f"step={self.step_index}, initial_round={self.initial_round}, "
            f"fire_at={self.fire_at.isoformat()})>"
        )
