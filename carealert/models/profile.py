"""Person profile model.

Owned by the surrounding user-management system; the alert core only
reads contact methods from it (patients and caregivers alike).
"""

import uuid

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from carealert.models.base import Base, TimestampMixin


class Profile(Base, TimestampMixin):
    """A patient or caregiver with the contact methods on file.

    Attributes:
        id: Unique profile identifier
        email: Login / transactional email address (unique)
        full_name: Display name used in notification text
        phone: Phone number in any human format; digits are extracted per channel
        telegram_username: Handle the person uses on the Telegram bot
    """

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
    )
    phone: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        index=True,
    )
    telegram_username: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email={self.email!r})>"
