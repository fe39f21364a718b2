"""Telegram opt-in model.

Telegram bots can only message people who opened a chat with the bot
first. A row is written when someone sends ``/start`` to the bot, which
is what the bot channel adapter needs to reach them.
"""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from carealert.models.base import Base, TimestampMixin, UTCDateTime


class TelegramLink(Base, TimestampMixin):
    """Maps a Telegram username to the chat_id the bot may write to."""

    __tablename__ = "telegram_links"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Lower-cased, stored without the leading "@"
    username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )

    chat_id: Mapped[int] = mapped_column(
        BigInteger,
        unique=True,
        nullable=False,
    )

    linked_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<TelegramLink(username={self.username}, chat_id={self.chat_id})>"
