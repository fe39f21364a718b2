"""Telegram bot channel.

A bot can only write to people who opened a chat with it first. The
polling job records every ``/start`` sender as a TelegramLink; the
adapter looks the recipient's username up there to find the chat id.
"""

from datetime import UTC, datetime
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.exceptions import (
    ChannelPermanentFailure,
    ChannelTransientFailure,
    FailureReason,
)
from carealert.logging_config import get_logger
from carealert.models.notification_attempt import Channel
from carealert.models.telegram_link import TelegramLink
from carealert.services.channels.base import ChannelAdapter
from carealert.services.message_builder import Message, format_telegram_html
from carealert.services.permission_resolver import ContactInfo

logger = get_logger(__name__)

WELCOME_TEXT = (
    "You are now connected to CareAlert. Safety alerts for the people "
    "you care for will be delivered here."
)


class TelegramBotError(Exception):
    """Error communicating with the Telegram Bot API."""


def normalize_username(username: str) -> str:
    return username.strip().lstrip("@").lower()


class TelegramAdapter(ChannelAdapter):
    channel = Channel.TELEGRAM

    def __init__(
        self,
        bot_token: str,
        session_maker: async_sessionmaker[AsyncSession],
        api_base: str = "https://api.telegram.org",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, transport=transport)
        self._session_maker = session_maker
        self._api_url = f"{api_base.rstrip('/')}/bot{bot_token}"

    def _method_url(self, method: str) -> str:
        return f"{self._api_url}/{method}"

    async def chat_id_for(self, username: str) -> int | None:
        async with self._session_maker() as db:
            result = await db.execute(
                select(TelegramLink.chat_id).where(
                    TelegramLink.username == normalize_username(username)
                )
            )
            return result.scalar_one_or_none()

    async def _deliver(self, contact: ContactInfo, message: Message) -> None:
        if not contact.telegram_username:
            raise ChannelPermanentFailure(FailureReason.INVALID_ADDRESS, "no telegram username")

        chat_id = await self.chat_id_for(contact.telegram_username)
        if chat_id is None:
            raise ChannelPermanentFailure(
                FailureReason.NOT_OPTED_IN, "recipient has not started the bot"
            )

        await self.send_text(chat_id, format_telegram_html(message))

    async def send_text(self, chat_id: int, text: str) -> None:
        """Send an HTML-formatted message to a chat.

        Raises:
            ChannelTransientFailure: Timeout, network error, 5xx or 429.
            ChannelPermanentFailure: Blocked, unknown chat or other rejection.
        """
        response = await self._request(
            "POST",
            self._method_url("sendMessage"),
            json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
        )

        if response.status_code == 403 or (
            response.status_code == 400 and "chat not found" in response.text.lower()
        ):
            raise ChannelPermanentFailure(
                FailureReason.NOT_OPTED_IN, f"{response.status_code} {response.text[:200]}"
            )
        self._raise_for_status(response)

        data = response.json()
        if not data.get("ok"):
            raise ChannelPermanentFailure(
                FailureReason.REJECTED, str(data.get("description", "Unknown"))
            )

    async def get_updates(self, offset: int | None = None) -> list[dict[str, Any]]:
        """Fetch pending bot updates (short poll).

        Raises:
            TelegramBotError: If the API call fails.
        """
        params: dict[str, Any] = {"timeout": 1, "allowed_updates": '["message"]'}
        if offset is not None:
            params["offset"] = offset

        try:
            async with self._client() as client:
                response = await client.get(self._method_url("getUpdates"), params=params)
        except httpx.HTTPError as e:
            raise TelegramBotError(f"Failed to get updates: {e}") from e

        if response.status_code != 200:
            raise TelegramBotError(
                f"Failed to get updates: {response.status_code} {response.text}"
            )

        data = response.json()
        if not data.get("ok"):
            raise TelegramBotError(f"Get updates failed: {data.get('description', 'Unknown')}")

        return data.get("result", [])


class TelegramOptInPoller:
    """Records ``/start`` senders so the bot may message them later."""

    def __init__(self, adapter: TelegramAdapter, session_maker: async_sessionmaker[AsyncSession]):
        self._adapter = adapter
        self._session_maker = session_maker
        self._offset: int | None = None

    async def record_link(self, username: str, chat_id: int) -> bool:
        """Create or refresh a link. Returns True if it is new or changed."""
        username = normalize_username(username)
        async with self._session_maker() as db:
            result = await db.execute(
                select(TelegramLink).where(TelegramLink.username == username)
            )
            link = result.scalar_one_or_none()
            if link is not None and link.chat_id == chat_id:
                return False

            if link is None:
                db.add(
                    TelegramLink(username=username, chat_id=chat_id, linked_at=datetime.now(UTC))
                )
            else:
                link.chat_id = chat_id
                link.linked_at = datetime.now(UTC)

            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning(
                    "Telegram chat already linked to another username",
                    username=username,
                    chat_id=chat_id,
                )
                return False

        logger.info("Telegram opt-in recorded", username=username, chat_id=chat_id)
        return True

    async def poll(self) -> int:
        """Process pending updates once.

        Returns:
            Number of new or refreshed opt-ins.
        """
        updates = await self._adapter.get_updates(self._offset)
        linked = 0

        for update in updates:
            self._offset = update.get("update_id", 0) + 1

            message = update.get("message", {})
            text = (message.get("text") or "").strip()
            chat_id = message.get("chat", {}).get("id")
            username = message.get("from", {}).get("username")

            if not chat_id or not text.startswith("/start"):
                continue
            if not username:
                logger.debug("Ignoring /start from user without username", chat_id=chat_id)
                continue

            if await self.record_link(username, chat_id):
                linked += 1
                try:
                    await self._adapter.send_text(chat_id, WELCOME_TEXT)
                except (ChannelTransientFailure, ChannelPermanentFailure) as e:
                    logger.warning(
                        "Failed to send welcome message",
                        chat_id=chat_id,
                        reason=e.reason.value,
                    )

        return linked
