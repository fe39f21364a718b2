# Channel adapters
import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.config import Settings
from carealert.logging_config import get_logger
from carealert.models.notification_attempt import Channel
from carealert.services.channels.base import ChannelAdapter, SendResult
from carealert.services.channels.email import EmailAdapter
from carealert.services.channels.push import PushAdapter
from carealert.services.channels.telegram import TelegramAdapter, TelegramOptInPoller
from carealert.services.channels.whatsapp import WhatsAppAdapter

logger = get_logger(__name__)


def build_adapters(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[Channel, ChannelAdapter]:
    """Adapters for every channel whose credentials are configured."""
    timeout = settings.channel_timeout_seconds
    adapters: dict[Channel, ChannelAdapter] = {}

    if settings.resend_api_key:
        adapters[Channel.EMAIL] = EmailAdapter(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            api_url=settings.resend_api_url,
            timeout_seconds=timeout,
            transport=transport,
        )

    if settings.telegram_bot_token:
        adapters[Channel.TELEGRAM] = TelegramAdapter(
            bot_token=settings.telegram_bot_token,
            session_maker=session_maker,
            api_base=settings.telegram_api_base,
            timeout_seconds=timeout,
            transport=transport,
        )

    if (
        settings.whatsapp_gateway_url
        and settings.whatsapp_gateway_api_key
        and settings.whatsapp_gateway_instance
    ):
        adapters[Channel.WHATSAPP] = WhatsAppAdapter(
            base_url=settings.whatsapp_gateway_url,
            api_key=settings.whatsapp_gateway_api_key,
            instance=settings.whatsapp_gateway_instance,
            timeout_seconds=timeout,
            transport=transport,
        )

    if settings.push_webhook_url:
        adapters[Channel.PUSH] = PushAdapter(
            webhook_url=settings.push_webhook_url,
            timeout_seconds=timeout,
            transport=transport,
        )

    logger.info(
        "Channel adapters configured",
        channels=[c.value for c in adapters],
    )
    return adapters


__all__ = [
    "ChannelAdapter",
    "EmailAdapter",
    "PushAdapter",
    "SendResult",
    "TelegramAdapter",
    "TelegramOptInPoller",
    "WhatsAppAdapter",
    "build_adapters",
]
