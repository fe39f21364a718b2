"""Background job scheduler.

One ``AsyncIOScheduler`` per process runs the periodic jobs below plus
the per-alert escalation timers registered by ``EscalationScheduler``.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from carealert.config import Settings
from carealert.logging_config import get_logger
from carealert.services.channels.telegram import TelegramBotError, TelegramOptInPoller
from carealert.services.escalation_scheduler import EscalationScheduler

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sweep_escalation_timers(escalations: EscalationScheduler) -> None:
    """Re-arm escalation timers lost by a crashed or restarted worker."""
    try:
        await escalations.recover()
    except Exception as e:
        logger.error("Escalation sweep failed", error=str(e), exc_info=True)


async def poll_telegram_updates(poller: TelegramOptInPoller) -> None:
    """Record people who started the Telegram bot."""
    try:
        linked = await poller.poll()
        if linked > 0:
            logger.info("Processed Telegram opt-ins", count=linked)
    except TelegramBotError as e:
        logger.warning("Telegram polling error", error=str(e))
    except Exception as e:
        logger.error("Unexpected Telegram polling error", error=str(e), exc_info=True)


def start_scheduler(
    settings: Settings,
    escalations: EscalationScheduler,
    telegram_poller: TelegramOptInPoller | None = None,
) -> AsyncIOScheduler:
    """Start the background job scheduler.

    Must be called from a running event loop.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()
    escalations.attach(scheduler)

    scheduler.add_job(
        sweep_escalation_timers,
        trigger=IntervalTrigger(seconds=settings.escalation_sweep_interval_seconds),
        args=[escalations],
        id="escalation_sweep",
        name="Escalation Timer Sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "Scheduled escalation sweep job",
        interval_seconds=settings.escalation_sweep_interval_seconds,
    )

    if telegram_poller is not None and settings.telegram_polling_enabled:
        scheduler.add_job(
            poll_telegram_updates,
            trigger=IntervalTrigger(seconds=settings.telegram_polling_interval_seconds),
            args=[telegram_poller],
            id="telegram_poll",
            name="Telegram Bot Polling",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled Telegram polling job",
            interval_seconds=settings.telegram_polling_interval_seconds,
        )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance.

    Returns:
        The scheduler instance or None if not started
    """
    return scheduler
