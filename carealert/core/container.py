"""Object graph of the alert core.

Everything is built from ``Settings`` and a session maker so tests can
wire a core against their own database and HTTP transport.
"""

import httpx
from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.config import Settings
from carealert.logging_config import get_logger
from carealert.models.alert import AlertKind
from carealert.models.notification_attempt import Channel
from carealert.services.alert_lifecycle import AlertLifecycle
from carealert.services.alert_store import AlertStore
from carealert.services.care_directory import CareDirectory
from carealert.services.channels import build_adapters
from carealert.services.channels.telegram import TelegramAdapter, TelegramOptInPoller
from carealert.services.escalation_policy import EscalationPolicyProvider, policy_from_settings
from carealert.services.escalation_scheduler import EscalationScheduler
from carealert.services.notification_dispatcher import NotificationDispatcher
from carealert.services.permission_resolver import PermissionResolver
from carealert.services.round_launcher import RoundLauncher
from carealert.services.scheduler import start_scheduler, stop_scheduler
from carealert.services.trigger_ingress import TriggerIngress

logger = get_logger(__name__)


class AlertCore:
    """Wires stores, resolver, dispatcher, scheduler and state machine."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.session_maker = session_maker

        self.store = AlertStore(session_maker)
        self.directory = CareDirectory(session_maker)
        self.adapters = build_adapters(settings, session_maker, transport)
        self.resolver = PermissionResolver(self.directory, frozenset(self.adapters))
        self.dispatcher = NotificationDispatcher(self.store, self.adapters)
        self.policies = EscalationPolicyProvider(
            session_maker,
            default=policy_from_settings(settings),
            policy_file=settings.escalation_policy_file,
        )
        self.launcher = RoundLauncher(
            self.resolver,
            self.dispatcher,
            retry_attempts=settings.directory_retry_attempts,
            retry_backoff_seconds=settings.directory_retry_backoff_seconds,
            check_in_kinds=[AlertKind(kind) for kind in settings.patient_check_in_kinds],
        )
        self.escalations = EscalationScheduler(
            self.store,
            self.policies,
            self.launcher,
            retry_delay_seconds=settings.escalation_sweep_interval_seconds,
        )
        self.lifecycle = AlertLifecycle(
            self.store,
            self.directory,
            self.resolver,
            self.launcher,
            self.escalations,
        )
        self.ingress = TriggerIngress(self.directory, self.lifecycle)

        telegram = self.adapters.get(Channel.TELEGRAM)
        self.telegram_poller = (
            TelegramOptInPoller(telegram, session_maker)
            if isinstance(telegram, TelegramAdapter)
            else None
        )
        self._scheduler_started = False

    async def start(self) -> None:
        """Start background jobs and re-arm pending escalations."""
        if self.settings.scheduler_enabled:
            start_scheduler(self.settings, self.escalations, self.telegram_poller)
            self._scheduler_started = True
        await self.escalations.recover()
        logger.info("Alert core started", channels=[c.value for c in self.adapters])

    async def shutdown(self) -> None:
        """Stop background jobs and let in-flight notifications finish."""
        if self._scheduler_started:
            stop_scheduler()
            self._scheduler_started = False
        await self.dispatcher.drain()
        logger.info("Alert core stopped")

    async def check_database(self) -> bool:
        """Return True if the database answers ``SELECT 1``."""
        try:
            async with self.session_maker() as db:
                await db.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database health check failed", error=str(e))
            return False
        return True

    @property
    def scheduler_running(self) -> bool:
        return self._scheduler_started


def get_core(request: Request) -> AlertCore:
    """FastAPI dependency returning the application's alert core."""
    return request.app.state.core
