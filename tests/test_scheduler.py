"""Tests for the background job scheduler."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from carealert.services.channels.telegram import TelegramBotError
from carealert.services.escalation_scheduler import job_id
from carealert.services.scheduler import (
    get_scheduler,
    poll_telegram_updates,
    start_scheduler,
    stop_scheduler,
    sweep_escalation_timers,
)


@pytest_asyncio.fixture(autouse=True)
async def reset_scheduler():
    yield
    stop_scheduler()


class TestStartScheduler:
    """Tests for start_scheduler()."""

    @pytest.mark.asyncio
    async def test_registers_sweep_job(self, core):
        scheduler = start_scheduler(core.settings, core.escalations)

        assert get_scheduler() is scheduler
        assert scheduler.running
        sweep = scheduler.get_job("escalation_sweep")
        assert sweep is not None
        assert sweep.trigger.interval.total_seconds() == 60
        assert scheduler.get_job("telegram_poll") is None

    @pytest.mark.asyncio
    async def test_registers_telegram_poll_when_poller_given(self, core):
        poller = MagicMock()

        scheduler = start_scheduler(core.settings, core.escalations, poller)

        poll = scheduler.get_job("telegram_poll")
        assert poll is not None
        assert poll.args == (poller,)

    @pytest.mark.asyncio
    async def test_telegram_polling_disabled(self, core):
        settings = core.settings.model_copy(update={"telegram_polling_enabled": False})

        scheduler = start_scheduler(settings, core.escalations, MagicMock())

        assert scheduler.get_job("telegram_poll") is None

    @pytest.mark.asyncio
    async def test_second_start_returns_running_instance(self, core):
        first = start_scheduler(core.settings, core.escalations)

        assert start_scheduler(core.settings, core.escalations) is first

    @pytest.mark.asyncio
    async def test_escalation_jobs_go_to_started_scheduler(self, core):
        scheduler = start_scheduler(core.settings, core.escalations)
        alert_id = uuid.uuid4()

        core.escalations.schedule(alert_id, datetime.now(UTC) + timedelta(hours=1))
        assert scheduler.get_job(job_id(alert_id)) is not None

        core.escalations.cancel(alert_id)
        assert scheduler.get_job(job_id(alert_id)) is None

    @pytest.mark.asyncio
    async def test_stop(self, core):
        start_scheduler(core.settings, core.escalations)

        stop_scheduler()

        assert get_scheduler() is None


class TestJobs:
    """The periodic jobs never raise into the scheduler."""

    @pytest.mark.asyncio
    async def test_sweep_calls_recover(self):
        escalations = MagicMock()
        escalations.recover = AsyncMock(return_value=2)

        await sweep_escalation_timers(escalations)

        escalations.recover.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sweep_swallows_errors(self):
        escalations = MagicMock()
        escalations.recover = AsyncMock(side_effect=RuntimeError("db gone"))

        await sweep_escalation_timers(escalations)

    @pytest.mark.asyncio
    async def test_poll_swallows_bot_errors(self):
        poller = MagicMock()
        poller.poll = AsyncMock(side_effect=TelegramBotError("getUpdates failed"))

        await poll_telegram_updates(poller)

        poller.poll.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_poll_swallows_unexpected_errors(self):
        poller = MagicMock()
        poller.poll = AsyncMock(side_effect=ValueError("bad payload"))

        await poll_telegram_updates(poller)
