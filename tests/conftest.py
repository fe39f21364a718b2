"""Pytest configuration and shared fixtures.

Every test gets its own SQLite database file and a fresh alert core whose
channel providers are served by an in-process httpx MockTransport.
"""

import os
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Set testing mode BEFORE importing app to use NullPool
os.environ["TESTING"] = "true"

from carealert.config import Settings
from carealert.core.auth import SERVICE_TOKEN_HEADER
from carealert.core.container import AlertCore
from carealert.database import build_engine, build_session_maker, create_all
from carealert.main import create_app
from carealert.models.care_relationship import (
    CareRelationship,
    RelationshipStatus,
    RelationshipType,
)
from carealert.models.profile import Profile
from carealert.models.telegram_link import TelegramLink
from tests.fakes import (
    EMAIL_HOST,
    SERVICE_TOKEN,
    TELEGRAM_HOST,
    WHATSAPP_HOST,
    FakeProviders,
)

# ---------------------------------------------------------------------------
# Database and core
# ---------------------------------------------------------------------------
@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with email and WhatsApp on; Telegram, push and check-ins off."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'carealert.db'}",
        log_format="text",
        service_token=SERVICE_TOKEN,
        channel_timeout_seconds=2.0,
        resend_api_url=f"https://{EMAIL_HOST}",
        resend_api_key="re_test_key",
        email_from="CareAlert <alerts@carealert.test>",
        telegram_api_base=f"https://{TELEGRAM_HOST}",
        telegram_bot_token="",
        whatsapp_gateway_url=f"https://{WHATSAPP_HOST}",
        whatsapp_gateway_api_key="wa-test-key",
        whatsapp_gateway_instance="carealert",
        push_webhook_url="",
        escalation_step_delays_seconds=[300, 600, 1200],
        escalation_step_severity_floors=["medium", "high", "critical"],
        escalation_step_tiers=["all", "all", "all"],
        escalation_policy_file="",
        escalation_sweep_interval_seconds=60,
        patient_check_in_kinds=[],
        directory_retry_attempts=2,
        directory_retry_backoff_seconds=0,
        scheduler_enabled=False,
        testing=True,
    )


@pytest_asyncio.fixture
async def db_engine(test_settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(test_settings.database_url, testing=True)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(db_engine)


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest_asyncio.fixture
async def make_core(
    session_maker, providers, test_settings
) -> AsyncGenerator[Callable[..., AlertCore], None]:
    """Factory for alert cores sharing the test database.

    Keyword arguments override individual settings.
    """
    cores: list[AlertCore] = []

    def factory(**overrides: Any) -> AlertCore:
        settings = test_settings.model_copy(update=overrides)
        core = AlertCore(session_maker, settings, transport=providers.transport())
        cores.append(core)
        return core

    yield factory

    for core in cores:
        await core.shutdown()


@pytest.fixture
def core(make_core) -> AlertCore:
    return make_core()


@pytest_asyncio.fixture
async def client(core) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=create_app(core)),
        base_url="http://test",
        headers={SERVICE_TOKEN_HEADER: SERVICE_TOKEN},
    ) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Directory data
# ---------------------------------------------------------------------------
def unique_email(prefix: str = "test") -> str:
    """Generate a unique email for testing."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}@example.com"


@pytest.fixture
def make_profile(session_maker) -> Callable[..., Any]:
    async def factory(
        name: str = "Test Person",
        email: str | None = None,
        phone: str | None = None,
        telegram_username: str | None = None,
    ) -> Profile:
        profile = Profile(
            id=uuid.uuid4(),
            email=email or unique_email(name.split()[0].lower()),
            full_name=name,
            phone=phone,
            telegram_username=telegram_username,
        )
        async with session_maker() as db:
            db.add(profile)
            await db.commit()
        return profile

    return factory


@pytest.fixture
def link_caregiver(session_maker) -> Callable[..., Any]:
    async def factory(
        patient: Profile,
        caregiver: Profile,
        relationship_type: RelationshipType = RelationshipType.FAMILY_MEMBER,
        status: RelationshipStatus = RelationshipStatus.ACTIVE,
        can_receive_alerts: bool = True,
        created_at: datetime | None = None,
    ) -> CareRelationship:
        relationship = CareRelationship(
            id=uuid.uuid4(),
            patient_id=patient.id,
            caregiver_id=caregiver.id,
            relationship_type=relationship_type,
            status=status,
            can_receive_alerts=can_receive_alerts,
            created_at=created_at or datetime.now(UTC),
        )
        async with session_maker() as db:
            db.add(relationship)
            await db.commit()
        return relationship

    return factory


@pytest.fixture
def link_telegram(session_maker) -> Callable[..., Any]:
    async def factory(username: str, chat_id: int) -> TelegramLink:
        link = TelegramLink(
            username=username.lstrip("@").lower(),
            chat_id=chat_id,
            linked_at=datetime.now(UTC),
        )
        async with session_maker() as db:
            db.add(link)
            await db.commit()
        return link

    return factory


@pytest_asyncio.fixture
async def care_circle(make_profile, link_caregiver) -> dict[str, Any]:
    """Patient with a primary caregiver (email + phone) and a backup (email only)."""
    patient = await make_profile("Rosa Patient", email="rosa@example.com", phone="+13035550100")
    primary = await make_profile("Pat Primary", email="pat@example.com", phone="+1 303 555 0111")
    backup = await make_profile("Bo Backup", email="bo@example.com")
    await link_caregiver(
        patient,
        primary,
        relationship_type=RelationshipType.PRIMARY_CAREGIVER,
        created_at=datetime(2024, 1, 2, tzinfo=UTC),
    )
    await link_caregiver(
        patient,
        backup,
        relationship_type=RelationshipType.FAMILY_MEMBER,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    return {"patient": patient, "primary": primary, "backup": backup}
