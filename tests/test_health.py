"""Tests for health check endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from carealert.main import create_app


@pytest_asyncio.fixture
async def anonymous_client(core):
    """Client without the service token; health probes do not need one."""
    async with AsyncClient(
        transport=ASGITransport(app=create_app(core)),
        base_url="http://test",
    ) as ac:
        yield ac


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    @pytest.mark.asyncio
    async def test_returns_healthy_with_db_connected(self, anonymous_client):
        response = await anonymous_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "scheduler": "stopped",
            "channels": ["email", "whatsapp"],
        }

    @pytest.mark.asyncio
    async def test_returns_degraded_when_db_disconnected(self, anonymous_client, core):
        """
        Health endpoint returns 503 with degraded status when database
        is unavailable.
        """
        with patch.object(core, "check_database", AsyncMock(return_value=False)):
            response = await anonymous_client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["database"] == "disconnected"

    @pytest.mark.asyncio
    async def test_check_database_against_live_engine(self, core):
        assert await core.check_database() is True


class TestLivenessProbe:
    """Tests for /health/live endpoint (Kubernetes liveness probe)."""

    @pytest.mark.asyncio
    async def test_returns_alive(self, anonymous_client, core):
        """Liveness must not depend on the database."""
        with patch.object(core, "check_database", AsyncMock(return_value=False)):
            response = await anonymous_client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}


class TestRootEndpoint:
    """Tests for root endpoint."""

    @pytest.mark.asyncio
    async def test_returns_api_info(self, anonymous_client):
        response = await anonymous_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "CareAlert API"
        assert data["version"] == "0.1.0"
        assert data["docs"] == "/docs"
