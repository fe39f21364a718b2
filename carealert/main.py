"""CareAlert FastAPI application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from carealert.config import settings
from carealert.core.container import AlertCore
from carealert.database import close_database, get_session_maker
from carealert.logging_config import get_logger, setup_logging
from carealert.middleware import CorrelationIdMiddleware
from carealert.routers import alerts, escalation, health, triggers

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Note: Migrations are run by alembic before uvicorn starts
    core: AlertCore | None = getattr(app.state, "core", None)
    owns_core = core is None
    if core is None:
        core = AlertCore(get_session_maker(), settings)
        app.state.core = core

    await core.start()
    logger.info("CareAlert API started")

    yield

    logger.info("Shutting down CareAlert API...")
    await core.shutdown()
    if owns_core:
        await close_database()
    logger.info("CareAlert API shutdown complete")


def create_app(core: AlertCore | None = None) -> FastAPI:
    """Build the application; tests pass a pre-wired ``core``."""
    application = FastAPI(
        title="CareAlert API",
        description="Safety alert escalation and multi-channel notification service",
        version="0.1.0",
        lifespan=lifespan,
    )
    if core is not None:
        application.state.core = core

    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(health.router)
    application.include_router(triggers.router)
    application.include_router(alerts.router)
    application.include_router(escalation.router)

    @application.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint."""
        return {
            "name": "CareAlert API",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return application


app = create_app()
