"""Health check endpoints for container orchestration."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from carealert.core.container import AlertCore, get_core

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=None)
async def health_check(core: Annotated[AlertCore, Depends(get_core)]) -> Response:
    """
    Health check endpoint with database and scheduler status.

    Returns 200 with "healthy" when the database is reachable, 503 with
    "degraded" otherwise. Used by Docker health checks and load balancers.
    """
    db_connected = await core.check_database()
    content = {
        "status": "healthy" if db_connected else "degraded",
        "database": "connected" if db_connected else "disconnected",
        "scheduler": "running" if core.scheduler_running else "stopped",
        "channels": sorted(c.value for c in core.adapters),
    }
    return JSONResponse(
        status_code=status.HTTP_200_OK if db_connected else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=content,
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """Liveness probe; does not touch external dependencies."""
    return {"status": "alive"}
