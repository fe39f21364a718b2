"""Service-to-service authentication.

Trigger producers and admin tooling are trusted internal callers. They
authenticate with a shared token in the ``X-Service-Token`` header.
Caregiver identity on lifecycle actions is vouched for by the same
caller (the surrounding app authenticates end users).
"""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from carealert.core.container import AlertCore, get_core
from carealert.logging_config import get_logger

logger = get_logger(__name__)

SERVICE_TOKEN_HEADER = "X-Service-Token"


async def require_service_token(
    core: Annotated[AlertCore, Depends(get_core)],
    x_service_token: Annotated[str | None, Header(alias=SERVICE_TOKEN_HEADER)] = None,
) -> None:
    """Reject requests without the configured service token.

    Raises:
        HTTPException 401: Missing or wrong token, or no token configured
    """
    expected = core.settings.service_token
    if not expected or not x_service_token or not hmac.compare_digest(
        x_service_token.encode(), expected.encode()
    ):
        logger.warning("Rejected request with invalid service token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service token",
        )
