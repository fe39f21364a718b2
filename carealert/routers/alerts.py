"""Alert lifecycle endpoints.

Acknowledge, resolve and false-alarm actions on behalf of a recipient,
alert detail with the notification audit trail, and manual severity
override.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from carealert.core.auth import require_service_token
from carealert.core.container import AlertCore, get_core
from carealert.exceptions import (
    AlertCoreError,
    AlertNotFound,
    DirectoryUnavailable,
    InvalidTransition,
    Unauthorized,
)
from carealert.logging_config import get_logger
from carealert.schemas.alert import (
    AlertActionRequest,
    AlertDetailResponse,
    AlertResponse,
    NotificationAttemptResponse,
    SeverityOverrideRequest,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/alerts",
    tags=["alerts"],
    dependencies=[Depends(require_service_token)],
)


def _http_error(e: AlertCoreError) -> HTTPException:
    if isinstance(e, AlertNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    if isinstance(e, Unauthorized):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to act on this alert",
        )
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, DirectoryUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Care directory unavailable",
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{alert_id}", response_model=AlertDetailResponse)
async def get_alert(
    alert_id: uuid.UUID,
    core: Annotated[AlertCore, Depends(get_core)],
) -> AlertDetailResponse:
    """Alert with every notification attempt made for it."""
    try:
        alert = await core.lifecycle.get(alert_id)
        attempts = await core.lifecycle.audit_log(alert_id)
    except AlertCoreError as e:
        raise _http_error(e) from e

    return AlertDetailResponse(
        **AlertResponse.model_validate(alert).model_dump(),
        notified_recipients=[NotificationAttemptResponse.model_validate(a) for a in attempts],
    )


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: uuid.UUID,
    request: AlertActionRequest,
    core: Annotated[AlertCore, Depends(get_core)],
) -> AlertResponse:
    """Recipient has seen the alert; stops escalation."""
    try:
        alert = await core.lifecycle.acknowledge(alert_id, request.recipient_id, request.note)
    except AlertCoreError as e:
        raise _http_error(e) from e
    return AlertResponse.model_validate(alert)


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: uuid.UUID,
    request: AlertActionRequest,
    core: Annotated[AlertCore, Depends(get_core)],
) -> AlertResponse:
    """Close the alert; the person is safe."""
    try:
        alert = await core.lifecycle.resolve(alert_id, request.recipient_id, request.note)
    except AlertCoreError as e:
        raise _http_error(e) from e
    return AlertResponse.model_validate(alert)


@router.post("/{alert_id}/false-alarm", response_model=AlertResponse)
async def mark_false_alarm(
    alert_id: uuid.UUID,
    request: AlertActionRequest,
    core: Annotated[AlertCore, Depends(get_core)],
) -> AlertResponse:
    try:
        alert = await core.lifecycle.mark_false_alarm(
            alert_id, request.recipient_id, request.note
        )
    except AlertCoreError as e:
        raise _http_error(e) from e
    return AlertResponse.model_validate(alert)


@router.patch("/{alert_id}/severity", response_model=AlertResponse)
async def override_severity(
    alert_id: uuid.UUID,
    request: SeverityOverrideRequest,
    core: Annotated[AlertCore, Depends(get_core)],
) -> AlertResponse:
    """Manually set severity (may lower it)."""
    try:
        alert = await core.lifecycle.override_severity(alert_id, request.severity)
    except AlertCoreError as e:
        raise _http_error(e) from e
    return AlertResponse.model_validate(alert)
