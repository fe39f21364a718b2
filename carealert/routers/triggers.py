"""Trigger ingress endpoint for automation pipelines and devices."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from carealert.core.auth import require_service_token
from carealert.core.container import AlertCore, get_core
from carealert.exceptions import DirectoryUnavailable, SubjectNotFound
from carealert.logging_config import get_logger
from carealert.schemas.trigger import TriggerEvent, TriggerResponse

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/triggers",
    tags=["triggers"],
    dependencies=[Depends(require_service_token)],
)


@router.post(
    "",
    response_model=TriggerResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_trigger(
    event: TriggerEvent,
    core: Annotated[AlertCore, Depends(get_core)],
) -> TriggerResponse:
    """Create an alert from a safety signal and notify its recipients.

    Returns once the initial notification round has started.
    """
    try:
        created = await core.ingress.submit(event)
    except SubjectNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found",
        ) from e
    except DirectoryUnavailable as e:
        detail = "Care directory unavailable"
        if e.alert_id is not None:
            detail = f"Alert {e.alert_id} created, notification delayed: care directory unavailable"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
        ) from e

    return TriggerResponse(
        alert_id=created.alert.id,
        status=created.alert.status,
        severity=created.alert.severity,
        recipients_notified=created.dispatch.pair_count,
    )
