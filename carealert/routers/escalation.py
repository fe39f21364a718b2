"""Escalation policy endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from carealert.core.auth import require_service_token
from carealert.core.container import AlertCore, get_core
from carealert.logging_config import get_logger
from carealert.schemas.escalation_policy import (
    EscalationPolicy,
    EscalationPolicyResponse,
    PatientEscalationPolicyResponse,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/escalation",
    tags=["escalation"],
    dependencies=[Depends(require_service_token)],
)


@router.get("/policy", response_model=EscalationPolicyResponse)
async def get_default_policy(
    core: Annotated[AlertCore, Depends(get_core)],
) -> EscalationPolicyResponse:
    """Service-wide default escalation policy."""
    policy = core.policies.default_policy()
    return EscalationPolicyResponse(source="default", steps=policy.steps)


@router.get("/policy/{patient_id}", response_model=EscalationPolicyResponse)
async def get_patient_policy(
    patient_id: uuid.UUID,
    core: Annotated[AlertCore, Depends(get_core)],
) -> EscalationPolicyResponse:
    """Effective policy for a patient (override or default)."""
    policy = await core.policies.get_patient_policy(patient_id)
    if policy is None:
        return EscalationPolicyResponse(
            source="default",
            steps=core.policies.default_policy().steps,
        )
    return EscalationPolicyResponse(source="patient", steps=policy.steps)


@router.put("/policy/{patient_id}", response_model=PatientEscalationPolicyResponse)
async def set_patient_policy(
    patient_id: uuid.UUID,
    policy: EscalationPolicy,
    core: Annotated[AlertCore, Depends(get_core)],
) -> PatientEscalationPolicyResponse:
    """Replace a patient's escalation policy. Applies to new timers."""
    if await core.directory.get_profile(patient_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found",
        )
    row = await core.policies.set_patient_policy(patient_id, policy)
    return PatientEscalationPolicyResponse.model_validate(row)


@router.delete("/policy/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_patient_policy(
    patient_id: uuid.UUID,
    core: Annotated[AlertCore, Depends(get_core)],
) -> Response:
    """Drop a patient's override; the default applies again."""
    if not await core.policies.clear_patient_policy(patient_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No policy override for this patient",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
