"""Trigger ingress.

Turns a raw safety signal into an alert. Producers (sensor automations,
the health-metric pipeline, a person pressing a button) identify the
patient by email or phone; the ingress resolves that to a profile and
hands over to the alert state machine.
"""

from carealert.exceptions import SubjectNotFound
from carealert.logging_config import get_logger
from carealert.schemas.trigger import TriggerEvent
from carealert.services.alert_lifecycle import AlertCreation, AlertLifecycle
from carealert.services.care_directory import CareDirectory

logger = get_logger(__name__)


class TriggerIngress:
    def __init__(self, directory: CareDirectory, lifecycle: AlertLifecycle):
        self._directory = directory
        self._lifecycle = lifecycle

    async def submit(self, event: TriggerEvent) -> AlertCreation:
        """Create an alert for ``event``.

        Raises:
            SubjectNotFound: No patient matches the identifier.
            DirectoryUnavailable: The directory could not be queried.
        """
        patient = await self._directory.find_patient(event.patient_identifier)
        if patient is None:
            logger.warning("Trigger for unknown patient", kind=event.kind.value)
            raise SubjectNotFound(event.patient_identifier)

        logger.info(
            "Trigger accepted",
            patient_id=str(patient.id),
            kind=event.kind.value,
            severity_hint=event.severity_hint.value if event.severity_hint else None,
        )
        return await self._lifecycle.create(
            kind=event.kind,
            patient_id=patient.id,
            context=event.context,
            severity=event.severity_hint,
        )
