"""Error taxonomy for the alert core.

Only ``SubjectNotFound``, ``AlertNotFound``, ``InvalidTransition``,
``Unauthorized`` and ``DirectoryUnavailable`` reach callers of the public
API. Channel errors are contained by the dispatcher and end up in the
audit log.
"""

import enum
import uuid


class AlertCoreError(Exception):
    """Base class for caller-visible alert core errors."""


class SubjectNotFound(AlertCoreError):
    """A trigger referenced a patient that cannot be resolved."""

    def __init__(self, identifier: str):
        super().__init__(f"No patient matches identifier {identifier!r}")
        self.identifier = identifier


class AlertNotFound(AlertCoreError):
    """No alert exists with the given id."""

    def __init__(self, alert_id: uuid.UUID):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class InvalidTransition(AlertCoreError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, alert_id: uuid.UUID, current: str | None, target: str):
        super().__init__(
            f"Alert {alert_id} cannot move from {current or 'unknown'} to {target}"
        )
        self.alert_id = alert_id
        self.current = current
        self.target = target


class Unauthorized(AlertCoreError):
    """The actor has no active, alert-eligible care relationship."""

    def __init__(self, actor_id: uuid.UUID, patient_id: uuid.UUID):
        super().__init__(
            f"{actor_id} is not allowed to act on alerts for patient {patient_id}"
        )
        self.actor_id = actor_id
        self.patient_id = patient_id


class DirectoryUnavailable(AlertCoreError):
    """The care-relationship directory could not be queried.

    ``alert_id`` is set when the alert itself was already persisted and
    only the recipient lookup for its dispatch round failed.
    """

    def __init__(self, message: str, alert_id: uuid.UUID | None = None):
        super().__init__(message)
        self.alert_id = alert_id


class FailureReason(str, enum.Enum):
    """Provider-neutral reason codes recorded on failed attempts."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    INVALID_ADDRESS = "invalid_address"
    NOT_OPTED_IN = "not_opted_in"
    NOT_CONFIGURED = "not_configured"
    UNEXPECTED = "unexpected"


class ChannelError(Exception):
    """Base class for adapter failures, always carrying a reason code."""

    transient = False

    def __init__(self, reason: FailureReason, detail: str = ""):
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail or reason.value


class ChannelTransientFailure(ChannelError):
    """Timeout, network error or provider-side outage; worth one retry."""

    transient = True


class ChannelPermanentFailure(ChannelError):
    """The recipient cannot be reached on this channel; never retried."""
