# Database Models
from carealert.models.alert import (
    DEFAULT_SEVERITY,
    Alert,
    AlertKind,
    AlertSeverity,
    AlertStatus,
)
from carealert.models.base import Base, TimestampMixin
from carealert.models.care_relationship import (
    CareRelationship,
    RelationshipStatus,
    RelationshipType,
)
from carealert.models.escalation_policy import PatientEscalationPolicy
from carealert.models.escalation_timer import EscalationTimer
from carealert.models.notification_attempt import (
    AttemptOutcome,
    Channel,
    NotificationAttempt,
)
from carealert.models.profile import Profile
from carealert.models.telegram_link import TelegramLink

__all__ = [
    "DEFAULT_SEVERITY",
    "Alert",
    "AlertKind",
    "AlertSeverity",
    "AlertStatus",
    "AttemptOutcome",
    "Base",
    "CareRelationship",
    "Channel",
    "EscalationTimer",
    "NotificationAttempt",
    "PatientEscalationPolicy",
    "Profile",
    "RelationshipStatus",
    "RelationshipType",
    "TelegramLink",
    "TimestampMixin",
]
