"""Permission resolver.

Answers "who must be told, and how" for a patient's alert, and whether a
person may act on it. Eligibility is a single rule shared by both
questions: an active care relationship with alert receipt enabled.
"""

import enum
import uuid
from dataclasses import dataclass, field

from carealert.logging_config import get_logger
from carealert.models.alert import AlertKind
from carealert.models.care_relationship import CareRelationship, RelationshipType
from carealert.models.notification_attempt import Channel
from carealert.models.profile import Profile
from carealert.schemas.escalation_policy import RecipientTier
from carealert.services.care_directory import CareDirectory

logger = get_logger(__name__)


class CareTier(str, enum.Enum):
    """Escalation tier of a recipient."""

    PRIMARY = "primary"
    BACKUP = "backup"
    PATIENT = "patient"  # the subject, for check-ins


@dataclass(frozen=True)
class ContactInfo:
    """Contact methods on file for one person."""

    name: str
    email: str | None = None
    phone: str | None = None
    telegram_username: str | None = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "ContactInfo":
        return cls(
            name=profile.full_name or profile.email,
            email=profile.email or None,
            phone=profile.phone or None,
            telegram_username=profile.telegram_username or None,
        )


@dataclass(frozen=True)
class Recipient:
    """A person to notify, with the channels usable for them.

    ``rank`` is the position in tier order (0 = first primary caregiver).
    """

    recipient_id: uuid.UUID
    name: str
    tier: CareTier
    channels: tuple[Channel, ...]
    contact: ContactInfo
    rank: int = 0


@dataclass(frozen=True)
class RecipientPlan:
    """Everything a dispatch round needs from the directory.

    ``patient`` is the subject as a check-in recipient, or None when they
    have no usable channel.
    """

    patient_id: uuid.UUID
    patient_name: str
    recipients: list[Recipient] = field(default_factory=list)
    patient: Recipient | None = None


def channels_for(contact: ContactInfo) -> list[Channel]:
    """Channels implied by the contact methods on file."""
    channels: list[Channel] = []
    if contact.email:
        channels.append(Channel.EMAIL)
    if contact.telegram_username:
        channels.append(Channel.TELEGRAM)
    if contact.phone:
        channels.append(Channel.WHATSAPP)
        channels.append(Channel.PUSH)
    return channels


def tier_of(relationship: CareRelationship) -> CareTier:
    if relationship.relationship_type == RelationshipType.PRIMARY_CAREGIVER:
        return CareTier.PRIMARY
    return CareTier.BACKUP


def select_tier(recipients: list[Recipient], tier: RecipientTier) -> list[Recipient]:
    """Narrow resolved recipients to the audience of one dispatch round.

    PRIMARY keeps primary caregivers. A patient without any primary
    caregiver still gets someone notified: the highest-ranked recipient.
    """
    if tier == RecipientTier.ALL or not recipients:
        return list(recipients)

    primaries = [r for r in recipients if r.tier == CareTier.PRIMARY]
    if primaries:
        return primaries
    return [min(recipients, key=lambda r: r.rank)]


class PermissionResolver:
    """Resolves recipients and authorizes actors from the care directory."""

    def __init__(
        self,
        directory: CareDirectory,
        enabled_channels: frozenset[Channel] | None = None,
    ):
        self._directory = directory
        self._enabled_channels = (
            frozenset(Channel) if enabled_channels is None else enabled_channels
        )

    @property
    def enabled_channels(self) -> frozenset[Channel]:
        return self._enabled_channels

    async def resolve_recipients(
        self,
        patient_id: uuid.UUID,
        alert_kind: AlertKind,
    ) -> list[Recipient]:
        """Ordered recipients for a patient's alert.

        Primary caregivers come first, then everyone else in relationship
        creation order. Recipients with no usable channel are dropped.

        Raises:
            DirectoryUnavailable: The directory could not be queried. No
                partial list is ever returned.
        """
        edges = await self._directory.alert_relationships(patient_id)

        ordered = sorted(
            enumerate(edges),
            key=lambda item: (tier_of(item[1][0]) != CareTier.PRIMARY, item[0]),
        )

        recipients: list[Recipient] = []
        for relationship, profile in (edge for _, edge in ordered):
            contact = ContactInfo.from_profile(profile)
            channels = tuple(c for c in channels_for(contact) if c in self._enabled_channels)
            if not channels:
                logger.warning(
                    "Recipient has no usable channel, skipping",
                    patient_id=str(patient_id),
                    recipient_id=str(profile.id),
                    alert_kind=alert_kind.value,
                )
                continue
            recipients.append(
                Recipient(
                    recipient_id=profile.id,
                    name=contact.name,
                    tier=tier_of(relationship),
                    channels=channels,
                    contact=contact,
                    rank=len(recipients),
                )
            )

        logger.debug(
            "Recipients resolved",
            patient_id=str(patient_id),
            alert_kind=alert_kind.value,
            count=len(recipients),
        )
        return recipients

    async def plan(self, patient_id: uuid.UUID, alert_kind: AlertKind) -> RecipientPlan:
        """Recipients plus the patient's display name for message text."""
        patient = await self._directory.get_profile(patient_id)
        recipients = await self.resolve_recipients(patient_id, alert_kind)
        patient_name = (patient.full_name or patient.email) if patient else "your contact"
        return RecipientPlan(
            patient_id=patient_id,
            patient_name=patient_name,
            recipients=recipients,
            patient=self._patient_recipient(patient) if patient else None,
        )

    def _patient_recipient(self, patient: Profile) -> Recipient | None:
        contact = ContactInfo.from_profile(patient)
        channels = tuple(c for c in channels_for(contact) if c in self._enabled_channels)
        if not channels:
            return None
        return Recipient(
            recipient_id=patient.id,
            name=contact.name,
            tier=CareTier.PATIENT,
            channels=channels,
            contact=contact,
        )

    async def is_authorized(self, patient_id: uuid.UUID, actor_id: uuid.UUID) -> bool:
        """Whether ``actor_id`` may acknowledge or resolve the patient's alerts.

        The patient may always respond to their own alert ("I'm OK").
        """
        if actor_id == patient_id:
            return True
        relationship = await self._directory.get_relationship(patient_id, actor_id)
        return relationship is not None and relationship.is_alert_eligible
