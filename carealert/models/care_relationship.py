"""Patient-to-caregiver relationship model.

A caregiver can be linked to several patients and a patient can have
several caregivers. The alert core treats the table as read-only.
"""

import enum
import uuid

from sqlalchemy import CheckConstraint, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carealert.models.base import Base, TimestampMixin, enum_column


class RelationshipType(str, enum.Enum):
    """How the caregiver relates to the patient."""

    PRIMARY_CAREGIVER = "primary_caregiver"
    FAMILY_MEMBER = "family_member"
    HEALTHCARE_PROVIDER = "healthcare_provider"
    FRIEND = "friend"
    OTHER = "other"


class RelationshipStatus(str, enum.Enum):
    """Lifecycle of the link; only ACTIVE links grant anything."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class CareRelationship(Base, TimestampMixin):
    """Permissioned edge between a patient and a caregiver.

    Unique constraint on (patient_id, caregiver_id) prevents duplicates.
    """

    __tablename__ = "care_relationships"
    __table_args__ = (
        UniqueConstraint("patient_id", "caregiver_id", name="uq_patient_caregiver"),
        CheckConstraint("caregiver_id != patient_id", name="ck_no_self_link"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    caregiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    relationship_type: Mapped[RelationshipType] = mapped_column(
        enum_column(RelationshipType, "relationshiptype"),
        nullable=False,
        default=RelationshipType.FAMILY_MEMBER,
    )

    status: Mapped[RelationshipStatus] = mapped_column(
        enum_column(RelationshipStatus, "relationshipstatus"),
        nullable=False,
        default=RelationshipStatus.ACTIVE,
        index=True,
    )

    # Permission flags
    can_receive_alerts: Mapped[bool] = mapped_column(default=True)
    can_view_health_data: Mapped[bool] = mapped_column(default=True)
    can_modify_settings: Mapped[bool] = mapped_column(default=False)

    caregiver = relationship("Profile", foreign_keys=[caregiver_id])
    patient = relationship("Profile", foreign_keys=[patient_id])

    @property
    def is_alert_eligible(self) -> bool:
        return self.status == RelationshipStatus.ACTIVE and self.can_receive_alerts

    def __repr__(self) -> str:
        return (
            f"<CareRelationship(patient={self.patient_id}, "
            f"caregiver={self.caregiver_id}, status={self.status.value})>"
        )
