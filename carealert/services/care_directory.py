"""Read-only access to profiles and care relationships.

Every query runs in its own short session. Any storage or connection
failure is reported as ``DirectoryUnavailable`` so callers never act on a
partial view of who may receive alerts.
"""

import re
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carealert.exceptions import DirectoryUnavailable
from carealert.logging_config import get_logger
from carealert.models.care_relationship import CareRelationship, RelationshipStatus
from carealert.models.profile import Profile

logger = get_logger(__name__)

T = TypeVar("T")

_NON_DIGITS = re.compile(r"[^\d]")


def phone_digits(phone: str) -> str:
    """Strip everything but digits (``+1 (303) 555-0100`` -> ``13035550100``)."""
    return _NON_DIGITS.sub("", phone)


class CareDirectory:
    """Query contract of the external care-relationship directory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _run(self, op: str, query: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_maker() as db:
                return await query(db)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Care directory query failed", operation=op, error=str(e))
            raise DirectoryUnavailable(f"Care directory unavailable during {op}") from e

    async def get_profile(self, profile_id: uuid.UUID) -> Profile | None:
        async def query(db: AsyncSession) -> Profile | None:
            return await db.get(Profile, profile_id)

        return await self._run("get_profile", query)

    async def find_patient(self, identifier: str) -> Profile | None:
        """Look a patient up by email (case-insensitive) or phone number.

        Args:
            identifier: Email address or phone number as sent by the trigger.

        Returns:
            The matching profile, or None if nobody matches.
        """
        identifier = identifier.strip()
        if not identifier:
            return None

        if "@" in identifier:
            condition = func.lower(Profile.email) == identifier.lower()
        else:
            digits = phone_digits(identifier)
            if not digits:
                return None
            condition = or_(
                Profile.phone == identifier,
                Profile.phone == digits,
                Profile.phone == f"+{digits}",
            )

        async def query(db: AsyncSession) -> Profile | None:
            result = await db.execute(select(Profile).where(condition).limit(1))
            return result.scalar_one_or_none()

        return await self._run("find_patient", query)

    async def alert_relationships(
        self,
        patient_id: uuid.UUID,
    ) -> list[tuple[CareRelationship, Profile]]:
        """Active, alert-eligible relationships of a patient with caregiver profiles.

        Ordered by relationship creation time; tier ordering is applied by
        the permission resolver.
        """

        async def query(db: AsyncSession) -> list[tuple[CareRelationship, Profile]]:
            result = await db.execute(
                select(CareRelationship, Profile)
                .join(Profile, Profile.id == CareRelationship.caregiver_id)
                .where(
                    and_(
                        CareRelationship.patient_id == patient_id,
                        CareRelationship.status == RelationshipStatus.ACTIVE,
                        CareRelationship.can_receive_alerts.is_(True),
                    )
                )
                .order_by(CareRelationship.created_at, CareRelationship.id)
            )
            return [(row[0], row[1]) for row in result.all()]

        return await self._run("alert_relationships", query)

    async def get_relationship(
        self,
        patient_id: uuid.UUID,
        caregiver_id: uuid.UUID,
    ) -> CareRelationship | None:
        async def query(db: AsyncSession) -> CareRelationship | None:
            result = await db.execute(
                select(CareRelationship).where(
                    CareRelationship.patient_id == patient_id,
                    CareRelationship.caregiver_id == caregiver_id,
                )
            )
            return result.scalar_one_or_none()

        return await self._run("get_relationship", query)
