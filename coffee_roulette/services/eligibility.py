"""
Eligibility: selects the participant pool for a round.

A participant is eligible when ALL of the following hold:
1. Account is active and opted in
2. No ``available_from`` date, or that date is today or earlier
3. Department is enabled, or the participant has a department override
4. Grace period is waived, or the opt-in is older than the grace window
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import MatchingPreference, SeniorityLevel, User
from .exceptions import InsufficientParticipantsError
from .matching_settings import MatchingSettings

logger = logging.getLogger(__name__)

MIN_POOL_SIZE = 2


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class Participant:
    """Read-only snapshot of a user, taken once per round."""
    id: UUID
    email: str
    first_name: str
    last_name: str
    department_id: UUID | None
    department_name: str | None
    department_active: bool
    seniority_level: SeniorityLevel
    matching_preference: MatchingPreference = MatchingPreference.ANY
    is_vip: bool = False
    is_active: bool = True
    is_opted_in: bool = True
    opted_in_at: datetime | None = None
    skip_grace_period: bool = False
    available_from: date | None = None
    override_department_exclusion: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_user(cls, user: User) -> "Participant":
        department = user.department
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            department_id=user.department_id,
            department_name=department.name if department else None,
            department_active=bool(department and department.is_active),
            seniority_level=user.seniority_level,
            matching_preference=user.matching_preference or MatchingPreference.ANY,
            is_vip=user.is_vip,
            is_active=user.is_active,
            is_opted_in=user.is_opted_in,
            opted_in_at=user.opted_in_at,
            skip_grace_period=user.skip_grace_period,
            available_from=user.available_from,
            override_department_exclusion=user.override_department_exclusion,
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "department": self.department_name or "No Department",
            "seniority_level": self.seniority_level.value,
            "is_vip": self.is_vip,
        }


@dataclass(frozen=True)
class ParticipantFilters:
    """Optional narrowing of the pool for manually triggered rounds."""
    department_ids: tuple[UUID, ...] = ()
    user_ids: tuple[UUID, ...] = ()
    seniority_levels: tuple[SeniorityLevel, ...] = ()
    ignore_grace_period: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.department_ids
            or self.user_ids
            or self.seniority_levels
            or self.ignore_grace_period
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "department_ids": [str(d) for d in self.department_ids],
            "user_ids": [str(u) for u in self.user_ids],
            "seniority_levels": [s.value for s in self.seniority_levels],
            "ignore_grace_period": self.ignore_grace_period,
        }


# =============================================================================
# ELIGIBILITY RESOLVER
# =============================================================================


class EligibilityResolver:
    """
    Pure filter over a participant snapshot.

    The clock is fixed at construction so one round evaluates every
    participant against the same "now".
    """

    def __init__(
        self,
        settings: MatchingSettings,
        now: datetime | None = None,
        filters: ParticipantFilters | None = None,
    ):
        self._settings = settings
        self._now = now or datetime.now(timezone.utc)
        self._filters = filters or ParticipantFilters()

    @property
    def grace_cutoff(self) -> datetime:
        return self._now - timedelta(hours=self._settings.grace_period_hours)

    def is_eligible(self, participant: Participant) -> bool:
        if not (participant.is_active and participant.is_opted_in):
            return False

        if participant.available_from and participant.available_from > self._now.date():
            return False

        # An explicit department filter means the admin picked the departments
        if not self._filters.department_ids:
            if not participant.department_active and not participant.override_department_exclusion:
                return False

        grace_waived = self._filters.ignore_grace_period or participant.skip_grace_period
        if not grace_waived and participant.opted_in_at is not None:
            if participant.opted_in_at > self.grace_cutoff:
                return False

        return True

    def resolve(self, participants: Iterable[Participant]) -> list[Participant]:
        """
        Return the eligible pool.

        Raises:
            InsufficientParticipantsError: fewer than two participants qualify
        """
        eligible = [p for p in participants if self.is_eligible(p)]

        filter_desc = "" if self._filters.is_empty else f" (filters: {self._filters.to_dict()})"
        logger.info(f"Found {len(eligible)} eligible participants for matching{filter_desc}")

        if len(eligible) < MIN_POOL_SIZE:
            raise InsufficientParticipantsError(len(eligible))
        return eligible


# =============================================================================
# SNAPSHOT LOADING
# =============================================================================


async def load_participants(
    session: AsyncSession,
    filters: ParticipantFilters | None = None,
) -> list[Participant]:
    """
    Load active, opted-in users (narrowed by filters) as snapshots.

    The remaining eligibility rules are applied in memory by
    ``EligibilityResolver``. Results are ordered by id so a seeded shuffle
    is reproducible.
    """
    filters = filters or ParticipantFilters()

    query = (
        select(User)
        .options(selectinload(User.department))
        .where(
            User.is_active.is_(True),
            User.is_opted_in.is_(True),
        )
        .order_by(User.id)
    )
    if filters.user_ids:
        query = query.where(User.id.in_(filters.user_ids))
    if filters.department_ids:
        query = query.where(User.department_id.in_(filters.department_ids))
    if filters.seniority_levels:
        query = query.where(User.seniority_level.in_(filters.seniority_levels))

    result = await session.execute(query)
    return [Participant.from_user(user) for user in result.scalars().all()]


def filters_from_dict(data: dict[str, Any] | None) -> ParticipantFilters:
    """Inverse of ``ParticipantFilters.to_dict`` (used for stored round filters)."""
    if not data:
        return ParticipantFilters()
    return ParticipantFilters(
        department_ids=tuple(UUID(str(d)) for d in data.get("department_ids") or ()),
        user_ids=tuple(UUID(str(u)) for u in data.get("user_ids") or ()),
        seniority_levels=tuple(SeniorityLevel(s) for s in data.get("seniority_levels") or ()),
        ignore_grace_period=bool(data.get("ignore_grace_period", False)),
    )
