"""Calendar collaborator used to auto-schedule meetings for new pairings."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class MeetingResult:
    """Outcome of a scheduling attempt."""
    success: bool
    scheduled_at: datetime | None = None
    event_id: str | None = None
    meeting_link: str | None = None
    message: str | None = None

    @classmethod
    def no_common_availability(cls, message: str = "No common availability found") -> "MeetingResult":
        return cls(success=False, message=message)


class MeetingScheduler(ABC):
    """Abstract calendar provider."""

    @abstractmethod
    async def schedule_meeting(
        self,
        user1_email: str,
        user2_email: str,
        icebreakers: list[str],
    ) -> MeetingResult:
        """
        Book a meeting for two participants.

        Returns a successful result with time and event reference, or an
        explicit "no common availability" result. Raises only on provider errors.
        """
        pass


class NullMeetingScheduler(MeetingScheduler):
    """Used when no calendar provider is configured."""

    async def schedule_meeting(
        self,
        user1_email: str,
        user2_email: str,
        icebreakers: list[str],
    ) -> MeetingResult:
        logger.debug(f"[CALENDAR] Not configured, skipping meeting for {user1_email} / {user2_email}")
        return MeetingResult.no_common_availability("Calendar integration is not configured")
