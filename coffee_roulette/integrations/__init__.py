"""External collaborators: calendar provider and Teams."""

from .calendar import MeetingResult, MeetingScheduler, NullMeetingScheduler

__all__ = ["MeetingResult", "MeetingScheduler", "NullMeetingScheduler"]
