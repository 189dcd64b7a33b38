"""Exception hierarchy for the matching engine and notification pipeline."""

from uuid import UUID


# =============================================================================
# MATCHING
# =============================================================================


class MatchingError(Exception):
    """Base exception for matching round operations."""

    def __init__(self, message: str, round_id: UUID | None = None):
        super().__init__(message)
        self.round_id = round_id


class InsufficientParticipantsError(MatchingError):
    """Business-rule rejection: fewer than two eligible participants.

    Recoverable and user-actionable; callers report it separately from
    infrastructure failures.
    """

    def __init__(self, eligible_count: int, round_id: UUID | None = None):
        super().__init__(
            f"Not enough eligible participants for matching "
            f"(minimum 2 required, found {eligible_count})",
            round_id=round_id,
        )
        self.eligible_count = eligible_count


class RoundInProgressError(MatchingError):
    """Another round is still executing."""
    pass


class RoundNotFoundError(MatchingError):
    """Matching round does not exist."""
    pass


class InvalidRoundTransitionError(MatchingError):
    """Round lifecycle does not allow the requested status change."""
    pass


class ScheduleError(MatchingError):
    """Invalid automatic matching schedule (preset, cron expression or timezone)."""
    pass


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationError(Exception):
    """Base exception for notification pipeline operations."""
    pass


class NotificationTaskNotFoundError(NotificationError):
    """Notification task does not exist."""
    pass


class DeliveryError(NotificationError):
    """Every attempted channel failed for a task."""

    def __init__(self, message: str, channel_errors: dict[str, str] | None = None):
        super().__init__(message)
        self.channel_errors = channel_errors or {}
