"""Coffee Roulette API Schemas.

Schemas are organized by domain:
- base: Common configuration, error responses
- matching: Round triggers, previews, round details
- notifications: Queue statistics and task listings
"""

from .base import ErrorDetail, ErrorResponse, RouletteBaseModel
from .matching import (
    AbandonRoundRequest,
    PairingResponse,
    PairingSummary,
    ParticipantFiltersSchema,
    ParticipantSummary,
    PreviewRequest,
    RoundCreateRequest,
    RoundOutcomeResponse,
    RoundResponse,
    SchedulePreset,
    ScheduleResponse,
    ScheduleUpdateRequest,
)
from .notifications import NotificationTaskResponse, QueueStatsResponse

__all__ = [
    # Base
    "RouletteBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Matching
    "ParticipantFiltersSchema",
    "RoundCreateRequest",
    "PreviewRequest",
    "AbandonRoundRequest",
    "ParticipantSummary",
    "PairingSummary",
    "RoundOutcomeResponse",
    "PairingResponse",
    "RoundResponse",
    "SchedulePreset",
    "ScheduleResponse",
    "ScheduleUpdateRequest",
    # Notifications
    "QueueStatsResponse",
    "NotificationTaskResponse",
]
