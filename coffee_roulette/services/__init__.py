"""Matching round engine and notification pipeline services."""

from .channels import EmailChannel, EmailConfig, NotificationChannel, TeamsChannel, TeamsConfig, build_channels
from .eligibility import EligibilityResolver, Participant, ParticipantFilters, load_participants
from .exceptions import (
    DeliveryError,
    InsufficientParticipantsError,
    InvalidRoundTransitionError,
    MatchingError,
    NotificationError,
    NotificationTaskNotFoundError,
    RoundInProgressError,
    RoundNotFoundError,
    ScheduleError,
)
from .history import ExclusionSet, HistoryRepository, PairHistory, PairHistoryEntry
from .matcher import GreedyMatcher, MatchResult, ScoredPair, VIPRebalancer
from .matching_settings import MatchingSettings, load_matching_settings
from .notification_dispatcher import DispatchReport, NotificationDispatcher
from .notification_queue import (
    NotificationQueue,
    PermanentlyFailed,
    QueueStats,
    Retrying,
    RetryPolicy,
    Sent,
)
from .round_coordinator import RoundCoordinator, RoundOutcome, RoundRequest
from .schedule import ScheduleConfig, ScheduleService, next_run_after, validate_cron_expression
from .scoring import ScoringEngine
from .templates import RenderedMessage, TemplateRenderer

__all__ = [
    # Matching engine
    "EligibilityResolver",
    "Participant",
    "ParticipantFilters",
    "load_participants",
    "HistoryRepository",
    "PairHistory",
    "PairHistoryEntry",
    "ExclusionSet",
    "ScoringEngine",
    "GreedyMatcher",
    "VIPRebalancer",
    "MatchResult",
    "ScoredPair",
    "MatchingSettings",
    "load_matching_settings",
    "RoundCoordinator",
    "RoundRequest",
    "RoundOutcome",
    "ScheduleService",
    "ScheduleConfig",
    "next_run_after",
    "validate_cron_expression",
    # Notification pipeline
    "NotificationQueue",
    "QueueStats",
    "RetryPolicy",
    "Sent",
    "Retrying",
    "PermanentlyFailed",
    "NotificationDispatcher",
    "DispatchReport",
    "NotificationChannel",
    "EmailChannel",
    "EmailConfig",
    "TeamsChannel",
    "TeamsConfig",
    "build_channels",
    "TemplateRenderer",
    "RenderedMessage",
    # Errors
    "MatchingError",
    "InsufficientParticipantsError",
    "RoundInProgressError",
    "RoundNotFoundError",
    "InvalidRoundTransitionError",
    "ScheduleError",
    "NotificationError",
    "NotificationTaskNotFoundError",
    "DeliveryError",
]
