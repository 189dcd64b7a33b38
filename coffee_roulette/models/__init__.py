"""SQLAlchemy ORM Models for Coffee Roulette."""

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow
from .models import (
    # Enums
    DeliveryChannel,
    MatchingPreference,
    NotificationStatus,
    NotificationType,
    PairingStatus,
    RoundSource,
    RoundStatus,
    SeniorityLevel,
    SettingDataType,
    # Participants
    Department,
    SystemSetting,
    User,
    # Matching
    IcebreakerTopic,
    MatchingExclusion,
    MatchingRound,
    Pairing,
    PairingIcebreaker,
    # Notifications
    NotificationTask,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    # Enums
    "SeniorityLevel",
    "MatchingPreference",
    "RoundStatus",
    "RoundSource",
    "PairingStatus",
    "NotificationType",
    "DeliveryChannel",
    "NotificationStatus",
    "SettingDataType",
    # Participants
    "Department",
    "User",
    "SystemSetting",
    # Matching
    "MatchingRound",
    "Pairing",
    "MatchingExclusion",
    "IcebreakerTopic",
    "PairingIcebreaker",
    # Notifications
    "NotificationTask",
]
