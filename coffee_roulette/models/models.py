"""SQLAlchemy ORM Models for Coffee Roulette."""

import json
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class SeniorityLevel(str, PyEnum):
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    LEAD = "lead"
    EXECUTIVE = "executive"


class MatchingPreference(str, PyEnum):
    ANY = "any"
    CROSS_DEPARTMENT_ONLY = "cross_department_only"
    SAME_DEPARTMENT_ONLY = "same_department_only"
    CROSS_SENIORITY_ONLY = "cross_seniority_only"


class RoundStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RoundSource(str, PyEnum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class PairingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NotificationType(str, PyEnum):
    """Types of notifications."""
    WELCOME = "welcome"
    PAIRING = "pairing"
    REMINDER = "reminder"
    FEEDBACK_REQUEST = "feedback_request"
    ADMIN_ALERT = "admin_alert"


class DeliveryChannel(str, PyEnum):
    EMAIL = "email"
    TEAMS = "teams"
    BOTH = "both"


class NotificationStatus(str, PyEnum):
    """Status of notification delivery."""
    PENDING = "pending"
    PROCESSING = "processing"  # Claimed by a dispatcher, delivery in flight
    SENT = "sent"
    FAILED = "failed"


class SettingDataType(str, PyEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [e.value for e in enum_cls]


# =============================================================================
# PARTICIPANTS
# =============================================================================


class Department(Base, UUIDMixin, TimestampMixin):
    """Organizational unit; disabled departments drop out of matching."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    users: Mapped[list["User"]] = relationship(back_populates="department")


class User(Base, UUIDMixin, TimestampMixin):
    """A program member. Opted-in, active users form the matching pool."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("departments.id"), nullable=True
    )
    seniority_level: Mapped[SeniorityLevel] = mapped_column(
        Enum(SeniorityLevel, name="seniority_level", values_callable=_enum_values),
        default=SeniorityLevel.MID,
        nullable=False,
    )
    matching_preference: Mapped[MatchingPreference] = mapped_column(
        Enum(MatchingPreference, name="matching_preference", values_callable=_enum_values),
        default=MatchingPreference.ANY,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_opted_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_vip: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
        comment="VIPs are never the odd participant out when a swap is possible",
    )
    opted_in_at: Mapped[datetime | None] = mapped_column(nullable=True)
    skip_grace_period: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    available_from: Mapped[date | None] = mapped_column(
        Date, nullable=True,
        comment="Temporarily unavailable until this date",
    )
    override_department_exclusion: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
        comment="Eligible even when the department is disabled",
    )

    department: Mapped["Department | None"] = relationship(back_populates="users")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    __table_args__ = (
        Index("idx_users_pool", "is_active", "is_opted_in"),
        Index("idx_users_department", "department_id"),
    )


class SystemSetting(Base, UUIDMixin):
    """Typed key/value store for business tunables (``matching.*``)."""

    __tablename__ = "system_settings"

    setting_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    setting_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_type: Mapped[SettingDataType] = mapped_column(
        Enum(SettingDataType, name="setting_data_type", values_callable=_enum_values),
        default=SettingDataType.STRING,
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime | None] = mapped_column(default=utcnow, onupdate=utcnow)

    def get_value(self) -> Any:
        """Decode the stored text according to ``data_type``."""
        if self.setting_value is None or self.setting_value == "":
            return None
        if self.data_type == SettingDataType.NUMBER:
            return float(self.setting_value)
        if self.data_type == SettingDataType.BOOLEAN:
            return self.setting_value.strip().lower() == "true"
        if self.data_type == SettingDataType.JSON:
            return json.loads(self.setting_value)
        return self.setting_value

    def set_value(self, value: Any) -> None:
        if value is None:
            self.setting_value = None
        elif self.data_type == SettingDataType.JSON:
            self.setting_value = json.dumps(value)
        elif self.data_type == SettingDataType.BOOLEAN:
            self.setting_value = "true" if value else "false"
        else:
            self.setting_value = str(value)


# =============================================================================
# MATCHING
# =============================================================================


class MatchingRound(Base, UUIDMixin):
    """One execution of the matching engine.

    Transitions to COMPLETED or FAILED exactly once and is immutable afterwards,
    except for the removal of preview scaffolds.
    """

    __tablename__ = "matching_rounds"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column()
    executed_at: Mapped[datetime | None] = mapped_column()
    status: Mapped[RoundStatus] = mapped_column(
        Enum(RoundStatus, name="round_status", values_callable=_enum_values),
        default=RoundStatus.SCHEDULED,
        nullable=False,
    )
    source: Mapped[RoundSource] = mapped_column(
        Enum(RoundSource, name="round_source", values_callable=_enum_values),
        default=RoundSource.SCHEDULED,
        nullable=False,
    )
    total_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_pairings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    filters_applied: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ignored_recent_history: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_preview: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    triggered_by: Mapped[str | None] = mapped_column(String(255))
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    pairings: Mapped[list["Pairing"]] = relationship(
        back_populates="matching_round",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_matching_rounds_status", "status", "executed_at"),
        # At most one round may be executing at a time
        Index(
            "uq_matching_rounds_in_progress",
            "status",
            unique=True,
            postgresql_where=text("status = 'in_progress' AND NOT is_preview"),
            sqlite_where=text("status = 'in_progress' AND is_preview = 0"),
        ),
    )


class Pairing(Base, UUIDMixin):
    """Two distinct participants matched in a round."""

    __tablename__ = "pairings"

    matching_round_id: Mapped[UUID] = mapped_column(
        ForeignKey("matching_rounds.id", ondelete="CASCADE"), nullable=False
    )
    user1_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    user2_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[PairingStatus] = mapped_column(
        Enum(PairingStatus, name="pairing_status", values_callable=_enum_values),
        default=PairingStatus.PENDING,
        nullable=False,
    )
    match_score: Mapped[float | None] = mapped_column(Float)
    meeting_scheduled_at: Mapped[datetime | None] = mapped_column()
    meeting_completed_at: Mapped[datetime | None] = mapped_column()
    calendar_event_id: Mapped[str | None] = mapped_column(String(255))
    meeting_link: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    matching_round: Mapped["MatchingRound"] = relationship(back_populates="pairings")
    user1: Mapped["User"] = relationship(foreign_keys=[user1_id])
    user2: Mapped["User"] = relationship(foreign_keys=[user2_id])
    icebreakers: Mapped[list["IcebreakerTopic"]] = relationship(
        secondary="pairing_icebreakers",
        viewonly=True,
    )

    def partner_of(self, user_id: UUID) -> UUID:
        return self.user2_id if user_id == self.user1_id else self.user1_id

    __table_args__ = (
        CheckConstraint("user1_id <> user2_id", name="distinct_members"),
        Index("idx_pairings_round", "matching_round_id"),
        Index("idx_pairings_user1", "user1_id"),
        Index("idx_pairings_user2", "user2_id"),
    )


class MatchingExclusion(Base, UUIDMixin):
    """A pair that must never be matched. Stored with the smaller id first."""

    __tablename__ = "matching_exclusions"

    user1_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    user2_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255))
    created_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    @classmethod
    def between(
        cls,
        a: UUID,
        b: UUID,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> "MatchingExclusion":
        """Build a normalized exclusion so (a, b) and (b, a) collide on the unique key."""
        if a == b:
            raise ValueError("An exclusion needs two different users")
        low, high = (a, b) if a < b else (b, a)
        return cls(user1_id=low, user2_id=high, reason=reason, created_by=created_by)

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_exclusion_pair"),
    )


class IcebreakerTopic(Base, UUIDMixin):
    __tablename__ = "icebreaker_topics"

    topic: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PairingIcebreaker(Base, UUIDMixin):
    __tablename__ = "pairing_icebreakers"

    pairing_id: Mapped[UUID] = mapped_column(
        ForeignKey("pairings.id", ondelete="CASCADE"), nullable=False
    )
    icebreaker_id: Mapped[UUID] = mapped_column(
        ForeignKey("icebreaker_topics.id"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("pairing_id", "icebreaker_id"),
    )


# =============================================================================
# NOTIFICATION QUEUE
# =============================================================================


class NotificationTask(Base, UUIDMixin):
    """Durable record of a message that must be delivered, to whom, and when."""

    __tablename__ = "notification_queue"

    matching_round_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("matching_rounds.id", ondelete="SET NULL"), nullable=True
    )
    pairing_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("pairings.id", ondelete="SET NULL"), nullable=True
    )
    recipient_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type", values_callable=_enum_values),
        nullable=False,
    )
    channel: Mapped[DeliveryChannel] = mapped_column(
        Enum(DeliveryChannel, name="delivery_channel", values_callable=_enum_values),
        default=DeliveryChannel.BOTH,
        nullable=False,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status", values_callable=_enum_values),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    scheduled_for: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column()
    sent_at: Mapped[datetime | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    recipient: Mapped["User"] = relationship()
    pairing: Mapped["Pairing | None"] = relationship()

    __table_args__ = (
        Index("idx_notification_queue_due", "status", "scheduled_for"),
        Index("idx_notification_queue_recipient", "recipient_id"),
    )
