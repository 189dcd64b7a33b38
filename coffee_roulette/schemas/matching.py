"""Schemas for matching round endpoints."""

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from ..models import PairingStatus, RoundSource, RoundStatus, SeniorityLevel
from ..services.eligibility import ParticipantFilters
from ..services.round_coordinator import RoundOutcome, RoundRequest
from .base import RouletteBaseModel


# =============================================================================
# REQUESTS
# =============================================================================


class ParticipantFiltersSchema(BaseModel):
    """Optional narrowing of the participant pool."""
    department_ids: list[UUID] = Field(default_factory=list)
    user_ids: list[UUID] = Field(default_factory=list)
    seniority_levels: list[SeniorityLevel] = Field(default_factory=list)
    ignore_grace_period: bool = False

    def to_filters(self) -> ParticipantFilters:
        return ParticipantFilters(
            department_ids=tuple(self.department_ids),
            user_ids=tuple(self.user_ids),
            seniority_levels=tuple(self.seniority_levels),
            ignore_grace_period=self.ignore_grace_period,
        )


class RoundCreateRequest(BaseModel):
    """Trigger a round now, or schedule it for later execution."""
    filters: ParticipantFiltersSchema = Field(default_factory=ParticipantFiltersSchema)
    ignore_recent_history: bool = False
    schedule_only: bool = Field(
        default=False,
        description="Create the round in 'scheduled' state instead of executing it",
    )
    scheduled_date: date | None = None
    name: str | None = Field(default=None, max_length=255)
    triggered_by: str | None = Field(default=None, max_length=255)
    reset_auto_schedule: bool = Field(
        default=False,
        description="Treat this manual round as the scheduled one and push the next automatic run forward",
    )

    def to_request(self, source: RoundSource = RoundSource.MANUAL) -> RoundRequest:
        return RoundRequest(
            filters=self.filters.to_filters(),
            ignore_recent_history=self.ignore_recent_history,
            source=source,
            triggered_by=self.triggered_by,
            scheduled_date=self.scheduled_date,
            name=self.name,
            reset_auto_schedule=self.reset_auto_schedule,
        )


class AbandonRoundRequest(BaseModel):
    reason: str = Field(default="Abandoned by operator", min_length=1, max_length=500)


class PreviewRequest(BaseModel):
    filters: ParticipantFiltersSchema = Field(default_factory=ParticipantFiltersSchema)
    ignore_recent_history: bool = False

    def to_request(self) -> RoundRequest:
        return RoundRequest(
            filters=self.filters.to_filters(),
            ignore_recent_history=self.ignore_recent_history,
        )


# =============================================================================
# RESPONSES
# =============================================================================


class ParticipantSummary(RouletteBaseModel):
    id: UUID
    email: EmailStr
    first_name: str
    last_name: str
    department: str
    seniority_level: SeniorityLevel
    is_vip: bool = False


class PairingSummary(RouletteBaseModel):
    pairing_id: UUID | None = None
    user1: ParticipantSummary
    user2: ParticipantSummary
    score: float


class RoundOutcomeResponse(RouletteBaseModel):
    """Result of executing or previewing a round."""
    round_id: UUID
    name: str
    status: RoundStatus
    is_preview: bool
    total_participants: int
    total_pairings: int
    pairings: list[PairingSummary]
    unmatched: list[ParticipantSummary]
    sit_out: ParticipantSummary | None = None
    meetings_scheduled: int = 0
    notifications_queued: int = 0
    settings: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_outcome(cls, outcome: RoundOutcome) -> "RoundOutcomeResponse":
        return cls(
            round_id=outcome.round_id,
            name=outcome.name,
            status=outcome.status,
            is_preview=outcome.is_preview,
            total_participants=outcome.total_participants,
            total_pairings=outcome.total_pairings,
            pairings=outcome.pairings,
            unmatched=outcome.unmatched,
            sit_out=outcome.sit_out,
            meetings_scheduled=outcome.meetings_scheduled,
            notifications_queued=outcome.notifications_queued,
            settings=outcome.settings,
        )


class PairingMemberResponse(RouletteBaseModel):
    id: UUID
    email: EmailStr
    first_name: str
    last_name: str


class PairingResponse(RouletteBaseModel):
    id: UUID
    status: PairingStatus
    match_score: float | None = None
    meeting_scheduled_at: datetime | None = None
    meeting_link: str | None = None
    user1: PairingMemberResponse
    user2: PairingMemberResponse
    icebreakers: list[str] = Field(default_factory=list)


class RoundResponse(RouletteBaseModel):
    """Persisted round with its pairings."""
    id: UUID
    name: str
    scheduled_date: date
    started_at: datetime | None = None
    executed_at: datetime | None = None
    status: RoundStatus
    source: RoundSource
    total_participants: int
    total_pairings: int
    filters_applied: dict[str, Any] | None = None
    ignored_recent_history: bool
    triggered_by: str | None = None
    error_message: str | None = None
    created_at: datetime
    pairings: list[PairingResponse] = Field(default_factory=list)

    @classmethod
    def from_round(cls, matching_round, include_pairings: bool = True) -> "RoundResponse":
        pairings = []
        if include_pairings:
            pairings = [
                PairingResponse(
                    id=p.id,
                    status=p.status,
                    match_score=p.match_score,
                    meeting_scheduled_at=p.meeting_scheduled_at,
                    meeting_link=p.meeting_link,
                    user1=PairingMemberResponse.model_validate(p.user1),
                    user2=PairingMemberResponse.model_validate(p.user2),
                    icebreakers=[topic.topic for topic in p.icebreakers],
                )
                for p in matching_round.pairings
            ]
        return cls(
            id=matching_round.id,
            name=matching_round.name,
            scheduled_date=matching_round.scheduled_date,
            started_at=matching_round.started_at,
            executed_at=matching_round.executed_at,
            status=matching_round.status,
            source=matching_round.source,
            total_participants=matching_round.total_participants,
            total_pairings=matching_round.total_pairings,
            filters_applied=matching_round.filters_applied,
            ignored_recent_history=matching_round.ignored_recent_history,
            triggered_by=matching_round.triggered_by,
            error_message=matching_round.error_message,
            created_at=matching_round.created_at,
            pairings=pairings,
        )


# =============================================================================
# SCHEDULE
# =============================================================================


class SchedulePreset(BaseModel):
    type: str
    cron_expression: str
    description: str


class ScheduleResponse(BaseModel):
    schedule_type: str
    cron_expression: str
    timezone: str
    enabled: bool
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    presets: list[SchedulePreset] = Field(default_factory=list)


class ScheduleUpdateRequest(BaseModel):
    """Switch preset, or set a custom expression with ``schedule_type="custom"``."""
    schedule_type: Literal["weekly", "biweekly", "monthly", "custom"]
    cron_expression: str | None = Field(default=None, max_length=100)
    timezone: str | None = Field(default=None, max_length=64)
    enabled: bool | None = None
