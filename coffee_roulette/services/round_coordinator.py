"""
Round Coordinator: owns the matching round lifecycle.

    scheduled --> in_progress --> completed
                              --> failed

The matching unit of work (eligibility, history, greedy matching, VIP
rebalancing, pairing persistence, icebreakers) runs as ONE serializable
transaction. Any failure inside it rolls everything back, then the round is
marked failed in a separate transaction and the error is re-raised.

Only after commit does the coordinator schedule meetings and enqueue
notifications. Those steps are best-effort: failures are logged and the
round stays completed.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..core.config import get_settings
from ..core.database import async_session_factory, unit_of_work
from ..integrations.calendar import MeetingScheduler, NullMeetingScheduler
from ..models import (
    DeliveryChannel,
    MatchingRound,
    Pairing,
    PairingStatus,
    RoundSource,
    RoundStatus,
    User,
)
from .eligibility import (
    EligibilityResolver,
    Participant,
    ParticipantFilters,
    filters_from_dict,
    load_participants,
)
from .exceptions import (
    InvalidRoundTransitionError,
    MatchingError,
    RoundInProgressError,
    RoundNotFoundError,
)
from .history import ExclusionSet, HistoryRepository, PairHistory
from .icebreakers import assign_icebreakers
from .matcher import GreedyMatcher, MatchResult, ScoredPair, VIPRebalancer
from .matching_settings import MatchingSettings, load_matching_settings
from .notification_queue import NotificationQueue
from .schedule import ScheduleService
from .scoring import ScoringEngine

logger = logging.getLogger(__name__)
settings = get_settings()

ALLOWED_TRANSITIONS: dict[RoundStatus, set[RoundStatus]] = {
    RoundStatus.SCHEDULED: {RoundStatus.IN_PROGRESS},
    RoundStatus.IN_PROGRESS: {RoundStatus.COMPLETED, RoundStatus.FAILED},
    RoundStatus.COMPLETED: set(),
    RoundStatus.FAILED: set(),
}


def round_name(scheduled_date: date) -> str:
    return f"{scheduled_date.strftime('%B')} {scheduled_date.year} Coffee Roulette"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class RoundRequest:
    """What the caller asked for: scheduler tick or admin trigger."""
    filters: ParticipantFilters = field(default_factory=ParticipantFilters)
    ignore_recent_history: bool = False
    source: RoundSource = RoundSource.MANUAL
    triggered_by: str | None = None
    scheduled_date: date | None = None
    name: str | None = None
    reset_auto_schedule: bool = False


@dataclass
class RoundOutcome:
    """Result of a round execution or preview."""
    round_id: UUID
    name: str
    status: RoundStatus
    total_participants: int
    total_pairings: int
    pairings: list[dict[str, Any]] = field(default_factory=list)
    unmatched: list[dict[str, Any]] = field(default_factory=list)
    is_preview: bool = False
    meetings_scheduled: int = 0
    notifications_queued: int = 0
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def sit_out(self) -> dict[str, Any] | None:
        return self.unmatched[0] if self.unmatched else None


# =============================================================================
# ROUND COORDINATOR
# =============================================================================


class RoundCoordinator:
    """Runs matching rounds against the persistence store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        meeting_scheduler: MeetingScheduler | None = None,
        seed: int | None = None,
        isolation_level: str | None = settings.matching_isolation_level,
        timezone_name: str = settings.matching_timezone,
        notification_channel: DeliveryChannel | None = None,
        round_timeout_minutes: int = settings.matching_round_timeout_minutes,
    ):
        self._session_factory = session_factory or async_session_factory
        self._meeting_scheduler = meeting_scheduler or NullMeetingScheduler()
        self._rng = random.Random(seed)
        self._isolation_level = isolation_level
        self._timezone = ZoneInfo(timezone_name)
        self._notification_channel = notification_channel or DeliveryChannel(
            settings.notification_default_channel
        )
        self._round_timeout = timedelta(minutes=round_timeout_minutes)

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def run_round(self, request: RoundRequest) -> RoundOutcome:
        """Create a round and execute it synchronously."""
        matching_round = await self._create_round(request, RoundStatus.IN_PROGRESS)
        return await self._execute(matching_round.id, request)

    async def schedule_round(self, request: RoundRequest) -> MatchingRound:
        """Create a round in ``scheduled`` state, to be executed later by id."""
        matching_round = await self._create_round(request, RoundStatus.SCHEDULED)
        logger.info(f"Matching round {matching_round.id} scheduled for {matching_round.scheduled_date}")
        return matching_round

    async def execute_round(self, round_id: UUID) -> RoundOutcome:
        """Drive a scheduled round to ``in_progress`` and execute it."""
        try:
            async with unit_of_work(self._session_factory) as session:
                matching_round = await session.get(MatchingRound, round_id, with_for_update=True)
                if matching_round is None or matching_round.is_preview:
                    raise RoundNotFoundError(f"Matching round {round_id} not found", round_id=round_id)
                if matching_round.status == RoundStatus.SCHEDULED:
                    await self._ensure_no_round_in_progress(session)
                self._transition(matching_round, RoundStatus.IN_PROGRESS)
                matching_round.started_at = datetime.now(timezone.utc)

                request = RoundRequest(
                    filters=filters_from_dict(matching_round.filters_applied),
                    ignore_recent_history=matching_round.ignored_recent_history,
                    source=matching_round.source,
                    triggered_by=matching_round.triggered_by,
                    scheduled_date=matching_round.scheduled_date,
                    name=matching_round.name,
                )
        except IntegrityError as e:
            raise RoundInProgressError(
                "Another matching round started concurrently", round_id=round_id
            ) from e

        return await self._execute(round_id, request)

    async def abandon_round(self, round_id: UUID, reason: str = "Abandoned by operator") -> MatchingRound:
        """Mark a stuck ``in_progress`` round as failed so new rounds can run."""
        async with unit_of_work(self._session_factory) as session:
            matching_round = await session.get(MatchingRound, round_id, with_for_update=True)
            if matching_round is None or matching_round.is_preview:
                raise RoundNotFoundError(f"Matching round {round_id} not found", round_id=round_id)
            self._transition(matching_round, RoundStatus.FAILED)
            matching_round.executed_at = datetime.now(timezone.utc)
            matching_round.error_message = reason

        logger.warning(f"Matching round {round_id} abandoned: {reason}")
        return matching_round

    async def preview(self, request: RoundRequest) -> RoundOutcome:
        """
        Run the identical matching logic without persisting pairings.

        A throwaway round scaffold is created and always removed, including
        when matching raises.
        """
        scaffold = await self._create_round(request, RoundStatus.SCHEDULED, is_preview=True)
        try:
            async with unit_of_work(self._session_factory) as session:
                matching_settings = await load_matching_settings(session)
                result = await self._compute(session, matching_settings, request)

            logger.info(
                f"Preview generated: {len(result.pairs)} pairings from {result.pool_size} participants"
            )
            return RoundOutcome(
                round_id=scaffold.id,
                name=scaffold.name,
                status=RoundStatus.COMPLETED,
                total_participants=result.pool_size,
                total_pairings=len(result.pairs),
                pairings=[pair.to_summary() for pair in result.pairs],
                unmatched=[p.to_summary() for p in result.unmatched],
                is_preview=True,
                settings=matching_settings.to_dict(),
            )
        finally:
            await self._delete_round(scaffold.id)

    async def cleanup_preview_rounds(self) -> int:
        """Remove preview scaffolds left behind by a crashed process."""
        async with unit_of_work(self._session_factory) as session:
            result = await session.execute(
                delete(MatchingRound)
                .where(MatchingRound.is_preview.is_(True))
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(f"Cleaned up {result.rowcount} preview rounds")
        return result.rowcount

    async def get_round(self, round_id: UUID) -> MatchingRound:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MatchingRound)
                .where(MatchingRound.id == round_id, MatchingRound.is_preview.is_(False))
                .options(
                    selectinload(MatchingRound.pairings).selectinload(Pairing.user1).selectinload(User.department),
                    selectinload(MatchingRound.pairings).selectinload(Pairing.user2).selectinload(User.department),
                    selectinload(MatchingRound.pairings).selectinload(Pairing.icebreakers),
                )
            )
            matching_round = result.scalar_one_or_none()
        if matching_round is None:
            raise RoundNotFoundError(f"Matching round {round_id} not found", round_id=round_id)
        return matching_round

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @staticmethod
    def _transition(matching_round: MatchingRound, target: RoundStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[matching_round.status]:
            raise InvalidRoundTransitionError(
                f"Round {matching_round.id} cannot move from "
                f"{matching_round.status.value} to {target.value}",
                round_id=matching_round.id,
            )
        matching_round.status = target

    async def _fail_stale_rounds(self, session: AsyncSession) -> int:
        """Rounds in progress for longer than the timeout belong to a crashed process."""
        now = datetime.now(timezone.utc)
        timeout_minutes = int(self._round_timeout.total_seconds() // 60)
        result = await session.execute(
            update(MatchingRound)
            .where(
                MatchingRound.status == RoundStatus.IN_PROGRESS,
                MatchingRound.is_preview.is_(False),
                MatchingRound.started_at < now - self._round_timeout,
            )
            .values(
                status=RoundStatus.FAILED,
                executed_at=now,
                error_message=f"Abandoned: still in progress after {timeout_minutes} minutes",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.warning(f"Marked {result.rowcount} stale matching rounds as failed")
        return result.rowcount

    async def _ensure_no_round_in_progress(self, session: AsyncSession) -> None:
        # Backed by the uq_matching_rounds_in_progress partial index
        await self._fail_stale_rounds(session)
        running = await session.scalar(
            select(MatchingRound.id)
            .where(
                MatchingRound.status == RoundStatus.IN_PROGRESS,
                MatchingRound.is_preview.is_(False),
            )
            .limit(1)
        )
        if running is not None:
            raise RoundInProgressError(
                f"Matching round {running} is already in progress", round_id=running
            )

    async def _create_round(
        self,
        request: RoundRequest,
        status: RoundStatus,
        is_preview: bool = False,
    ) -> MatchingRound:
        scheduled_date = request.scheduled_date or datetime.now(self._timezone).date()

        try:
            async with unit_of_work(self._session_factory) as session:
                if status == RoundStatus.IN_PROGRESS:
                    await self._ensure_no_round_in_progress(session)

                matching_round = MatchingRound(
                    name=request.name or round_name(scheduled_date),
                    scheduled_date=scheduled_date,
                    status=status,
                    source=request.source,
                    filters_applied=None if request.filters.is_empty else request.filters.to_dict(),
                    ignored_recent_history=request.ignore_recent_history,
                    is_preview=is_preview,
                    triggered_by=request.triggered_by,
                    started_at=datetime.now(timezone.utc) if status == RoundStatus.IN_PROGRESS else None,
                )
                session.add(matching_round)
                await session.flush()
        except IntegrityError as e:
            if status != RoundStatus.IN_PROGRESS:
                raise
            raise RoundInProgressError("Another matching round started concurrently") from e

        return matching_round

    async def _delete_round(self, round_id: UUID) -> None:
        try:
            async with unit_of_work(self._session_factory) as session:
                await session.execute(
                    delete(MatchingRound)
                    .where(MatchingRound.id == round_id)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to remove preview round {round_id}: {e}")

    async def _mark_failed(self, round_id: UUID, error: Exception) -> None:
        try:
            async with unit_of_work(self._session_factory) as session:
                matching_round = await session.get(MatchingRound, round_id)
                if matching_round is None or matching_round.status != RoundStatus.IN_PROGRESS:
                    return
                self._transition(matching_round, RoundStatus.FAILED)
                matching_round.executed_at = datetime.now(timezone.utc)
                matching_round.error_message = str(error)
        except Exception as e:
            logger.exception(f"Could not mark round {round_id} as failed: {e}")

    # =========================================================================
    # MATCHING UNIT OF WORK
    # =========================================================================

    async def _execute(self, round_id: UUID, request: RoundRequest) -> RoundOutcome:
        logger.info(f"Starting matching round {round_id}")

        try:
            async with unit_of_work(self._session_factory, self._isolation_level) as session:
                matching_round = await session.get(MatchingRound, round_id, with_for_update=True)
                if matching_round is None:
                    raise RoundNotFoundError(f"Matching round {round_id} not found", round_id=round_id)

                matching_settings = await load_matching_settings(session)
                result = await self._compute(session, matching_settings, request)

                pairings: list[Pairing] = []
                for pair in result.pairs:
                    pairings.append(await self._save_pairing(session, matching_round, pair))

                await self._assign_icebreakers(session, pairings, matching_settings)

                self._transition(matching_round, RoundStatus.COMPLETED)
                matching_round.executed_at = datetime.now(timezone.utc)
                matching_round.total_participants = result.pool_size
                matching_round.total_pairings = len(pairings)

                summaries = [
                    {"pairing_id": str(pairing.id), **pair.to_summary()}
                    for pairing, pair in zip(pairings, result.pairs)
                ]
                pairing_ids = [pairing.id for pairing in pairings]
                name = matching_round.name

        except MatchingError as e:
            e.round_id = e.round_id or round_id
            logger.warning(f"Matching round {round_id} failed: {e}")
            await self._mark_failed(round_id, e)
            raise
        except Exception as e:
            logger.exception(f"Matching round {round_id} failed, transaction rolled back: {e}")
            await self._mark_failed(round_id, e)
            raise MatchingError(f"Matching round failed: {e}", round_id=round_id) from e

        logger.info(
            f"Matching round {round_id} completed: {len(pairing_ids)} pairings "
            f"from {result.pool_size} participants"
        )

        outcome = RoundOutcome(
            round_id=round_id,
            name=name,
            status=RoundStatus.COMPLETED,
            total_participants=result.pool_size,
            total_pairings=len(pairing_ids),
            pairings=summaries,
            unmatched=[p.to_summary() for p in result.unmatched],
            settings=matching_settings.to_dict(),
        )

        # Post-commit side effects: best-effort only
        if matching_settings.auto_schedule_meetings:
            outcome.meetings_scheduled = await self._schedule_meetings(pairing_ids)
        outcome.notifications_queued = await self._enqueue_notifications(pairing_ids)
        if request.reset_auto_schedule and request.source == RoundSource.MANUAL:
            await self._reset_auto_schedule()

        return outcome

    async def _compute(
        self,
        session: AsyncSession,
        matching_settings: MatchingSettings,
        request: RoundRequest,
    ) -> MatchResult:
        """Load the snapshot once, then run the pure in-memory pipeline."""
        participants = await load_participants(session, request.filters)
        pool = EligibilityResolver(matching_settings, filters=request.filters).resolve(participants)

        repository = HistoryRepository(session)
        if request.ignore_recent_history:
            history = PairHistory.empty()
            logger.info("Ignoring recent pairing history for this round")
        else:
            history = await repository.pair_history(matching_settings.lookback_rounds)
        exclusions = await repository.exclusions()

        return self.match_pool(pool, matching_settings, history, exclusions)

    def match_pool(
        self,
        pool: list[Participant],
        matching_settings: MatchingSettings,
        history: PairHistory,
        exclusions: ExclusionSet,
    ) -> MatchResult:
        """Score, greedily pair and rebalance an already eligible pool."""
        scorer = ScoringEngine(matching_settings, history, exclusions)
        result = GreedyMatcher(scorer, self._rng).match(pool)
        return VIPRebalancer(scorer).rebalance(result)

    async def _save_pairing(
        self,
        session: AsyncSession,
        matching_round: MatchingRound,
        pair: ScoredPair,
    ) -> Pairing:
        pairing = Pairing(
            matching_round_id=matching_round.id,
            user1_id=pair.user1.id,
            user2_id=pair.user2.id,
            status=PairingStatus.PENDING,
            match_score=pair.score,
        )
        session.add(pairing)
        await session.flush()
        return pairing

    async def _assign_icebreakers(
        self,
        session: AsyncSession,
        pairings: list[Pairing],
        matching_settings: MatchingSettings,
    ) -> None:
        if not pairings:
            return
        try:
            async with session.begin_nested():
                await assign_icebreakers(
                    session, pairings, matching_settings.icebreakers_per_pairing, self._rng
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to assign icebreakers, continuing without them: {e}")

    # =========================================================================
    # POST-COMMIT SIDE EFFECTS
    # =========================================================================

    async def _schedule_meetings(self, pairing_ids: list[UUID]) -> int:
        scheduled = 0
        for pairing_id in pairing_ids:
            try:
                async with unit_of_work(self._session_factory) as session:
                    result = await session.execute(
                        select(Pairing)
                        .where(Pairing.id == pairing_id)
                        .options(
                            selectinload(Pairing.user1),
                            selectinload(Pairing.user2),
                            selectinload(Pairing.icebreakers),
                        )
                    )
                    pairing = result.scalar_one()
                    meeting = await self._meeting_scheduler.schedule_meeting(
                        pairing.user1.email,
                        pairing.user2.email,
                        [topic.topic for topic in pairing.icebreakers],
                    )
                    if not meeting.success:
                        logger.info(f"No meeting scheduled for pairing {pairing_id}: {meeting.message}")
                        continue

                    pairing.meeting_scheduled_at = meeting.scheduled_at
                    pairing.calendar_event_id = meeting.event_id
                    pairing.meeting_link = meeting.meeting_link
                    scheduled += 1
            except Exception as e:
                logger.error(f"Failed to schedule meeting for pairing {pairing_id}: {e}")

        logger.info(f"Scheduled {scheduled} of {len(pairing_ids)} meetings")
        return scheduled

    async def _enqueue_notifications(self, pairing_ids: list[UUID]) -> int:
        queued = 0
        for pairing_id in pairing_ids:
            try:
                async with unit_of_work(self._session_factory) as session:
                    pairing = await session.get(Pairing, pairing_id)
                    queue = NotificationQueue(session, self._notification_channel)
                    tasks = await queue.enqueue_pairing_notifications(pairing)
                    tasks += await queue.enqueue_reminders(pairing)
                    tasks += await queue.enqueue_feedback_request(pairing)
                queued += len(tasks)
            except Exception as e:
                logger.error(f"Failed to queue notifications for pairing {pairing_id}: {e}")
        return queued

    async def _reset_auto_schedule(self) -> None:
        """A manual round counts as the scheduled one: push the next automatic run out."""
        try:
            async with unit_of_work(self._session_factory) as session:
                config = await ScheduleService(session).record_scheduled_run()
            logger.info(f"Auto-schedule timer reset after manual matching, next run {config.next_run_at}")
        except Exception as e:
            logger.error(f"Error resetting auto-schedule timer (non-fatal): {e}")
