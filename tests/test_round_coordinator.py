"""
Tests for the Round Coordinator - Verifying Atomicity Guarantees.

These tests verify:
1. RUN: A round persists all pairings and completes exactly once
2. ATOMICITY: A failure mid-round leaves zero pairings and a failed round
3. EXCLUSIVITY: Only one round may be in progress, even under concurrent triggers
4. PREVIEW: Identical logic, nothing persisted
5. SIDE EFFECTS: Meetings and notifications happen after commit
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from coffee_roulette.integrations.calendar import MeetingResult, MeetingScheduler
from coffee_roulette.models import (
    MatchingExclusion,
    MatchingPreference,
    MatchingRound,
    NotificationTask,
    NotificationType,
    Pairing,
    PairingIcebreaker,
    RoundSource,
    RoundStatus,
)
from coffee_roulette.services.eligibility import ParticipantFilters
from coffee_roulette.services.exceptions import (
    InsufficientParticipantsError,
    InvalidRoundTransitionError,
    MatchingError,
    RoundInProgressError,
    RoundNotFoundError,
)
from coffee_roulette.services.round_coordinator import RoundCoordinator, RoundRequest, round_name
from coffee_roulette.services.schedule import ScheduleService


class FailingSecondPairingCoordinator(RoundCoordinator):
    """Blows up while persisting the second pairing."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.saved = 0

    async def _save_pairing(self, session, matching_round, pair):
        self.saved += 1
        if self.saved == 2:
            raise RuntimeError("disk full")
        return await super()._save_pairing(session, matching_round, pair)


class FixedTimeScheduler(MeetingScheduler):
    def __init__(self, meeting_at: datetime):
        self.meeting_at = meeting_at
        self.calls = []

    async def schedule_meeting(self, user1_email, user2_email, icebreakers):
        self.calls.append((user1_email, user2_email, icebreakers))
        return MeetingResult(
            success=True,
            scheduled_at=self.meeting_at,
            event_id=f"evt-{len(self.calls)}",
            meeting_link="https://meet.example.com/coffee",
        )


class BrokenScheduler(MeetingScheduler):
    async def schedule_meeting(self, user1_email, user2_email, icebreakers):
        raise ConnectionError("calendar provider unreachable")


async def count(session_factory, model, *criteria) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*criteria))


@pytest.fixture
def coordinator(session_factory):
    return RoundCoordinator(session_factory=session_factory, seed=1)


# =============================================================================
# TEST: RUN ROUND
# =============================================================================


class TestRunRound:

    async def test_run_round_persists_pairings(self, coordinator, session_factory, create_users):
        users = await create_users(6)

        outcome = await coordinator.run_round(RoundRequest(triggered_by="admin@example.com"))

        assert outcome.status == RoundStatus.COMPLETED
        assert outcome.total_participants == 6
        assert outcome.total_pairings == 3
        assert outcome.sit_out is None

        matching_round = await coordinator.get_round(outcome.round_id)
        assert matching_round.status == RoundStatus.COMPLETED
        assert matching_round.executed_at is not None
        assert matching_round.total_pairings == 3
        assert matching_round.triggered_by == "admin@example.com"
        assert matching_round.source == RoundSource.MANUAL

        members = [uid for p in matching_round.pairings for uid in (p.user1_id, p.user2_id)]
        assert sorted(members) == sorted(u.id for u in users)

    async def test_odd_pool_reports_sit_out(self, coordinator, create_users):
        await create_users(5)

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.total_pairings == 2
        assert outcome.sit_out is not None

    async def test_round_name_defaults_to_month(self, coordinator, create_users):
        await create_users(2)
        scheduled = datetime(2026, 3, 2).date()

        outcome = await coordinator.run_round(RoundRequest(scheduled_date=scheduled))

        assert outcome.name == "March 2026 Coffee Roulette"
        assert round_name(scheduled) == outcome.name

    async def test_icebreakers_attached_to_each_pairing(
        self, coordinator, session_factory, create_users, create_topics, set_setting,
    ):
        await create_users(4)
        await create_topics("Best trip?", "Favourite book?", "Coffee or tea?", "First job?")
        await set_setting("matching.icebreakers_per_pairing", 2)

        outcome = await coordinator.run_round(RoundRequest())

        matching_round = await coordinator.get_round(outcome.round_id)
        for pairing in matching_round.pairings:
            assert len(pairing.icebreakers) == 2
        assert await count(session_factory, PairingIcebreaker) == 4

    async def test_exclusions_are_honoured(self, coordinator, session_factory, create_users):
        a, b = await create_users(2)
        async with session_factory() as session:
            session.add(MatchingExclusion.between(a.id, b.id, reason="reporting line"))
            await session.commit()

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.total_pairings == 0
        assert len(outcome.unmatched) == 2

    async def test_recent_partners_are_avoided(self, coordinator, create_department, create_user):
        department = await create_department()
        for _ in range(4):
            await create_user(department)

        first = await coordinator.run_round(RoundRequest())
        previous = {
            frozenset((p["user1"]["id"], p["user2"]["id"])) for p in first.pairings
        }

        second = await coordinator.run_round(RoundRequest())
        current = {
            frozenset((p["user1"]["id"], p["user2"]["id"])) for p in second.pairings
        }

        assert previous.isdisjoint(current)

    async def test_filters_are_recorded(self, coordinator, create_department, create_user):
        department = await create_department()
        users = [await create_user(department) for _ in range(2)]
        await create_user(await create_department())

        outcome = await coordinator.run_round(
            RoundRequest(filters=ParticipantFilters(department_ids=(department.id,)))
        )

        matching_round = await coordinator.get_round(outcome.round_id)
        assert outcome.total_participants == 2
        assert matching_round.filters_applied["department_ids"] == [str(department.id)]
        assert {p.user1_id for p in matching_round.pairings} <= {u.id for u in users}

    async def test_vetoes_leave_participants_unmatched_but_round_completes(
        self, coordinator, session_factory, create_department, create_user,
    ):
        same_only = {"matching_preference": MatchingPreference.SAME_DEPARTMENT_ONLY}
        first, lone_b, lone_c, shared = [await create_department() for _ in range(4)]
        a1 = await create_user(first, **same_only)
        a2 = await create_user(first, **same_only)
        b = await create_user(lone_b, **same_only)
        c = await create_user(lone_c, **same_only)
        d1 = await create_user(shared)
        d2 = await create_user(shared)
        async with session_factory() as session:
            session.add(MatchingExclusion.between(d1.id, d2.id, reason="same team"))
            await session.commit()

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.status == RoundStatus.COMPLETED
        assert outcome.total_participants == 6
        assert outcome.total_pairings == 1
        assert outcome.total_pairings <= outcome.total_participants // 2
        assert {outcome.pairings[0]["user1"]["id"], outcome.pairings[0]["user2"]["id"]} == {str(a1.id), str(a2.id)}
        assert {p["id"] for p in outcome.unmatched} == {str(u.id) for u in (b, c, d1, d2)}

        matching_round = await coordinator.get_round(outcome.round_id)
        assert matching_round.status == RoundStatus.COMPLETED
        assert matching_round.total_pairings == 1
        assert len(matching_round.pairings) == 1


# =============================================================================
# TEST: ATOMICITY
# =============================================================================


class TestAtomicity:
    """A round either commits every pairing or none of them."""

    async def test_failure_mid_round_leaves_no_pairings(self, session_factory, create_users):
        await create_users(6)
        coordinator = FailingSecondPairingCoordinator(session_factory=session_factory, seed=3)

        with pytest.raises(MatchingError) as exc_info:
            await coordinator.run_round(RoundRequest())

        assert "disk full" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert await count(session_factory, Pairing) == 0
        assert await count(session_factory, NotificationTask) == 0

        async with session_factory() as session:
            matching_round = await session.get(MatchingRound, exc_info.value.round_id)
        assert matching_round.status == RoundStatus.FAILED
        assert "disk full" in matching_round.error_message
        assert matching_round.total_pairings == 0

    async def test_insufficient_participants_marks_round_failed(
        self, coordinator, session_factory, create_users,
    ):
        await create_users(1)

        with pytest.raises(InsufficientParticipantsError) as exc_info:
            await coordinator.run_round(RoundRequest())

        assert exc_info.value.eligible_count == 1
        async with session_factory() as session:
            matching_round = await session.get(MatchingRound, exc_info.value.round_id)
        assert matching_round.status == RoundStatus.FAILED
        assert "minimum 2 required" in matching_round.error_message

    async def test_failed_round_can_be_followed_by_new_round(self, coordinator, create_users):
        await create_users(1)
        with pytest.raises(InsufficientParticipantsError):
            await coordinator.run_round(RoundRequest())

        await create_users(2)
        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.status == RoundStatus.COMPLETED


# =============================================================================
# TEST: LIFECYCLE
# =============================================================================


class TestLifecycle:

    async def test_round_in_progress_rejects_new_round(self, coordinator, session_factory, create_users):
        await create_users(4)
        async with session_factory() as session:
            session.add(MatchingRound(
                name="Stuck round",
                scheduled_date=datetime.now(timezone.utc).date(),
                status=RoundStatus.IN_PROGRESS,
            ))
            await session.commit()

        with pytest.raises(RoundInProgressError):
            await coordinator.run_round(RoundRequest())

        assert await count(session_factory, MatchingRound) == 1

    async def test_scheduled_round_executes_later(self, coordinator, create_users):
        await create_users(4)

        scheduled = await coordinator.schedule_round(RoundRequest(source=RoundSource.SCHEDULED))
        assert scheduled.status == RoundStatus.SCHEDULED

        outcome = await coordinator.execute_round(scheduled.id)

        assert outcome.round_id == scheduled.id
        assert outcome.total_pairings == 2
        matching_round = await coordinator.get_round(scheduled.id)
        assert matching_round.status == RoundStatus.COMPLETED
        assert matching_round.source == RoundSource.SCHEDULED

    async def test_completed_round_cannot_execute_again(self, coordinator, create_users):
        await create_users(2)
        outcome = await coordinator.run_round(RoundRequest())

        with pytest.raises(InvalidRoundTransitionError):
            await coordinator.execute_round(outcome.round_id)

    async def test_unknown_round_raises_not_found(self, coordinator):
        with pytest.raises(RoundNotFoundError):
            await coordinator.execute_round(uuid4())
        with pytest.raises(RoundNotFoundError):
            await coordinator.get_round(uuid4())


# =============================================================================
# TEST: EXCLUSIVITY
# =============================================================================


async def add_running_round(session_factory, started_at: datetime | None) -> MatchingRound:
    async with session_factory() as session:
        matching_round = MatchingRound(
            name="Running round",
            scheduled_date=datetime.now(timezone.utc).date(),
            status=RoundStatus.IN_PROGRESS,
            started_at=started_at,
        )
        session.add(matching_round)
        await session.commit()
        return matching_round


class SlowStartCoordinator(RoundCoordinator):
    """Holds its round in progress for a moment before matching."""

    async def _execute(self, round_id, request):
        await asyncio.sleep(0.2)
        return await super()._execute(round_id, request)


class TestExclusivity:

    async def test_concurrent_triggers_run_a_single_round(self, session_factory, create_users):
        await create_users(4)
        first = SlowStartCoordinator(session_factory=session_factory, seed=1)
        second = SlowStartCoordinator(session_factory=session_factory, seed=2)

        results = await asyncio.gather(
            first.run_round(RoundRequest()),
            second.run_round(RoundRequest()),
            return_exceptions=True,
        )

        rejected = [r for r in results if isinstance(r, RoundInProgressError)]
        completed = [r for r in results if not isinstance(r, BaseException)]
        assert len(rejected) == 1
        assert len(completed) == 1
        assert await count(session_factory, MatchingRound) == 1
        assert await count(session_factory, Pairing) == 2

    async def test_database_refuses_a_second_running_round(
        self, coordinator, session_factory, create_users, monkeypatch,
    ):
        await create_users(4)
        await add_running_round(session_factory, datetime.now(timezone.utc))

        async def no_check(self, session):
            return None

        monkeypatch.setattr(RoundCoordinator, "_ensure_no_round_in_progress", no_check)

        with pytest.raises(RoundInProgressError):
            await coordinator.run_round(RoundRequest())

        assert await count(session_factory, MatchingRound) == 1

    async def test_stale_running_round_is_failed_and_replaced(self, coordinator, session_factory, create_users):
        await create_users(2)
        stale = await add_running_round(session_factory, datetime.now(timezone.utc) - timedelta(hours=2))

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.status == RoundStatus.COMPLETED
        async with session_factory() as session:
            abandoned = await session.get(MatchingRound, stale.id)
        assert abandoned.status == RoundStatus.FAILED
        assert abandoned.error_message == "Abandoned: still in progress after 60 minutes"

    async def test_recent_running_round_still_blocks(self, coordinator, session_factory, create_users):
        await create_users(2)
        await add_running_round(session_factory, datetime.now(timezone.utc) - timedelta(minutes=5))

        with pytest.raises(RoundInProgressError):
            await coordinator.run_round(RoundRequest())

    async def test_operator_can_abandon_a_stuck_round(self, coordinator, session_factory, create_users):
        await create_users(2)
        stuck = await add_running_round(session_factory, datetime.now(timezone.utc))

        abandoned = await coordinator.abandon_round(stuck.id, "worker killed")

        assert abandoned.status == RoundStatus.FAILED
        assert abandoned.error_message == "worker killed"
        outcome = await coordinator.run_round(RoundRequest())
        assert outcome.status == RoundStatus.COMPLETED

    async def test_only_running_rounds_can_be_abandoned(self, coordinator, create_users):
        await create_users(2)
        outcome = await coordinator.run_round(RoundRequest())

        with pytest.raises(InvalidRoundTransitionError):
            await coordinator.abandon_round(outcome.round_id)
        with pytest.raises(RoundNotFoundError):
            await coordinator.abandon_round(uuid4())


# =============================================================================
# TEST: PREVIEW
# =============================================================================


class TestPreview:

    async def test_preview_persists_nothing(self, coordinator, session_factory, create_users):
        await create_users(5)

        outcome = await coordinator.preview(RoundRequest())

        assert outcome.is_preview is True
        assert outcome.total_pairings == 2
        assert len(outcome.unmatched) == 1
        assert await count(session_factory, MatchingRound) == 0
        assert await count(session_factory, Pairing) == 0
        assert await count(session_factory, NotificationTask) == 0

    async def test_failed_preview_removes_scaffold(self, coordinator, session_factory, create_users):
        await create_users(1)

        with pytest.raises(InsufficientParticipantsError):
            await coordinator.preview(RoundRequest())

        assert await count(session_factory, MatchingRound) == 0

    async def test_preview_does_not_block_real_round(self, coordinator, session_factory, create_users):
        await create_users(2)
        async with session_factory() as session:
            session.add(MatchingRound(
                name="Leftover preview",
                scheduled_date=datetime.now(timezone.utc).date(),
                status=RoundStatus.IN_PROGRESS,
                is_preview=True,
            ))
            await session.commit()

        outcome = await coordinator.run_round(RoundRequest())
        assert outcome.status == RoundStatus.COMPLETED

        assert await coordinator.cleanup_preview_rounds() == 1
        assert await count(session_factory, MatchingRound, MatchingRound.is_preview.is_(True)) == 0


# =============================================================================
# TEST: POST-COMMIT SIDE EFFECTS
# =============================================================================


class TestSideEffects:

    async def test_pairing_notifications_queued_for_both_members(
        self, coordinator, session_factory, create_users,
    ):
        await create_users(4)

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.notifications_queued == 4
        assert await count(
            session_factory, NotificationTask,
            NotificationTask.notification_type == NotificationType.PAIRING,
        ) == 4

    async def test_scheduled_meetings_add_reminders_and_feedback(self, session_factory, create_users):
        await create_users(2)
        meeting_at = datetime.now(timezone.utc) + timedelta(days=10)
        scheduler = FixedTimeScheduler(meeting_at)
        coordinator = RoundCoordinator(session_factory=session_factory, meeting_scheduler=scheduler, seed=1)

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.meetings_scheduled == 1
        # pairing + 7-day and 1-day reminders + feedback, for both members
        assert outcome.notifications_queued == 8
        assert len(scheduler.calls) == 1

        matching_round = await coordinator.get_round(outcome.round_id)
        pairing = matching_round.pairings[0]
        assert pairing.calendar_event_id == "evt-1"
        assert pairing.meeting_link == "https://meet.example.com/coffee"
        assert await count(
            session_factory, NotificationTask,
            NotificationTask.notification_type == NotificationType.REMINDER,
        ) == 4

    async def test_auto_schedule_can_be_disabled(self, session_factory, create_users, set_setting):
        await create_users(2)
        await set_setting("matching.auto_schedule_meetings", False)
        scheduler = FixedTimeScheduler(datetime.now(timezone.utc) + timedelta(days=10))
        coordinator = RoundCoordinator(session_factory=session_factory, meeting_scheduler=scheduler)

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.meetings_scheduled == 0
        assert scheduler.calls == []

    async def test_calendar_failure_keeps_round_completed(self, session_factory, create_users):
        await create_users(2)
        coordinator = RoundCoordinator(session_factory=session_factory, meeting_scheduler=BrokenScheduler())

        outcome = await coordinator.run_round(RoundRequest())

        assert outcome.status == RoundStatus.COMPLETED
        assert outcome.meetings_scheduled == 0
        assert outcome.notifications_queued == 2
        matching_round = await coordinator.get_round(outcome.round_id)
        assert matching_round.status == RoundStatus.COMPLETED

    async def test_manual_round_can_reset_the_automatic_timer(self, coordinator, session_factory, create_users):
        await create_users(2)

        await coordinator.run_round(RoundRequest(reset_auto_schedule=True))

        async with session_factory() as session:
            config = await ScheduleService(session).get_config()
        assert config.last_run_at is not None
        assert config.next_run_at > config.last_run_at

    async def test_manual_round_leaves_the_timer_alone_by_default(self, coordinator, session_factory, create_users):
        await create_users(2)

        await coordinator.run_round(RoundRequest())

        async with session_factory() as session:
            config = await ScheduleService(session).get_config()
        assert config.last_run_at is None
