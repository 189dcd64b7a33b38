"""
Tests for pool selection.

These tests verify:
1. Availability, department and grace-period rules
2. Admin filters narrowing the pool
3. Rejection of pools with fewer than two participants
"""

from datetime import timedelta

import pytest

from coffee_roulette.models import SeniorityLevel
from coffee_roulette.services.eligibility import (
    EligibilityResolver,
    ParticipantFilters,
    filters_from_dict,
    load_participants,
)
from coffee_roulette.services.exceptions import InsufficientParticipantsError
from coffee_roulette.services.matching_settings import MatchingSettings


@pytest.fixture
def resolver(now):
    return EligibilityResolver(MatchingSettings(), now=now)


# =============================================================================
# TEST: ELIGIBILITY RULES
# =============================================================================


class TestEligibilityRules:
    """Each rule excludes on its own."""

    def test_active_opted_in_participant_is_eligible(self, resolver, make_participant):
        assert resolver.is_eligible(make_participant()) is True

    def test_inactive_or_opted_out_is_ineligible(self, resolver, make_participant):
        assert resolver.is_eligible(make_participant(is_active=False)) is False
        assert resolver.is_eligible(make_participant(is_opted_in=False)) is False

    def test_available_from_in_future_is_ineligible(self, resolver, make_participant, now):
        tomorrow = now.date() + timedelta(days=1)
        assert resolver.is_eligible(make_participant(available_from=tomorrow)) is False

    def test_available_from_today_is_eligible(self, resolver, make_participant, now):
        assert resolver.is_eligible(make_participant(available_from=now.date())) is True

    def test_disabled_department_is_ineligible(self, resolver, make_participant):
        assert resolver.is_eligible(make_participant(department_active=False)) is False

    def test_department_override_keeps_participant(self, resolver, make_participant):
        participant = make_participant(department_active=False, override_department_exclusion=True)
        assert resolver.is_eligible(participant) is True

    def test_explicit_department_filter_skips_department_check(self, make_participant, now):
        participant = make_participant(department_active=False)
        resolver = EligibilityResolver(
            MatchingSettings(),
            now=now,
            filters=ParticipantFilters(department_ids=(participant.department_id,)),
        )
        assert resolver.is_eligible(participant) is True


# =============================================================================
# TEST: GRACE PERIOD
# =============================================================================


class TestGracePeriod:
    """Fresh opt-ins wait ``grace_period_hours`` before their first round."""

    def test_recent_opt_in_is_ineligible(self, resolver, make_participant, now):
        participant = make_participant(opted_in_at=now - timedelta(hours=47))
        assert resolver.is_eligible(participant) is False

    def test_opt_in_older_than_window_is_eligible(self, resolver, make_participant, now):
        participant = make_participant(opted_in_at=now - timedelta(hours=49))
        assert resolver.is_eligible(participant) is True

    def test_skip_grace_period_flag(self, resolver, make_participant, now):
        participant = make_participant(opted_in_at=now - timedelta(hours=1), skip_grace_period=True)
        assert resolver.is_eligible(participant) is True

    def test_round_filter_ignores_grace_period(self, make_participant, now):
        resolver = EligibilityResolver(
            MatchingSettings(),
            now=now,
            filters=ParticipantFilters(ignore_grace_period=True),
        )
        assert resolver.is_eligible(make_participant(opted_in_at=now)) is True

    def test_window_follows_settings(self, make_participant, now):
        resolver = EligibilityResolver(MatchingSettings(grace_period_hours=2), now=now)
        assert resolver.is_eligible(make_participant(opted_in_at=now - timedelta(hours=3))) is True


# =============================================================================
# TEST: RESOLVE
# =============================================================================


class TestResolve:

    def test_resolve_returns_only_eligible(self, resolver, make_participant):
        keep = [make_participant(), make_participant()]
        drop = make_participant(is_opted_in=False)

        pool = resolver.resolve([keep[0], drop, keep[1]])

        assert [p.id for p in pool] == [p.id for p in keep]

    def test_fewer_than_two_raises(self, resolver, make_participant):
        with pytest.raises(InsufficientParticipantsError) as exc_info:
            resolver.resolve([make_participant(), make_participant(is_active=False)])

        assert exc_info.value.eligible_count == 1
        assert "minimum 2 required, found 1" in str(exc_info.value)

    def test_empty_pool_raises(self, resolver):
        with pytest.raises(InsufficientParticipantsError):
            resolver.resolve([])


# =============================================================================
# TEST: SNAPSHOT LOADING
# =============================================================================


class TestLoadParticipants:
    """Database snapshot of the candidate pool."""

    async def test_loads_opted_in_active_users(self, session, create_department, create_user):
        department = await create_department("Engineering")
        opted_in = await create_user(department)
        await create_user(department, is_opted_in=False)
        await create_user(department, is_active=False)

        participants = await load_participants(session)

        assert [p.id for p in participants] == [opted_in.id]
        assert participants[0].department_name == "Engineering"
        assert participants[0].department_active is True

    async def test_filters_narrow_pool(self, session, create_department, create_user):
        engineering = await create_department("Engineering")
        sales = await create_department("Sales")
        senior = await create_user(engineering, seniority_level=SeniorityLevel.SENIOR)
        await create_user(engineering, seniority_level=SeniorityLevel.JUNIOR)
        await create_user(sales, seniority_level=SeniorityLevel.SENIOR)

        participants = await load_participants(
            session,
            ParticipantFilters(
                department_ids=(engineering.id,),
                seniority_levels=(SeniorityLevel.SENIOR,),
            ),
        )

        assert [p.id for p in participants] == [senior.id]

    async def test_user_without_department_is_snapshotted_inactive(self, session, create_user):
        await create_user(None)

        participants = await load_participants(session)

        assert participants[0].department_name is None
        assert participants[0].department_active is False


def test_filters_round_trip_through_stored_dict():
    filters = ParticipantFilters(
        seniority_levels=(SeniorityLevel.LEAD,),
        ignore_grace_period=True,
    )
    assert filters_from_dict(filters.to_dict()) == filters
    assert filters_from_dict(None).is_empty
