"""Shared fixtures: a throwaway SQLite database and participant factories."""

import itertools
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from coffee_roulette.core.database import build_engine, build_session_factory, init_db
from coffee_roulette.models import (
    Department,
    IcebreakerTopic,
    MatchingPreference,
    SeniorityLevel,
    SettingDataType,
    SystemSetting,
    User,
)
from coffee_roulette.services.eligibility import Participant

LONG_AGO = datetime(2020, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'coffee_roulette.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_department(session_factory):
    async def _create(name: str | None = None, is_active: bool = True) -> Department:
        async with session_factory() as session:
            department = Department(name=name or f"Dept {uuid4().hex[:6]}", is_active=is_active)
            session.add(department)
            await session.commit()
            return department
    return _create


@pytest.fixture
def create_user(session_factory):
    counter = itertools.count(1)

    async def _create(department: Department | None = None, **overrides) -> User:
        n = next(counter)
        values = dict(
            email=f"user{n}-{uuid4().hex[:6]}@example.com",
            first_name=f"User{n}",
            last_name="Tester",
            department_id=department.id if department else None,
            seniority_level=SeniorityLevel.MID,
            matching_preference=MatchingPreference.ANY,
            is_active=True,
            is_opted_in=True,
            opted_in_at=LONG_AGO,
        )
        values.update(overrides)
        async with session_factory() as session:
            user = User(**values)
            session.add(user)
            await session.commit()
            return user
    return _create


@pytest.fixture
def create_users(create_department, create_user):
    """Create ``count`` eligible users spread over two active departments."""
    async def _create(count: int, **overrides) -> list[User]:
        departments = [await create_department(), await create_department()]
        return [
            await create_user(departments[i % 2], **overrides)
            for i in range(count)
        ]
    return _create


@pytest.fixture
def create_topics(session_factory):
    async def _create(*topics: str) -> list[IcebreakerTopic]:
        async with session_factory() as session:
            rows = [IcebreakerTopic(topic=topic, category="fun") for topic in topics]
            session.add_all(rows)
            await session.commit()
            return rows
    return _create


@pytest.fixture
def set_setting(session_factory):
    async def _set(key: str, value) -> None:
        if isinstance(value, bool):
            data_type = SettingDataType.BOOLEAN
        elif isinstance(value, (int, float)):
            data_type = SettingDataType.NUMBER
        else:
            data_type = SettingDataType.STRING
        async with session_factory() as session:
            setting = SystemSetting(setting_key=key, data_type=data_type)
            setting.set_value(value)
            session.add(setting)
            await session.commit()
    return _set


# =============================================================================
# IN-MEMORY PARTICIPANTS
# =============================================================================


@pytest.fixture
def department_ids():
    return [uuid4() for _ in range(4)]


@pytest.fixture
def make_participant(department_ids):
    counter = itertools.count(1)

    def _make(**overrides) -> Participant:
        n = next(counter)
        values = dict(
            id=uuid4(),
            email=f"p{n}@example.com",
            first_name=f"P{n}",
            last_name="Tester",
            department_id=department_ids[n % len(department_ids)],
            department_name=f"Dept {n % len(department_ids)}",
            department_active=True,
            seniority_level=list(SeniorityLevel)[n % 4],
            opted_in_at=LONG_AGO,
        )
        values.update(overrides)
        return Participant(**values)
    return _make


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)


def hours_ago(reference: datetime, hours: float) -> datetime:
    return reference - timedelta(hours=hours)
