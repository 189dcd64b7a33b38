"""FastAPI dependencies for sessions and services."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..services.notification_queue import NotificationQueue
from ..services.round_coordinator import RoundCoordinator
from ..services.schedule import ScheduleService
from .database import async_session_factory, get_session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for services that manage their own transactions."""
    return async_session_factory


def get_round_coordinator(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> RoundCoordinator:
    return RoundCoordinator(session_factory=session_factory)


def get_notification_queue(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> NotificationQueue:
    return NotificationQueue(session)



def get_schedule_service(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ScheduleService:
    return ScheduleService(session)


# Type aliases for cleaner route signatures
SessionDep = Annotated[AsyncSession, Depends(get_session)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
CoordinatorDep = Annotated[RoundCoordinator, Depends(get_round_coordinator)]
QueueDep = Annotated[NotificationQueue, Depends(get_notification_queue)]
ScheduleDep = Annotated[ScheduleService, Depends(get_schedule_service)]
