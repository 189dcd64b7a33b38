"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    build_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
    unit_of_work,
)
from .dependencies import (
    CoordinatorDep,
    QueueDep,
    ScheduleDep,
    SessionDep,
    SessionFactoryDep,
    get_notification_queue,
    get_round_coordinator,
    get_schedule_service,
    get_session_factory,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "get_session",
    "unit_of_work",
    "init_db",
    "close_db",
    # Dependencies
    "get_session_factory",
    "get_round_coordinator",
    "get_notification_queue",
    "get_schedule_service",
    "SessionDep",
    "SessionFactoryDep",
    "CoordinatorDep",
    "QueueDep",
    "ScheduleDep",
]
