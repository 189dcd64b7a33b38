"""
Schedule Service: cadence of automatic matching rounds.

The cadence is a five-field cron expression evaluated in a configured
timezone. It lives in ``system_settings`` next to the matching tunables:

    matching.schedule_type          weekly | biweekly | monthly | custom
    matching.cron_expression        e.g. "0 9 1 * *"
    matching.schedule_timezone      IANA name, e.g. "America/New_York"
    matching.auto_schedule_enabled  boolean
    matching.last_scheduled_run_at  ISO timestamp (UTC)
    matching.next_run_date          ISO timestamp (UTC)

The cron job asks ``is_due()`` on every tick. Recording a run, including a
manual round that resets the timer, pushes ``next_run_date`` forward.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models import SettingDataType, SystemSetting
from .exceptions import ScheduleError

logger = logging.getLogger(__name__)
settings = get_settings()

PRESETS: dict[str, str] = {
    "weekly": "0 9 * * 1",
    "biweekly": "0 9 1,15 * *",
    "monthly": "0 9 1 * *",
}

PRESET_DESCRIPTIONS: dict[str, str] = {
    "weekly": "Every Monday at 9:00 AM",
    "biweekly": "1st and 15th of each month at 9:00 AM",
    "monthly": "1st of each month at 9:00 AM",
}

SCHEDULE_KEYS = {
    "schedule_type": "matching.schedule_type",
    "cron_expression": "matching.cron_expression",
    "timezone": "matching.schedule_timezone",
    "enabled": "matching.auto_schedule_enabled",
    "last_run_at": "matching.last_scheduled_run_at",
    "next_run_at": "matching.next_run_date",
}


def validate_cron_expression(expression: str) -> bool:
    """Five-field cron only; seconds and year fields are rejected."""
    if not isinstance(expression, str) or len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)


def next_run_after(expression: str, timezone_name: str, after: datetime) -> datetime:
    """First firing strictly after ``after``, evaluated in ``timezone_name``, returned in UTC."""
    if not validate_cron_expression(expression):
        raise ScheduleError(f"Invalid cron expression: {expression!r}")
    try:
        tz = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleError(f"Unknown timezone: {timezone_name!r}") from e

    local_start = after.astimezone(tz)
    return croniter(expression, local_start).get_next(datetime).astimezone(timezone.utc)


@dataclass
class ScheduleConfig:
    schedule_type: str
    cron_expression: str
    timezone: str
    enabled: bool
    last_run_at: datetime | None
    next_run_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_type": self.schedule_type,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "enabled": self.enabled,
            "last_run_at": self.last_run_at,
            "next_run_at": self.next_run_at,
        }


class ScheduleService:
    """Session-scoped access to the automatic matching schedule."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # READ
    # =========================================================================

    async def get_config(self, now: datetime | None = None) -> ScheduleConfig:
        """Current schedule; ``next_run_at`` is computed when none is stored."""
        now = now or datetime.now(timezone.utc)
        values = await self._load()

        cron_expression = values.get("cron_expression") or settings.matching_cron_expression
        timezone_name = values.get("timezone") or settings.matching_timezone
        enabled = values.get("enabled")
        last_run_at = _parse_timestamp(values.get("last_run_at"))
        next_run_at = _parse_timestamp(values.get("next_run_at"))

        if next_run_at is None:
            try:
                next_run_at = next_run_after(cron_expression, timezone_name, last_run_at or now)
            except ScheduleError as e:
                logger.error(f"Cannot compute next matching run: {e}")

        return ScheduleConfig(
            schedule_type=values.get("schedule_type") or _preset_name(cron_expression),
            cron_expression=cron_expression,
            timezone=timezone_name,
            enabled=True if enabled is None else bool(enabled),
            last_run_at=last_run_at,
            next_run_at=next_run_at,
        )

    async def is_due(self, now: datetime | None = None) -> bool:
        """Enabled, and the stored next run (if any) has arrived."""
        now = now or datetime.now(timezone.utc)
        values = await self._load()
        if values.get("enabled") is False:
            return False
        stored_next = _parse_timestamp(values.get("next_run_at"))
        return stored_next is None or stored_next <= now

    # =========================================================================
    # WRITE
    # =========================================================================

    async def update_schedule(
        self,
        schedule_type: str,
        cron_expression: str | None = None,
        timezone_name: str | None = None,
        now: datetime | None = None,
    ) -> ScheduleConfig:
        """
        Switch to a preset, or to a custom expression with ``schedule_type="custom"``.

        Raises:
            ScheduleError: Unknown preset, invalid expression or unknown timezone.
        """
        now = now or datetime.now(timezone.utc)
        if schedule_type == "custom":
            if not cron_expression:
                raise ScheduleError("A custom schedule needs a cron expression")
            expression = cron_expression
        elif schedule_type in PRESETS:
            expression = PRESETS[schedule_type]
        else:
            raise ScheduleError(
                f"Invalid schedule type: {schedule_type}. "
                f"Must be one of: {', '.join([*PRESETS, 'custom'])}"
            )

        current = await self.get_config(now)
        timezone_name = timezone_name or current.timezone
        next_run_at = next_run_after(expression, timezone_name, now)

        await self._set("schedule_type", schedule_type)
        await self._set("cron_expression", expression)
        await self._set("timezone", timezone_name)
        await self._set("next_run_at", next_run_at.isoformat())
        await self._session.flush()

        logger.info(f"Matching schedule updated to {schedule_type} ({expression}), next run {next_run_at.isoformat()}")
        return await self.get_config(now)

    async def set_enabled(self, enabled: bool) -> ScheduleConfig:
        await self._set("enabled", enabled)
        await self._session.flush()
        logger.info(f"Auto-scheduling {'enabled' if enabled else 'disabled'}")
        return await self.get_config()

    async def record_scheduled_run(self, now: datetime | None = None) -> ScheduleConfig:
        """Stamp the last run and move the next run to the following cron firing."""
        now = now or datetime.now(timezone.utc)
        await self._set("last_run_at", now.isoformat())

        config = await self.get_config(now)
        try:
            next_run_at = next_run_after(config.cron_expression, config.timezone, now)
        except ScheduleError as e:
            logger.error(f"Error calculating next run date after scheduled run: {e}")
            await self._set("next_run_at", None)
        else:
            await self._set("next_run_at", next_run_at.isoformat())
            logger.info(f"Next scheduled run updated to: {next_run_at.isoformat()}")

        await self._session.flush()
        return await self.get_config(now)

    # =========================================================================
    # STORAGE
    # =========================================================================

    async def _load(self) -> dict[str, Any]:
        result = await self._session.execute(
            select(SystemSetting).where(SystemSetting.setting_key.in_(list(SCHEDULE_KEYS.values())))
        )
        by_key = {key: name for name, key in SCHEDULE_KEYS.items()}
        values: dict[str, Any] = {}
        for setting in result.scalars().all():
            try:
                values[by_key[setting.setting_key]] = setting.get_value()
            except ValueError as e:
                logger.warning(f"Could not decode setting {setting.setting_key}: {e}")
        return values

    async def _set(self, name: str, value: Any) -> None:
        key = SCHEDULE_KEYS[name]
        setting = await self._session.scalar(
            select(SystemSetting).where(SystemSetting.setting_key == key)
        )
        if setting is None:
            setting = SystemSetting(
                setting_key=key,
                data_type=SettingDataType.BOOLEAN if isinstance(value, bool) else SettingDataType.STRING,
            )
            self._session.add(setting)
        setting.set_value(value)


def _preset_name(expression: str) -> str:
    for name, preset in PRESETS.items():
        if preset == expression:
            return name
    return "custom"


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning(f"Ignoring malformed schedule timestamp {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
