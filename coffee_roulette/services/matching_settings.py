"""Immutable snapshot of the ``matching.*`` system settings.

Loaded once at the start of a round and passed into the pure matching
computation, so every comparison in a round sees the same values.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import SystemSetting

logger = logging.getLogger(__name__)


SETTING_KEYS = {
    "lookback_rounds": "matching.lookback_rounds",
    "repeat_penalty": "matching.repeat_penalty",
    "cross_department_weight": "matching.cross_department_weight",
    "cross_seniority_weight": "matching.cross_seniority_weight",
    "grace_period_hours": "matching.grace_period_hours",
    "auto_schedule_meetings": "matching.auto_schedule_meetings",
    "icebreakers_per_pairing": "matching.icebreakers_per_pairing",
}


@dataclass(frozen=True)
class MatchingSettings:
    """Business tunables for one round."""

    # Number of most recent completed rounds scanned for repeat pairs
    lookback_rounds: int = 3

    # Subtracted once per recent co-occurrence of a pair
    repeat_penalty: float = 50.0

    # Bonuses for mixing departments / seniority tiers
    cross_department_weight: float = 20.0
    cross_seniority_weight: float = 10.0

    # Fresh opt-ins wait this long before their first round
    grace_period_hours: float = 48.0

    auto_schedule_meetings: bool = True
    icebreakers_per_pairing: int = 3

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "MatchingSettings":
        """Build a snapshot from ``{"matching.<name>": value}``.

        Missing keys keep their defaults; malformed values are logged and
        replaced by the default.
        """
        defaults = cls()
        kwargs: dict[str, Any] = {}
        for field in fields(cls):
            key = SETTING_KEYS[field.name]
            if key not in values or values[key] is None:
                continue
            default = getattr(defaults, field.name)
            try:
                kwargs[field.name] = _coerce(values[key], type(default))
            except (TypeError, ValueError):
                logger.warning(
                    f"Invalid value {values[key]!r} for setting {key}, "
                    f"using default {default!r}"
                )
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


def _coerce(value: Any, target: type) -> Any:
    if target is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)
    if target is int:
        coerced = int(float(value))
        if coerced < 0:
            raise ValueError("negative")
        return coerced
    coerced = float(value)
    if coerced < 0:
        raise ValueError("negative")
    return coerced


async def load_matching_settings(session: AsyncSession) -> MatchingSettings:
    """Read all ``matching.*`` rows in one query and snapshot them."""
    result = await session.execute(
        select(SystemSetting).where(
            SystemSetting.setting_key.in_(list(SETTING_KEYS.values()))
        )
    )
    values: dict[str, Any] = {}
    for setting in result.scalars().all():
        try:
            values[setting.setting_key] = setting.get_value()
        except ValueError as e:
            logger.warning(f"Could not decode setting {setting.setting_key}: {e}")
    return MatchingSettings.from_mapping(values)
