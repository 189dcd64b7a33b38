"""Icebreaker topic assignment for freshly created pairings."""

import logging
import random
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import IcebreakerTopic, Pairing, PairingIcebreaker

logger = logging.getLogger(__name__)


async def assign_icebreakers(
    session: AsyncSession,
    pairings: Sequence[Pairing],
    count: int = 3,
    rng: random.Random | None = None,
) -> int:
    """
    Attach ``count`` random active topics to each pairing.

    Runs inside the caller's transaction. Returns the number of links created.
    """
    if not pairings or count <= 0:
        return 0

    result = await session.execute(
        select(IcebreakerTopic)
        .where(IcebreakerTopic.is_active.is_(True))
        .order_by(IcebreakerTopic.id)
    )
    topics = list(result.scalars().all())

    if not topics:
        logger.warning("No active icebreaker topics found")
        return 0

    rng = rng or random.Random()
    per_pairing = min(count, len(topics))
    created = 0
    for pairing in pairings:
        for topic in rng.sample(topics, per_pairing):
            session.add(PairingIcebreaker(pairing_id=pairing.id, icebreaker_id=topic.id))
            created += 1

    await session.flush()
    logger.info(f"Assigned icebreakers to {len(pairings)} pairings")
    return created


async def topics_for_pairing(session: AsyncSession, pairing_id: UUID) -> list[str]:
    result = await session.execute(
        select(IcebreakerTopic.topic)
        .join(PairingIcebreaker, PairingIcebreaker.icebreaker_id == IcebreakerTopic.id)
        .where(PairingIcebreaker.pairing_id == pairing_id)
        .order_by(IcebreakerTopic.topic)
    )
    return list(result.scalars().all())
