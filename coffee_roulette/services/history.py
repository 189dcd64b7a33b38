"""
History Repository: recent pairings and hard exclusions.

Both are materialized once per round into hash lookups keyed by the
normalized pair, so the matcher's inner loop costs O(1) per comparison.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import MatchingExclusion, MatchingRound, Pairing, RoundStatus

logger = logging.getLogger(__name__)

PairKey = tuple[UUID, UUID]


def pair_key(a: UUID, b: UUID) -> PairKey:
    """Order-independent key for a pair of participant ids (smaller id first)."""
    return (a, b) if a < b else (b, a)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class PairHistoryEntry:
    """A past pairing, read-only input to repeat-avoidance scoring."""
    user1_id: UUID
    user2_id: UUID
    round_id: UUID


@dataclass
class PairHistory:
    """Pair -> number of co-occurrences inside the lookback window."""
    counts: Counter = field(default_factory=Counter)
    rounds_scanned: int = 0

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[PairHistoryEntry],
        rounds_scanned: int = 0,
    ) -> "PairHistory":
        counts: Counter = Counter()
        for entry in entries:
            if entry.user1_id == entry.user2_id:
                continue
            counts[pair_key(entry.user1_id, entry.user2_id)] += 1
        return cls(counts=counts, rounds_scanned=rounds_scanned)

    @classmethod
    def empty(cls) -> "PairHistory":
        return cls()

    def times_paired(self, a: UUID, b: UUID) -> int:
        return self.counts.get(pair_key(a, b), 0)

    def __len__(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True)
class ExclusionSet:
    """Pairs that must never be matched."""
    pairs: frozenset[PairKey] = frozenset()

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[UUID, UUID]]) -> "ExclusionSet":
        return cls(frozenset(pair_key(a, b) for a, b in pairs if a != b))

    def is_excluded(self, a: UUID, b: UUID) -> bool:
        return pair_key(a, b) in self.pairs

    def __len__(self) -> int:
        return len(self.pairs)


# =============================================================================
# REPOSITORY
# =============================================================================


class HistoryRepository:
    """Reads the pairing history and exclusion list for a round."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def recent_entries(self, lookback_rounds: int) -> tuple[list[PairHistoryEntry], int]:
        """
        Pairings from the most recent ``lookback_rounds`` completed rounds.

        Preview scaffolds never count. Returns (entries, rounds_scanned).
        """
        if lookback_rounds <= 0:
            return [], 0

        rounds_result = await self._session.execute(
            select(MatchingRound.id)
            .where(
                MatchingRound.status == RoundStatus.COMPLETED,
                MatchingRound.is_preview.is_(False),
            )
            .order_by(MatchingRound.executed_at.desc())
            .limit(lookback_rounds)
        )
        round_ids = list(rounds_result.scalars().all())
        if not round_ids:
            return [], 0

        pairings_result = await self._session.execute(
            select(Pairing.user1_id, Pairing.user2_id, Pairing.matching_round_id)
            .where(Pairing.matching_round_id.in_(round_ids))
        )
        entries = [
            PairHistoryEntry(user1_id=u1, user2_id=u2, round_id=rid)
            for u1, u2, rid in pairings_result.all()
        ]

        logger.info(
            f"Found {len(entries)} recent pairings across {len(round_ids)} rounds"
        )
        return entries, len(round_ids)

    async def pair_history(self, lookback_rounds: int) -> PairHistory:
        entries, rounds_scanned = await self.recent_entries(lookback_rounds)
        return PairHistory.from_entries(entries, rounds_scanned=rounds_scanned)

    async def exclusions(self) -> ExclusionSet:
        result = await self._session.execute(
            select(MatchingExclusion.user1_id, MatchingExclusion.user2_id)
        )
        exclusions = ExclusionSet.from_pairs(result.all())
        logger.debug(f"Loaded {len(exclusions)} matching exclusions")
        return exclusions
