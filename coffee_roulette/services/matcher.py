"""
Greedy Matcher and VIP Rebalancer.

The matcher is a bounded-effort heuristic, not an optimal solver:

1. Shuffle the pool to avoid positional bias
2. Walk the shuffled list; each unmatched participant scans every LATER
   unmatched participant and takes the highest score (first seen wins ties)
3. A pair is committed immediately and never revisited

This is O(n^2) and can leave a better global assignment on the table. Round
sizes are organizational (tens to low hundreds), so simplicity and speed win
over matching quality.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Sequence

from .eligibility import Participant
from .scoring import INCOMPATIBLE, ScoringEngine

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ScoredPair:
    """A committed pairing. Mutable so the rebalancer can swap a member."""
    user1: Participant
    user2: Participant
    score: float

    @property
    def members(self) -> tuple[Participant, Participant]:
        return self.user1, self.user2

    def to_summary(self) -> dict:
        return {
            "user1": self.user1.to_summary(),
            "user2": self.user2.to_summary(),
            "score": self.score,
        }


@dataclass
class MatchResult:
    """Output of one matching pass over a pool."""
    pairs: list[ScoredPair] = field(default_factory=list)
    unmatched: list[Participant] = field(default_factory=list)
    pool_size: int = 0

    @property
    def sit_out(self) -> Participant | None:
        """The round's odd participant out, if any."""
        return self.unmatched[0] if self.unmatched else None

    def matched_ids(self) -> set:
        return {p.id for pair in self.pairs for p in pair.members}


# =============================================================================
# GREEDY MATCHER
# =============================================================================


class GreedyMatcher:
    """Pairs a pool using ``ScoringEngine`` scores.

    Deterministic for a seeded ``random.Random`` and a fixed input order.
    """

    def __init__(self, scorer: ScoringEngine, rng: random.Random | None = None):
        self._scorer = scorer
        self._rng = rng or random.Random()

    def match(self, pool: Sequence[Participant]) -> MatchResult:
        shuffled = list(pool)
        self._rng.shuffle(shuffled)

        pairs: list[ScoredPair] = []
        used: set = set()

        for i, candidate in enumerate(shuffled):
            if candidate.id in used:
                continue

            best_match: Participant | None = None
            best_score = INCOMPATIBLE

            for other in shuffled[i + 1:]:
                if other.id in used:
                    continue
                score = self._scorer.score(candidate, other)
                if score > best_score:
                    best_score = score
                    best_match = other

            if best_match is not None:
                pairs.append(ScoredPair(user1=candidate, user2=best_match, score=best_score))
                used.add(candidate.id)
                used.add(best_match.id)

        unmatched = [p for p in shuffled if p.id not in used]
        if len(unmatched) > 1:
            logger.warning(
                f"{len(unmatched)} participants have no compatible partner this round: "
                f"{[str(p.id) for p in unmatched]}"
            )

        logger.info(f"Greedy matching produced {len(pairs)} pairings from {len(shuffled)} participants")
        return MatchResult(pairs=pairs, unmatched=unmatched, pool_size=len(shuffled))


# =============================================================================
# VIP REBALANCER
# =============================================================================


class VIPRebalancer:
    """
    Keeps VIPs out of the sit-out slot for odd-sized pools.

    When the leftover is a VIP, the first pairing holding a non-VIP that the
    VIP is allowed to meet gives up that non-VIP, who becomes the sit-out.
    Swaps that would produce an excluded or preference-vetoed pair are skipped.
    """

    def __init__(self, scorer: ScoringEngine):
        self._scorer = scorer

    def rebalance(self, result: MatchResult) -> MatchResult:
        if result.pool_size % 2 == 0 or not result.unmatched:
            return result

        leftover = result.unmatched[0]
        if not leftover.is_vip:
            logger.info(f"Odd number of participants - user {leftover.id} will sit out this round")
            return result

        for pair in result.pairs:
            if self._try_swap(pair, leftover, result):
                return result

        if all(p.is_vip for pair in result.pairs for p in pair.members):
            logger.warning(f"All participants are VIPs - VIP user {leftover.id} will sit out this round")
        else:
            logger.warning(
                f"No compatible swap for VIP user {leftover.id} - they will sit out this round"
            )
        return result

    def _try_swap(self, pair: ScoredPair, vip: Participant, result: MatchResult) -> bool:
        # user1 is tried before user2
        for slot, member, keeper in (
            ("user1", pair.user1, pair.user2),
            ("user2", pair.user2, pair.user1),
        ):
            if member.is_vip:
                continue
            score = self._scorer.score(vip, keeper)
            if score == INCOMPATIBLE:
                continue

            setattr(pair, slot, vip)
            pair.score = score
            result.unmatched[0] = member
            logger.info(
                f"VIP user {vip.id} swapped into pairing, non-VIP user {member.id} will sit out"
            )
            return True
        return False
