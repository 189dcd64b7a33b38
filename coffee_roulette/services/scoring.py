"""
Scoring Engine: ranks candidate partners.

Scores only rank candidates. Rejection is expressed as negative infinity
and comes from hard constraints evaluated before any arithmetic:
1. Exclusion pairs
2. Matching preferences of either participant
"""

import math

from ..models import MatchingPreference
from .eligibility import Participant
from .history import ExclusionSet, PairHistory
from .matching_settings import MatchingSettings

BASE_SCORE = 100.0
INCOMPATIBLE = -math.inf


def preferences_compatible(a: Participant, b: Participant) -> bool:
    """Both participants' declared preferences must allow the pair."""
    same_department = a.department_id == b.department_id
    same_seniority = a.seniority_level == b.seniority_level

    for preference in (a.matching_preference, b.matching_preference):
        if preference == MatchingPreference.CROSS_DEPARTMENT_ONLY and same_department:
            return False
        if preference == MatchingPreference.SAME_DEPARTMENT_ONLY and not same_department:
            return False
        if preference == MatchingPreference.CROSS_SENIORITY_ONLY and same_seniority:
            return False
    return True


class ScoringEngine:
    """Compatibility score for an (unordered) candidate pair."""

    def __init__(
        self,
        settings: MatchingSettings,
        history: PairHistory | None = None,
        exclusions: ExclusionSet | None = None,
    ):
        self._settings = settings
        self._history = history or PairHistory.empty()
        self._exclusions = exclusions or ExclusionSet()

    def is_allowed(self, a: Participant, b: Participant) -> bool:
        if a.id == b.id:
            return False
        if self._exclusions.is_excluded(a.id, b.id):
            return False
        return preferences_compatible(a, b)

    def score(self, a: Participant, b: Participant) -> float:
        if not self.is_allowed(a, b):
            return INCOMPATIBLE

        score = BASE_SCORE
        score -= self._settings.repeat_penalty * self._history.times_paired(a.id, b.id)

        if a.department_id != b.department_id:
            score += self._settings.cross_department_weight
        if a.seniority_level != b.seniority_level:
            score += self._settings.cross_seniority_weight

        return score
