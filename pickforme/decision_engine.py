"""Pick a single best venue from a candidate list."""
from __future__ import annotations

import logging
import os
from functools import cmp_to_key
from typing import List, Optional, Sequence

from pickforme.config import EngineSettings
from pickforme.errors import NoCandidatesError, NoSuitableOptionsError
from pickforme.schemas import (
    FACTOR_WEIGHTS,
    Candidate,
    ConversationContext,
    Coordinates,
    Decision,
    PreferenceProfile,
    RankedCandidate,
    ScoreBreakdown,
)
from pickforme.scoring import rank_candidates

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("PICKFORME_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

STRONG_FACTOR = 0.7
# Preference-independent factors used to pick a best-effort fallback.
_QUALITY_FACTORS = ("rating", "popularity")


class DecisionEngine:
    """Stateless ranking service; construct once and share freely."""

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or EngineSettings()

    def rank(
        self,
        candidates: Sequence[Candidate],
        profile: PreferenceProfile,
        location: Optional[Coordinates] = None,
    ) -> List[RankedCandidate]:
        return rank_candidates(
            candidates,
            profile,
            location,
            cutoff_miles=self.settings.distance_cutoff_miles,
            epsilon=self.settings.tie_epsilon,
        )

    def select_best(
        self,
        candidates: Sequence[Candidate],
        profile: PreferenceProfile,
        location: Optional[Coordinates] = None,
        context: Optional[ConversationContext] = None,
    ) -> Decision:
        if not candidates:
            raise NoCandidatesError()

        effective = resolve_profile(profile, context)
        ranked = self.rank(candidates, effective, location)
        top = ranked[0]
        floor = self.settings.viability_floor

        if top.breakdown.total < floor or top.breakdown.preference_fit < floor:
            best_effort = self._best_effort(ranked)
            logger.info(
                "No candidate cleared the %.2f floor (top %s total=%.3f fit=%.3f); best effort is %s",
                floor,
                top.candidate.name,
                top.breakdown.total,
                top.breakdown.preference_fit,
                best_effort.name,
            )
            raise NoSuitableOptionsError(
                best_effort,
                ranked=ranked,
                floor=floor,
                top_score=top.breakdown.total,
                weak_factors=_weak_factors(top.breakdown, effective),
            )

        alternatives = [item.candidate for item in ranked[1 : 1 + self.settings.alternatives_count]]
        reasoning = build_reasoning(top.candidate, top.breakdown, effective, context)
        logger.info(
            "Selected %s (score %.3f) from %d candidate(s); alternatives: %s",
            top.candidate.name,
            top.breakdown.total,
            len(ranked),
            ", ".join(c.name for c in alternatives) or "none",
        )
        return Decision(
            selected=top.candidate,
            alternatives=alternatives,
            reasoning=reasoning,
            confidence=round(top.breakdown.total, 4),
            breakdown=top.breakdown,
        )

    def _best_effort(self, ranked: List[RankedCandidate]) -> Candidate:
        def quality(item: RankedCandidate) -> float:
            b = item.breakdown
            return sum(getattr(b, name) * FACTOR_WEIGHTS[name] for name in _QUALITY_FACTORS)

        def compare(a: RankedCandidate, b: RankedCandidate) -> int:
            diff = quality(a) - quality(b)
            if abs(diff) > self.settings.tie_epsilon:
                return -1 if diff > 0 else 1
            if a.candidate.review_count != b.candidate.review_count:
                return -1 if a.candidate.review_count > b.candidate.review_count else 1
            return (a.candidate.name > b.candidate.name) - (a.candidate.name < b.candidate.name)

        return sorted(ranked, key=cmp_to_key(compare))[0].candidate


def resolve_profile(profile: PreferenceProfile, context: Optional[ConversationContext]) -> PreferenceProfile:
    """Drop profile fields the conversation never actually set."""
    if context is None or context.explicit_fields is None:
        return profile
    explicit = set(context.explicit_fields)
    update = {}
    if "price_band" not in explicit:
        update["price_band"] = None
    if "cuisines" not in explicit:
        update["cuisines"] = []
    if not update:
        return profile
    return profile.model_copy(update=update)


def build_reasoning(
    candidate: Candidate,
    breakdown: ScoreBreakdown,
    profile: PreferenceProfile,
    context: Optional[ConversationContext] = None,
) -> str:
    contributions = breakdown.contributions()
    order = list(FACTOR_WEIGHTS)
    top_factors = sorted(order, key=lambda name: (-contributions[name], order.index(name)))[:3]

    reasons: List[str] = []
    for name in top_factors:
        if getattr(breakdown, name) <= STRONG_FACTOR:
            continue
        phrase = _factor_phrase(name, candidate, breakdown, profile)
        if phrase:
            reasons.append(phrase)

    text = f"I selected {candidate.name} because "
    if reasons:
        text += "it excels in several key areas: " + ", ".join(reasons) + "."
    else:
        text += "it provides the best overall balance of quality, location, and value."

    if context is not None and context.stage == "decision_made":
        text += " This choice aligns with your previous preferences in our conversation."
    return text


def _factor_phrase(
    name: str,
    candidate: Candidate,
    breakdown: ScoreBreakdown,
    profile: PreferenceProfile,
) -> Optional[str]:
    if name == "rating":
        return f"it has excellent ratings ({candidate.rating:g}/5 stars)"
    if name == "price_match":
        if profile.price_band is None:
            return None
        return f"it matches your budget preference ({candidate.price})"
    if name == "distance":
        if breakdown.distance_miles is None:
            return None
        return f"it's conveniently located nearby ({breakdown.distance_miles:.1f} miles away)"
    if name == "category_match":
        if not profile.cuisines:
            return None
        return "it serves your preferred cuisine"
    if name == "popularity":
        return f"it's well-reviewed by many customers ({candidate.review_count} reviews)"
    return None


def _weak_factors(breakdown: ScoreBreakdown, profile: PreferenceProfile) -> List[str]:
    weak: List[str] = []
    if profile.price_band is not None and breakdown.price_match < 1.0:
        weak.append("price_match")
    if profile.cuisines and breakdown.category_match < 0.5:
        weak.append("category_match")
    if breakdown.distance < 0.5:
        weak.append("distance")
    if breakdown.rating < 0.5:
        weak.append("rating")
    return weak
