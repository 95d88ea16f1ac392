"""Weighted multi-factor scoring shared by the decision engine and the day builder."""
from __future__ import annotations

from functools import cmp_to_key
from typing import Iterable, List, Optional

from pickforme.schemas import (
    FACTOR_WEIGHTS,
    PRICE_LEVELS,
    Candidate,
    Coordinates,
    PreferenceProfile,
    RankedCandidate,
    ScoreBreakdown,
)
from pickforme.tools.geo import distance_from

NEUTRAL = 0.5
POPULARITY_SATURATION = 500


def rating_factor(rating: float) -> float:
    return _clamp(rating / 5.0)


def price_factor(candidate_price: str, desired: Optional[str]) -> float:
    if desired is None:
        return NEUTRAL
    have = PRICE_LEVELS.get(candidate_price)
    want = PRICE_LEVELS.get(desired)
    if have is None or want is None:
        return NEUTRAL
    gap = abs(have - want)
    if gap == 0:
        return 1.0
    if gap == 1:
        return 0.5
    return 0.0


def distance_factor(miles: Optional[float], cutoff_miles: float = 10.0) -> float:
    if miles is None:
        return NEUTRAL
    return _clamp(1.0 - miles / cutoff_miles)


def category_factor(categories: Iterable[str], desired: Iterable[str]) -> float:
    wanted = {d.lower() for d in desired}
    if not wanted:
        return 1.0
    have = {c.lower() for c in categories}
    return _clamp(len(have & wanted) / max(1, len(wanted)))


def popularity_factor(review_count: int) -> float:
    return min(1.0, review_count / POPULARITY_SATURATION)


def score(
    candidate: Candidate,
    profile: PreferenceProfile,
    location: Optional[Coordinates],
    *,
    cutoff_miles: float = 10.0,
) -> ScoreBreakdown:
    """Score one candidate against a profile. Pure; no I/O."""
    miles = distance_from(location, candidate.coordinates)
    factors = {
        "rating": rating_factor(candidate.rating),
        "price_match": price_factor(candidate.price, profile.price_band),
        "distance": distance_factor(miles, cutoff_miles),
        "category_match": category_factor(candidate.categories, profile.cuisines),
        "popularity": popularity_factor(candidate.review_count),
    }
    total = sum(factors[name] * weight for name, weight in FACTOR_WEIGHTS.items())
    return ScoreBreakdown(
        candidate_id=candidate.id,
        total=_clamp(total),
        distance_miles=round(miles, 3) if miles is not None else None,
        **factors,
    )


def compare_ranked(a: RankedCandidate, b: RankedCandidate, epsilon: float = 1e-6) -> int:
    """Higher total first; near-ties go to more reviews, then name A→Z."""
    diff = a.breakdown.total - b.breakdown.total
    if abs(diff) > epsilon:
        return -1 if diff > 0 else 1
    if a.candidate.review_count != b.candidate.review_count:
        return -1 if a.candidate.review_count > b.candidate.review_count else 1
    if a.candidate.name != b.candidate.name:
        return -1 if a.candidate.name < b.candidate.name else 1
    if a.candidate.id != b.candidate.id:
        return -1 if a.candidate.id < b.candidate.id else 1
    return 0


def rank_candidates(
    candidates: Iterable[Candidate],
    profile: PreferenceProfile,
    location: Optional[Coordinates],
    *,
    cutoff_miles: float = 10.0,
    epsilon: float = 1e-6,
) -> List[RankedCandidate]:
    ranked = [
        RankedCandidate(candidate=c, breakdown=score(c, profile, location, cutoff_miles=cutoff_miles))
        for c in candidates
    ]
    ranked.sort(key=cmp_to_key(lambda a, b: compare_ranked(a, b, epsilon)))
    return ranked


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
