"""Typed failures raised by the decision engine and itinerary planner.

Every error carries a stable ``code`` plus enough structured detail for the
caller to render a specific message (which candidate, which day, which
window) instead of a generic failure.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple


class PickForMeError(Exception):
    code = "PICKFORME_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.details())
        return payload


class NoCandidatesError(PickForMeError):
    """Nothing to choose from; not retryable by the core."""

    code = "NO_CANDIDATES"

    def __init__(self, message: str = "No candidates were provided for decision making.") -> None:
        super().__init__(message)


class NoSuitableOptionsError(PickForMeError):
    """Candidates exist but none clears the viability floor.

    ``best_effort`` is the candidate the caller may still offer with a caveat;
    ``ranked`` holds the full ranking so the UI can explain the shortfall.
    """

    code = "NO_SUITABLE_OPTIONS"

    def __init__(
        self,
        best_effort: Any,
        *,
        ranked: Optional[List[Any]] = None,
        floor: float = 0.0,
        top_score: float = 0.0,
        weak_factors: Optional[List[str]] = None,
    ) -> None:
        name = getattr(best_effort, "name", "the closest option")
        super().__init__(
            f"Nothing matched your preferences closely. {name} is the closest option; "
            "you could try relaxing your cuisine or price filters."
        )
        self.best_effort = best_effort
        self.ranked = list(ranked or [])
        self.floor = floor
        self.top_score = top_score
        self.weak_factors = list(weak_factors or [])

    def details(self) -> Dict[str, Any]:
        best = self.best_effort
        return {
            "best_effort": best.model_dump(mode="json") if hasattr(best, "model_dump") else best,
            "floor": self.floor,
            "top_score": round(self.top_score, 4),
            "weak_factors": self.weak_factors,
        }


class SlotUnavailable(PickForMeError):
    code = "SLOT_UNAVAILABLE"

    def __init__(
        self,
        candidate_id: str,
        window: Tuple[int, int],
        *,
        reason: str,
        attempted: Optional[List[Tuple[int, int]]] = None,
    ) -> None:
        super().__init__(
            f"No time slot available for {candidate_id} around {_fmt(window[0])}-{_fmt(window[1])}: {reason}"
        )
        self.candidate_id = candidate_id
        self.window = window
        self.reason = reason
        self.attempted = list(attempted or [])

    def details(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "window": [_fmt(self.window[0]), _fmt(self.window[1])],
            "reason": self.reason,
            "attempted": [[_fmt(s), _fmt(e)] for s, e in self.attempted],
        }


class InvalidModificationError(PickForMeError):
    code = "INVALID_MODIFICATION"

    def __init__(
        self,
        reason: str,
        *,
        day_index: Optional[int] = None,
        item_index: Optional[int] = None,
        alternatives: Optional[List[str]] = None,
    ) -> None:
        super().__init__(reason)
        self.day_index = day_index
        self.item_index = item_index
        self.alternatives = list(alternatives or [])

    def details(self) -> Dict[str, Any]:
        return {
            "day_index": self.day_index,
            "item_index": self.item_index,
            "alternative_times": self.alternatives,
        }


class InvalidRequestError(PickForMeError):
    code = "VALIDATION_ERROR"

    def __init__(self, errors: List[str]) -> None:
        super().__init__("Invalid request: " + "; ".join(errors))
        self.errors = list(errors)

    def details(self) -> Dict[str, Any]:
        return {"errors": self.errors}


def _fmt(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
