"""Runtime settings for the decision engine and itinerary planner."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class EngineSettings:
    """Hand-tuned defaults; override through ``PICKFORME_*`` variables."""

    viability_floor: float = 0.35
    alternatives_count: int = 2
    distance_cutoff_miles: float = 10.0
    tie_epsilon: float = 1e-6
    fallback_step_minutes: int = 30
    fallback_attempts: int = 3
    max_trip_days: int = 14
    max_group_size: int = 20
    booking_endpoint: Optional[str] = None
    booking_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            viability_floor=_env_float("PICKFORME_VIABILITY_FLOOR", cls.viability_floor),
            alternatives_count=_env_int("PICKFORME_ALTERNATIVES", cls.alternatives_count),
            distance_cutoff_miles=_env_float("PICKFORME_DISTANCE_CUTOFF_MILES", cls.distance_cutoff_miles),
            tie_epsilon=_env_float("PICKFORME_TIE_EPSILON", cls.tie_epsilon),
            fallback_step_minutes=_env_int("PICKFORME_FALLBACK_STEP_MINUTES", cls.fallback_step_minutes),
            fallback_attempts=_env_int("PICKFORME_FALLBACK_ATTEMPTS", cls.fallback_attempts),
            max_trip_days=_env_int("PICKFORME_MAX_TRIP_DAYS", cls.max_trip_days),
            max_group_size=_env_int("PICKFORME_MAX_GROUP_SIZE", cls.max_group_size),
            booking_endpoint=os.getenv("PICKFORME_BOOKING_ENDPOINT") or None,
            booking_timeout=_env_float("PICKFORME_BOOKING_TIMEOUT", cls.booking_timeout),
        )
