"""Time-slot placement within a single day.

Windows are half-open ``(start, end)`` pairs in minutes since midnight. The
same alternative-window policy is used for day planning, itinerary
modifications and booking retries so a failed time always yields the same
kind of suggestions.
"""
from __future__ import annotations

import datetime as dt
from typing import Iterable, List, Optional, Sequence, Tuple

from pickforme.config import EngineSettings
from pickforme.errors import SlotUnavailable
from pickforme.schemas import Candidate, ItemCategory, PlacedItem

Window = Tuple[int, int]
DAY_MINUTES = 1440


def parse_hhmm(value: str) -> int:
    try:
        hours, minutes = value.strip().split(":", 1)
        total = int(hours) * 60 + int(minutes)
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM") from exc
    if not 0 <= total <= DAY_MINUTES or not 0 <= int(minutes) < 60:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    return total


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def overlaps(a: Window, b: Window) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def first_conflict(window: Window, existing: Iterable[PlacedItem]) -> Optional[PlacedItem]:
    for item in existing:
        if overlaps(window, item.window):
            return item
    return None


def is_open(candidate: Candidate, day: dt.date, window: Window) -> bool:
    """True when the venue's hours cover the whole window on ``day``."""
    if candidate.hours is None:
        return True
    start, end = window
    weekday = day.weekday()
    for hours in candidate.hours.get(weekday, []):
        if hours.is_all_day:
            return True
        if hours.is_overnight:
            if hours.open <= start:
                return True
        elif hours.open <= start and end <= hours.close:
            return True
    # Overnight hours from the previous day spill into this morning.
    for hours in candidate.hours.get((weekday - 1) % 7, []):
        if hours.is_overnight and not hours.is_all_day and end <= hours.close:
            return True
    return False


def alternative_windows(
    window: Window,
    *,
    step: int = 30,
    attempts: int = 3,
    bounds: Optional[Window] = None,
) -> List[Window]:
    """Shifted copies of ``window``: +step, -step, +2*step, ... up to ``attempts``."""
    low, high = bounds if bounds is not None else (0, DAY_MINUTES)
    duration = window[1] - window[0]
    found: List[Window] = []
    for k in range(1, attempts + 1):
        for sign in (1, -1):
            start = window[0] + sign * k * step
            shifted = (start, start + duration)
            if shifted[0] < low or shifted[1] > high:
                continue
            found.append(shifted)
            if len(found) >= attempts:
                return found
    return found


class SlotAllocator:
    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or EngineSettings()

    def fallback_windows(self, window: Window, bounds: Optional[Window] = None) -> List[Window]:
        return alternative_windows(
            window,
            step=self.settings.fallback_step_minutes,
            attempts=self.settings.fallback_attempts,
            bounds=bounds,
        )

    def check(
        self,
        candidate: Candidate,
        window: Window,
        existing: Sequence[PlacedItem],
        day: dt.date,
    ) -> Optional[str]:
        """Return why ``window`` cannot host ``candidate``, or None when it can."""
        start, end = window
        if not (0 <= start < end <= DAY_MINUTES):
            return f"window {format_hhmm(start)}-{format_hhmm(end)} is not within a single day"
        if not is_open(candidate, day, window):
            return f"{candidate.name} is closed during {format_hhmm(start)}-{format_hhmm(end)} on {day:%A}"
        clash = first_conflict(window, existing)
        if clash is not None:
            return (
                f"overlaps {clash.candidate.name} "
                f"({format_hhmm(clash.start)}-{format_hhmm(clash.end)})"
            )
        return None

    def place_item(
        self,
        candidate: Candidate,
        desired_window: Window,
        existing_items: Sequence[PlacedItem],
        day: dt.date,
        *,
        category: ItemCategory = "activity",
        label: str = "",
        cost: float = 0.0,
        bounds: Optional[Window] = None,
        allow_fallback: bool = True,
    ) -> PlacedItem:
        reason = self.check(candidate, desired_window, existing_items, day)
        if reason is None:
            return _placed(candidate, desired_window, category, label, cost)

        attempted: List[Window] = [desired_window]
        if allow_fallback:
            for window in self.fallback_windows(desired_window, bounds):
                attempted.append(window)
                if self.check(candidate, window, existing_items, day) is None:
                    return _placed(candidate, window, category, label, cost)
        raise SlotUnavailable(candidate.id, desired_window, reason=reason, attempted=attempted)

    def suggest_times(
        self,
        candidate: Candidate,
        window: Window,
        existing_items: Sequence[PlacedItem],
        day: dt.date,
    ) -> List[str]:
        """Start times from the fallback policy that would actually work."""
        return [
            format_hhmm(w[0])
            for w in self.fallback_windows(window)
            if self.check(candidate, w, existing_items, day) is None
        ]


def _placed(
    candidate: Candidate,
    window: Window,
    category: ItemCategory,
    label: str,
    cost: float,
) -> PlacedItem:
    return PlacedItem(
        candidate=candidate,
        category=category,
        label=label or candidate.name,
        start=window[0],
        end=window[1],
        cost=round(cost, 2),
    )
