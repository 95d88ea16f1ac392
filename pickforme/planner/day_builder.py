"""Compose a single itinerary day from a candidate pool."""
from __future__ import annotations

import datetime as dt
import logging
import math
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pickforme.config import EngineSettings
from pickforme.errors import SlotUnavailable
from pickforme.planner.slots import SlotAllocator, Window, format_hhmm
from pickforme.schemas import (
    Candidate,
    Coordinates,
    ItemCategory,
    ItineraryDay,
    PlacedItem,
    PreferenceProfile,
    RankedCandidate,
    VenueKind,
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


@dataclass(frozen=True)
class SlotSpec:
    label: str
    category: ItemCategory
    kinds: Tuple[VenueKind, ...]
    canonical: Window
    preferred: Window


BREAKFAST = SlotSpec("breakfast", "meal", ("restaurant",), (420, 600), (480, 540))
LUNCH = SlotSpec("lunch", "meal", ("restaurant",), (690, 840), (720, 810))
DINNER = SlotSpec("dinner", "meal", ("restaurant",), (1080, 1260), (1140, 1230))

_ACTIVITY_KINDS: Tuple[VenueKind, ...] = ("attraction", "entertainment")
ACTIVITY_SLOTS: Tuple[SlotSpec, ...] = (
    SlotSpec("morning activity", "activity", _ACTIVITY_KINDS, (540, 1080), (570, 690)),
    SlotSpec("afternoon activity", "activity", _ACTIVITY_KINDS, (540, 1080), (840, 960)),
    SlotSpec("late afternoon activity", "activity", _ACTIVITY_KINDS, (540, 1080), (975, 1080)),
)

OVERNIGHT: Window = (1320, 1440)

ACTIVITY_SLOTS_BY_STYLE: Dict[str, int] = {
    "budget": 2,
    "mid-range": 2,
    "luxury": 1,
    "adventure": 3,
    "cultural": 3,
}

STYLE_PRICE_BAND: Dict[str, str] = {
    "budget": "$",
    "mid-range": "$$",
    "luxury": "$$$",
}

# Per-person estimates when a venue carries no explicit cost.
MEAL_PRICE = {"free": 0.0, "$": 15.0, "$$": 30.0, "$$$": 60.0, "$$$$": 100.0, "N/A": 30.0}
ACTIVITY_PRICE = {"free": 0.0, "$": 10.0, "$$": 25.0, "$$$": 50.0, "$$$$": 90.0, "N/A": 20.0}
# Per room per night; two guests share a room.
LODGING_PRICE = {"free": 0.0, "$": 90.0, "$$": 160.0, "$$$": 260.0, "$$$$": 400.0, "N/A": 160.0}


def rooms_for(group_size: int) -> int:
    return max(1, math.ceil(group_size / 2))


def item_cost(candidate: Candidate, category: ItemCategory, group_size: int) -> float:
    if category == "lodging":
        nightly = candidate.estimated_cost
        if nightly is None:
            nightly = LODGING_PRICE.get(candidate.price, LODGING_PRICE["N/A"])
        return round(nightly * rooms_for(group_size), 2)
    table = MEAL_PRICE if category == "meal" else ACTIVITY_PRICE
    per_person = candidate.estimated_cost
    if per_person is None:
        per_person = table.get(candidate.price, table["N/A"])
    return round(per_person * group_size, 2)


def activity_slot_count(profile: PreferenceProfile) -> int:
    if profile.travel_style is None:
        return 2
    return ACTIVITY_SLOTS_BY_STYLE.get(profile.travel_style, 2)


def slots_for(profile: PreferenceProfile) -> List[SlotSpec]:
    """Meal cadence plus 1-3 activity slots, in chronological order."""
    chosen = list(ACTIVITY_SLOTS[: activity_slot_count(profile)])
    return sorted([BREAKFAST, LUNCH, DINNER, *chosen], key=lambda s: s.preferred[0])


def scoring_profile(profile: PreferenceProfile, slot: SlotSpec) -> PreferenceProfile:
    update = {}
    if profile.price_band is None and profile.travel_style in STYLE_PRICE_BAND:
        update["price_band"] = STYLE_PRICE_BAND[profile.travel_style]
    if slot.category == "activity":
        update["cuisines"] = list(profile.interests)
    return profile.model_copy(update=update) if update else profile


@dataclass
class _Option:
    ranked: RankedCandidate
    item: PlacedItem
    reused: bool


class DayBuilder:
    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        allocator: Optional[SlotAllocator] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.allocator = allocator or SlotAllocator(self.settings)

    def build_day(
        self,
        day: dt.date,
        pool: Sequence[Candidate],
        profile: PreferenceProfile,
        remaining_budget: Optional[float],
        *,
        budget_slice: Optional[float] = None,
        location: Optional[Coordinates] = None,
        group_size: Optional[int] = None,
        lodging: Optional[Candidate] = None,
        overnight: bool = False,
        used_ids: Optional[Set[str]] = None,
    ) -> ItineraryDay:
        """Plan one day; ``remaining_budget`` of None means no budget was given."""
        group = group_size or profile.party_size
        used = used_ids if used_ids is not None else set()
        day_budget = _day_budget(remaining_budget, budget_slice)

        items: List[PlacedItem] = []
        notes: List[str] = []
        if overnight and lodging is not None:
            try:
                items.append(
                    self.allocator.place_item(
                        lodging,
                        OVERNIGHT,
                        items,
                        day,
                        category="lodging",
                        label=f"Overnight at {lodging.name}",
                        cost=item_cost(lodging, "lodging", group),
                        allow_fallback=False,
                    )
                )
            except SlotUnavailable as exc:
                notes.append(f"Lodging unavailable tonight: {exc.reason}.")

        slots = slots_for(profile)
        cheapest = [self._cheapest_cost(slot, pool, day, group) for slot in slots]

        for idx, slot in enumerate(slots):
            options = self._options(slot, pool, profile, location, day, group, items, used)
            if not options:
                notes.append(f"No open venue for {slot.label}.")
                logger.debug("No eligible candidate for %s on %s", slot.label, day.isoformat())
                continue

            spent = sum(i.cost for i in items)
            reserve = sum(c for c in cheapest[idx + 1 :] if c is not None)
            room = None if day_budget is None else day_budget - spent - reserve
            affordable = [o for o in options if room is None or o.item.cost <= room + 1e-9]
            if affordable:
                choice = affordable[0]
            else:
                choice = min(options, key=lambda o: (o.item.cost, o.reused))
                notes.append(f"Picked the cheapest open option for {slot.label} to limit overspend.")
            items.append(choice.item)
            used.add(choice.item.candidate.id)
            logger.debug(
                "%s %s: %s at %s (%.2f)",
                day.isoformat(),
                slot.label,
                choice.item.candidate.name,
                format_hhmm(choice.item.start),
                choice.item.cost,
            )

        items.sort(key=lambda i: (i.start, i.end))
        planned = ItineraryDay(date=day, items=items, budget_slice=day_budget, notes=" ".join(notes))
        planned.over_budget = day_budget is not None and planned.day_cost > day_budget + 1e-9
        if planned.over_budget:
            logger.warning(
                "Day %s costs %.2f against a %.2f slice",
                day.isoformat(),
                planned.day_cost,
                day_budget,
            )
        return planned

    def _options(
        self,
        slot: SlotSpec,
        pool: Sequence[Candidate],
        profile: PreferenceProfile,
        location: Optional[Coordinates],
        day: dt.date,
        group: int,
        items: List[PlacedItem],
        used: Set[str],
    ) -> List[_Option]:
        taken = {i.candidate.id for i in items}
        eligible = [c for c in pool if c.kind in slot.kinds and c.id not in taken]
        ranked = rank_candidates(
            eligible,
            scoring_profile(profile, slot),
            location,
            cutoff_miles=self.settings.distance_cutoff_miles,
            epsilon=self.settings.tie_epsilon,
        )
        options: List[_Option] = []
        for entry in ranked:
            candidate = entry.candidate
            try:
                item = self.allocator.place_item(
                    candidate,
                    slot.preferred,
                    items,
                    day,
                    category=slot.category,
                    label=slot.label,
                    cost=item_cost(candidate, slot.category, group),
                    bounds=slot.canonical,
                )
            except SlotUnavailable:
                continue
            options.append(_Option(ranked=entry, item=item, reused=candidate.id in used))
        # Fresh venues first; ranking order is kept inside each group.
        options.sort(key=lambda o: o.reused)
        return options

    def _cheapest_cost(
        self,
        slot: SlotSpec,
        pool: Iterable[Candidate],
        day: dt.date,
        group: int,
    ) -> Optional[float]:
        costs = [
            item_cost(c, slot.category, group)
            for c in pool
            if c.kind in slot.kinds and self._fits_slot(c, slot, day)
        ]
        return min(costs) if costs else None

    def _fits_slot(self, candidate: Candidate, slot: SlotSpec, day: dt.date) -> bool:
        windows = [slot.preferred, *self.allocator.fallback_windows(slot.preferred, slot.canonical)]
        return any(self.allocator.check(candidate, w, [], day) is None for w in windows)


def _day_budget(remaining: Optional[float], budget_slice: Optional[float]) -> Optional[float]:
    if remaining is None:
        return budget_slice
    if budget_slice is None:
        return max(0.0, remaining)
    return max(0.0, min(budget_slice, remaining))
