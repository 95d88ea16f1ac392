"""Multi-day itinerary generation, balance analysis and copy-on-write edits."""
from __future__ import annotations

import datetime as dt
import logging
import os
import statistics
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from pickforme.config import EngineSettings
from pickforme.decision_engine import DecisionEngine
from pickforme.errors import (
    InvalidModificationError,
    InvalidRequestError,
    PickForMeError,
    SlotUnavailable,
)
from pickforme.planner.day_builder import (
    OVERNIGHT,
    STYLE_PRICE_BAND,
    DayBuilder,
    item_cost,
)
from pickforme.planner.slots import SlotAllocator, format_hhmm, is_open, parse_hhmm
from pickforme.schemas import (
    AddActivity,
    Adjustment,
    BudgetExceededWarning,
    Candidate,
    ChangeLodging,
    ItemCategory,
    ItineraryDay,
    ItineraryError,
    ItineraryRequest,
    ItineraryResponse,
    Modification,
    OptimizationResult,
    PlacedItem,
    PreferenceProfile,
    RemoveActivity,
    ReplaceActivity,
    TravelItinerary,
)
from pickforme.tools.geo import haversine_miles

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("PICKFORME_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

# Share of a day's budget slice a nightly lodging rate may take.
LODGING_SHARE = 0.45
OUTLIER_RATIO = 1.5
DEFAULT_ACTIVITY_MINUTES = 120
# Transfer estimate between consecutive stops: fixed hop plus urban travel pace.
TRANSFER_MINUTES = 15
MINUTES_PER_MILE = 4.0
MAX_DAILY_TRAVEL_MINUTES = 120

_MODIFICATION = TypeAdapter(Modification)


class ItineraryPlanner:
    """Owns every itinerary it returns; callers change plans only through ``modify``."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        engine: Optional[DecisionEngine] = None,
        day_builder: Optional[DayBuilder] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.engine = engine or DecisionEngine(self.settings)
        self.day_builder = day_builder or DayBuilder(self.settings)
        self.allocator: SlotAllocator = self.day_builder.allocator

    # ---------- generation ----------
    def validate(self, request: ItineraryRequest) -> List[str]:
        errors: List[str] = []
        if not request.destination.name.strip():
            errors.append("Valid destination is required")
        if request.end_date < request.start_date:
            errors.append("End date must not be before start date")
        else:
            span = (request.end_date - request.start_date).days + 1
            if span > self.settings.max_trip_days:
                errors.append(
                    f"Itinerary planning is limited to {self.settings.max_trip_days} days (requested {span})"
                )
        if not 1 <= request.group_size <= self.settings.max_group_size:
            errors.append(f"Group size must be between 1 and {self.settings.max_group_size} people")
        if request.budget is not None and request.budget.max < request.budget.min:
            errors.append("Budget maximum must not be below the minimum")
        return errors

    def generate(self, request: ItineraryRequest) -> TravelItinerary:
        errors = self.validate(request)
        if errors:
            raise InvalidRequestError(errors)

        day_count = (request.end_date - request.start_date).days + 1
        total_budget = request.budget.max if request.budget is not None else None
        base_slice = total_budget / day_count if total_budget is not None else None
        profile = _planning_profile(request)
        destination = request.destination

        logger.info(
            "Planning %d-day trip to %s for %d traveller(s) from %s with budget %s",
            day_count,
            destination.name,
            request.group_size,
            request.start_date.isoformat(),
            f"{total_budget:.2f} {request.budget.currency}" if request.budget else "unbounded",
        )

        lodging = self.select_lodging(request, base_slice) if day_count > 1 else None
        remaining = total_budget
        used: set[str] = set()
        days: List[ItineraryDay] = []
        warnings: List[BudgetExceededWarning] = []

        for idx in range(day_count):
            date = request.start_date + dt.timedelta(days=idx)
            planned = self.day_builder.build_day(
                date,
                request.candidates,
                profile,
                remaining,
                budget_slice=base_slice,
                location=destination,
                group_size=request.group_size,
                lodging=lodging,
                overnight=idx < day_count - 1,
                used_ids=used,
            )
            planned.notes = _day_notes(idx, day_count, destination.name, lodging, planned.notes)
            if remaining is not None:
                remaining -= planned.day_cost
            if planned.over_budget and planned.budget_slice is not None:
                warnings.append(
                    BudgetExceededWarning(
                        day_index=idx,
                        date=date,
                        day_cost=planned.day_cost,
                        budget_slice=round(planned.budget_slice, 2),
                    )
                )
            days.append(planned)

        itinerary = TravelItinerary(
            id=_itinerary_id(),
            name=f"{destination.name} {day_count}-Day Trip",
            destination=destination,
            days=days,
            lodging=lodging,
            request=request,
            budget_warnings=warnings,
        )
        logger.info(
            "Generated %s: %d day(s), total %.2f, %d over-budget day(s)",
            itinerary.id,
            len(days),
            itinerary.total_estimated_cost,
            len(warnings),
        )
        return itinerary

    def select_lodging(self, request: ItineraryRequest, base_slice: Optional[float]) -> Optional[Candidate]:
        nights = [
            request.start_date + dt.timedelta(days=i)
            for i in range((request.end_date - request.start_date).days)
        ]
        options = [
            c
            for c in request.candidates
            if c.kind == "lodging" and all(is_open(c, night, OVERNIGHT) for night in nights)
        ]
        if not options:
            logger.info("No lodging candidates available for %s", request.destination.name)
            return None

        ranked = self.engine.rank(options, _lodging_profile(request), request.destination)
        cap = base_slice * LODGING_SHARE if base_slice is not None else None
        for entry in ranked:
            if cap is None or item_cost(entry.candidate, "lodging", request.group_size) <= cap:
                return entry.candidate
        # Nothing fits the share; the cheapest stay keeps the overspend smallest.
        return min(
            (entry.candidate for entry in ranked),
            key=lambda c: item_cost(c, "lodging", request.group_size),
        )

    # ---------- optimization ----------
    def optimize(
        self,
        itinerary: TravelItinerary,
        original_request: Optional[ItineraryRequest] = None,
    ) -> OptimizationResult:
        """Score how evenly the plan is paced; never changes ``itinerary``."""
        request = original_request or itinerary.request
        days = itinerary.days
        costs = [day.day_cost for day in days]
        counts = [float(day.activity_count) for day in days]
        travel = [travel_minutes(day) for day in days]

        cost_cv = _coefficient_of_variation(costs)
        count_cv = _coefficient_of_variation(counts)
        balance = round((1.0 / (1.0 + cost_cv) + 1.0 / (1.0 + count_cv)) / 2.0, 4)

        mean_cost = statistics.fmean(costs) if costs else 0.0
        mean_count = statistics.fmean(counts) if counts else 0.0
        lightest = min(range(len(days)), key=lambda i: (costs[i], counts[i])) if days else 0
        adjustments: List[Adjustment] = []

        for idx, day in enumerate(days):
            if mean_cost > 0 and costs[idx] > OUTLIER_RATIO * mean_cost:
                adjustments.append(
                    Adjustment(
                        day_index=idx,
                        kind="cost",
                        rationale=(
                            f"Day {idx + 1} costs {costs[idx]:.2f}, over {OUTLIER_RATIO}x the daily average "
                            f"of {mean_cost:.2f}; swap an item for a cheaper option or move it to day {lightest + 1}."
                        ),
                    )
                )
            if mean_count > 0 and counts[idx] > OUTLIER_RATIO * mean_count:
                adjustments.append(
                    Adjustment(
                        day_index=idx,
                        kind="activity",
                        rationale=(
                            f"Day {idx + 1} has {int(counts[idx])} activities against an average of "
                            f"{mean_count:.1f}; move one to day {lightest + 1} for a steadier pace."
                        ),
                    )
                )
            if counts[idx] == 0 and len(days) > 1:
                adjustments.append(
                    Adjustment(
                        day_index=idx,
                        kind="pacing",
                        rationale=f"Day {idx + 1} has no activities; add one to make the most of the trip.",
                    )
                )
            if travel[idx] > MAX_DAILY_TRAVEL_MINUTES:
                adjustments.append(
                    Adjustment(
                        day_index=idx,
                        kind="pacing",
                        rationale=(
                            f"Day {idx + 1} needs about {travel[idx]:.0f} minutes of travel between stops; "
                            "group activities by location to reduce travel time."
                        ),
                    )
                )
            if day.over_budget:
                adjustments.append(
                    Adjustment(
                        day_index=idx,
                        kind="budget",
                        rationale=(
                            f"Day {idx + 1} is over its {day.budget_slice or 0:.2f} budget slice; "
                            "replace a paid activity with a free one."
                        ),
                    )
                )

        metrics: Dict[str, float] = {
            "total_cost": itinerary.total_estimated_cost,
            "mean_day_cost": round(mean_cost, 2),
            "cost_cv": round(cost_cv, 4),
            "mean_activities": round(mean_count, 2),
            "activity_cv": round(count_cv, 4),
            "total_travel_minutes": round(sum(travel), 1),
            "max_day_travel_minutes": round(max(travel, default=0.0), 1),
        }
        if request is not None and request.budget is not None and request.budget.max > 0:
            metrics["budget_utilization"] = round(itinerary.total_estimated_cost / request.budget.max, 4)

        logger.info(
            "Balance for %s is %.3f with %d suggested adjustment(s)",
            itinerary.id,
            balance,
            len(adjustments),
        )
        return OptimizationResult(balance_score=balance, adjustments=adjustments, metrics=metrics)

    # ---------- modification ----------
    def modify(
        self,
        itinerary: TravelItinerary,
        modification: Union[AddActivity, RemoveActivity, ReplaceActivity, ChangeLodging, Mapping[str, Any]],
    ) -> TravelItinerary:
        """Return an edited copy; the input itinerary is never mutated."""
        if isinstance(modification, Mapping):
            try:
                modification = _MODIFICATION.validate_python(dict(modification))
            except ValidationError as exc:
                raise InvalidModificationError(f"Malformed modification: {exc.errors()[0]['msg']}") from exc

        working = itinerary.model_copy(deep=True)
        if isinstance(modification, AddActivity):
            self._add_activity(working, modification)
        elif isinstance(modification, RemoveActivity):
            self._remove_activity(working, modification)
        elif isinstance(modification, ReplaceActivity):
            self._replace_activity(working, modification)
        elif isinstance(modification, ChangeLodging):
            self._change_lodging(working, modification)
        else:
            raise InvalidModificationError(f"Unsupported modification {type(modification).__name__}")

        _refresh_budget(working)
        logger.info("Applied %s to %s", modification.kind, itinerary.id)
        return working

    def _add_activity(self, itinerary: TravelItinerary, mod: AddActivity) -> None:
        day = _day_at(itinerary, mod.day)
        item = mod.item
        if item.kind == "lodging":
            raise InvalidModificationError(
                "Lodging cannot be added as an activity; use change_lodging instead.", day_index=mod.day
            )
        try:
            start = parse_hhmm(mod.time)
        except ValueError as exc:
            raise InvalidModificationError(str(exc), day_index=mod.day) from exc
        duration = mod.duration_minutes or item.duration_minutes or DEFAULT_ACTIVITY_MINUTES
        window = (start, start + duration)
        if window[1] > 1440:
            raise InvalidModificationError(
                f"{item.name} at {mod.time} for {duration} minutes runs past midnight.", day_index=mod.day
            )

        reason = self.allocator.check(item, window, day.items, day.date)
        if reason is not None:
            raise InvalidModificationError(
                f"Cannot add {item.name} at {mod.time} on day {mod.day + 1}: {reason}.",
                day_index=mod.day,
                alternatives=self.allocator.suggest_times(item, window, day.items, day.date),
            )

        category = _category_for(item)
        day.items.append(
            PlacedItem(
                candidate=item,
                category=category,
                label=item.name,
                start=window[0],
                end=window[1],
                cost=item_cost(item, category, itinerary.request.group_size),
            )
        )
        day.items.sort(key=lambda i: (i.start, i.end))

    def _remove_activity(self, itinerary: TravelItinerary, mod: RemoveActivity) -> None:
        day = _day_at(itinerary, mod.day)
        target = _item_at(day, mod.day, mod.activity_index)
        if target.category == "lodging":
            raise InvalidModificationError(
                "Lodging stays are changed with change_lodging, not removed.",
                day_index=mod.day,
                item_index=mod.activity_index,
            )
        day.items.pop(mod.activity_index)

    def _replace_activity(self, itinerary: TravelItinerary, mod: ReplaceActivity) -> None:
        day = _day_at(itinerary, mod.day)
        old = _item_at(day, mod.day, mod.activity_index)
        new = mod.new_item
        if old.category == "lodging" or new.kind == "lodging":
            raise InvalidModificationError(
                "Lodging is swapped with change_lodging, not replace_activity.",
                day_index=mod.day,
                item_index=mod.activity_index,
            )
        others = [item for i, item in enumerate(day.items) if i != mod.activity_index]
        reason = self.allocator.check(new, old.window, others, day.date)
        if reason is not None:
            raise InvalidModificationError(
                f"Cannot replace {old.candidate.name} with {new.name} at {format_hhmm(old.start)}: {reason}.",
                day_index=mod.day,
                item_index=mod.activity_index,
                alternatives=self.allocator.suggest_times(new, old.window, others, day.date),
            )
        category = old.category if old.category == "meal" and new.kind == "restaurant" else _category_for(new)
        day.items[mod.activity_index] = PlacedItem(
            candidate=new,
            category=category,
            label=old.label if category == old.category else new.name,
            start=old.start,
            end=old.end,
            cost=item_cost(new, category, itinerary.request.group_size),
        )

    def _change_lodging(self, itinerary: TravelItinerary, mod: ChangeLodging) -> None:
        new = mod.new_lodging
        if new.kind != "lodging":
            raise InvalidModificationError(f"{new.name} is not a lodging venue.")
        group = itinerary.request.group_size
        cost = item_cost(new, "lodging", group)
        last = len(itinerary.days) - 1
        for idx, day in enumerate(itinerary.days):
            placed = False
            for pos, item in enumerate(day.items):
                if item.category != "lodging":
                    continue
                if not is_open(new, day.date, item.window):
                    raise InvalidModificationError(
                        f"{new.name} cannot host the night of {day.date.isoformat()}.", day_index=idx
                    )
                day.items[pos] = PlacedItem(
                    candidate=new,
                    category="lodging",
                    label=f"Overnight at {new.name}",
                    start=item.start,
                    end=item.end,
                    cost=cost,
                )
                placed = True
            if placed or idx == last:
                continue
            # Night that never got a stay (no lodging at generation time).
            try:
                night = self.allocator.place_item(
                    new,
                    OVERNIGHT,
                    day.items,
                    day.date,
                    category="lodging",
                    label=f"Overnight at {new.name}",
                    cost=cost,
                    allow_fallback=False,
                )
            except SlotUnavailable as exc:
                raise InvalidModificationError(
                    f"{new.name} cannot host the night of {day.date.isoformat()}: {exc.reason}.",
                    day_index=idx,
                ) from exc
            day.items.append(night)
            day.items.sort(key=lambda i: (i.start, i.end))
        itinerary.lodging = new


def generate_itinerary(
    request: ItineraryRequest,
    planner: Optional[ItineraryPlanner] = None,
) -> ItineraryResponse:
    """Result-style wrapper around :meth:`ItineraryPlanner.generate`."""
    planner = planner or ItineraryPlanner()
    try:
        itinerary = planner.generate(request)
    except InvalidRequestError as exc:
        return ItineraryResponse(
            success=False,
            error=ItineraryError(code=exc.code, message=exc.message, details=exc.errors),
        )
    except PickForMeError as exc:
        return ItineraryResponse(success=False, error=ItineraryError(code=exc.code, message=exc.message))
    return ItineraryResponse(success=True, itinerary=itinerary)


def _planning_profile(request: ItineraryRequest) -> PreferenceProfile:
    update: Dict[str, Any] = {"party_size": request.group_size}
    if request.budget is not None and request.preferences.budget is None:
        update["budget"] = request.budget
    return request.preferences.model_copy(update=update)


def _lodging_profile(request: ItineraryRequest) -> PreferenceProfile:
    prefs = request.preferences
    band = prefs.price_band or STYLE_PRICE_BAND.get(prefs.travel_style or "")
    return prefs.model_copy(update={"price_band": band, "cuisines": []})


def _day_notes(idx: int, day_count: int, city: str, lodging: Optional[Candidate], extra: str) -> str:
    parts = [f"Day {idx + 1} in {city}."]
    if lodging is not None and idx == 0:
        parts.append(f"Check in at {lodging.name}.")
    if lodging is not None and idx == day_count - 1:
        parts.append(f"Check out of {lodging.name}.")
    if extra:
        parts.append(extra)
    return " ".join(parts)


def _day_at(itinerary: TravelItinerary, index: int) -> ItineraryDay:
    if not 0 <= index < len(itinerary.days):
        raise InvalidModificationError(
            f"Day {index} does not exist; the itinerary has {len(itinerary.days)} day(s).",
            day_index=index,
        )
    return itinerary.days[index]


def _item_at(day: ItineraryDay, day_index: int, index: int) -> PlacedItem:
    if not 0 <= index < len(day.items):
        raise InvalidModificationError(
            f"Item {index} does not exist on day {day_index + 1}; it has {len(day.items)} item(s).",
            day_index=day_index,
            item_index=index,
        )
    return day.items[index]


def _category_for(candidate: Candidate) -> ItemCategory:
    if candidate.kind == "restaurant":
        return "meal"
    if candidate.kind == "transport":
        return "transport"
    if candidate.kind == "lodging":
        return "lodging"
    return "activity"


def _refresh_budget(itinerary: TravelItinerary) -> None:
    warnings: List[BudgetExceededWarning] = []
    for idx, day in enumerate(itinerary.days):
        day.over_budget = day.budget_slice is not None and day.day_cost > day.budget_slice + 1e-9
        if day.over_budget:
            warnings.append(
                BudgetExceededWarning(
                    day_index=idx,
                    date=day.date,
                    day_cost=day.day_cost,
                    budget_slice=round(day.budget_slice or 0.0, 2),
                )
            )
    itinerary.budget_warnings = warnings


def travel_minutes(day: ItineraryDay) -> float:
    """Estimated transfer time between the day's consecutive stops."""
    stops = sorted(day.items, key=lambda i: (i.start, i.end))
    total = 0.0
    for prev, nxt in zip(stops, stops[1:]):
        miles = haversine_miles(prev.candidate.coordinates, nxt.candidate.coordinates)
        total += TRANSFER_MINUTES + miles * MINUTES_PER_MILE
    return total


def _coefficient_of_variation(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = statistics.fmean(values)
    if mean <= 0:
        return 0.0
    return statistics.pstdev(values) / mean


def _itinerary_id() -> str:
    return f"ITIN_{int(time.time() * 1000)}_{uuid4().hex[:6]}".upper()
