from __future__ import annotations

import datetime as dt
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

PriceBand = Literal["free", "$", "$$", "$$$", "$$$$", "N/A"]
VenueKind = Literal["restaurant", "attraction", "entertainment", "lodging", "transport"]
ItemCategory = Literal["meal", "activity", "lodging", "transport"]
TravelStyle = Literal["budget", "mid-range", "luxury", "adventure", "cultural"]
ConversationStage = Literal[
    "initial",
    "gathering_preferences",
    "location_detection",
    "searching",
    "decision_made",
    "booking",
    "completed",
    "travel_planning",
    "itinerary_building",
    "multi_category_search",
]

# Ordinal positions used for price matching; "N/A" has no position.
PRICE_LEVELS: Dict[str, int] = {"free": 0, "$": 1, "$$": 2, "$$$": 3, "$$$$": 4}

FACTOR_WEIGHTS: Dict[str, float] = {
    "rating": 0.30,
    "price_match": 0.25,
    "distance": 0.20,
    "category_match": 0.15,
    "popularity": 0.10,
}


def _normalize_tags(values: List[str]) -> List[str]:
    return sorted({str(v).strip().lower() for v in values if str(v).strip()})


# ------- Venue models -------
class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class Location(Coordinates):
    address: str = ""
    city: str = ""


class HoursWindow(BaseModel):
    """Opening window in minutes since midnight; ``close < open`` runs past midnight."""

    open: int = Field(..., ge=0, le=1440)
    close: int = Field(..., ge=0, le=1440)

    @property
    def is_overnight(self) -> bool:
        return self.close < self.open

    @property
    def is_all_day(self) -> bool:
        return self.open == self.close or (self.open == 0 and self.close == 1440)


class Candidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    rating: float = Field(0.0, ge=0.0, le=5.0)
    review_count: int = Field(0, ge=0)
    price: PriceBand = "N/A"
    categories: List[str] = Field(default_factory=list)
    coordinates: Coordinates
    hours: Optional[Dict[int, List[HoursWindow]]] = None  # weekday 0=Monday; None = always open
    transactions: List[str] = Field(default_factory=list)
    kind: VenueKind = "restaurant"
    estimated_cost: Optional[float] = Field(None, ge=0.0)  # per person, per night for lodging
    duration_minutes: Optional[int] = Field(None, gt=0)

    @field_validator("categories")
    @classmethod
    def _lower_categories(cls, value: List[str]) -> List[str]:
        return [str(v).strip().lower() for v in value if str(v).strip()]

    @field_validator("hours")
    @classmethod
    def _check_weekdays(cls, value: Optional[Dict[int, List[HoursWindow]]]):
        if value is not None and any(day < 0 or day > 6 for day in value):
            raise ValueError("weekday keys must be between 0 (Monday) and 6 (Sunday)")
        return value

    @property
    def supports_reservation(self) -> bool:
        return any(t in {"reservation", "restaurant_reservation", "hotel_reservation"} for t in self.transactions)


# ------- Preference models -------
class BudgetRange(BaseModel):
    min: float = Field(0.0, ge=0.0)
    max: float = Field(..., ge=0.0)
    currency: str = "USD"


class PreferenceProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cuisines: List[str] = Field(default_factory=list)
    price_band: Optional[PriceBand] = None
    atmosphere: Optional[str] = None
    party_size: int = Field(2, ge=1, le=20)
    dietary_restrictions: List[str] = Field(default_factory=list)
    travel_style: Optional[TravelStyle] = None
    interests: List[str] = Field(default_factory=list)
    budget: Optional[BudgetRange] = None

    @field_validator("cuisines", "dietary_restrictions", "interests")
    @classmethod
    def _as_tag_set(cls, value: List[str]) -> List[str]:
        return _normalize_tags(value)

    def merge(self, update: "PreferenceProfile | Dict[str, object]") -> "PreferenceProfile":
        """Return a new profile; empty values in ``update`` never clear what is already set."""
        if isinstance(update, PreferenceProfile):
            incoming = update.model_dump(exclude_unset=True)
        else:
            incoming = dict(update)
        merged = self.model_dump()
        for key, value in incoming.items():
            if key not in merged or value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                if not value:
                    continue
                if key == "dietary_restrictions":
                    value = list(merged[key]) + list(value)
            elif isinstance(value, str) and not value.strip():
                continue
            merged[key] = value
        return PreferenceProfile.model_validate(merged)


class ConversationContext(BaseModel):
    stage: ConversationStage = "initial"
    last_user_query: str = ""
    # Profile fields the user actually stated; None means "trust the profile as given".
    explicit_fields: Optional[List[str]] = None
    prior_recommendations: List[str] = Field(default_factory=list)


# ------- Decision models -------
class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_id: str
    rating: float
    price_match: float
    distance: float
    category_match: float
    popularity: float
    weights: Dict[str, float] = Field(default_factory=lambda: dict(FACTOR_WEIGHTS))
    total: float
    distance_miles: Optional[float] = None

    def factor_scores(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_WEIGHTS}

    def contributions(self) -> Dict[str, float]:
        return {name: score * self.weights[name] for name, score in self.factor_scores().items()}

    @property
    def preference_fit(self) -> float:
        price_w = self.weights["price_match"]
        cat_w = self.weights["category_match"]
        return (self.price_match * price_w + self.category_match * cat_w) / (price_w + cat_w)


class RankedCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: Candidate
    breakdown: ScoreBreakdown


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected: Candidate
    alternatives: List[Candidate] = Field(default_factory=list)
    reasoning: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    breakdown: ScoreBreakdown


class DecisionRequest(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)
    preferences: PreferenceProfile = Field(default_factory=PreferenceProfile)
    location: Optional[Location] = None
    context: Optional[ConversationContext] = None


# ------- Itinerary models -------
class PlacedItem(BaseModel):
    candidate: Candidate
    category: ItemCategory
    label: str = ""
    start: int = Field(..., ge=0, le=1440)
    end: int = Field(..., ge=0, le=1440)
    cost: float = Field(0.0, ge=0.0)

    @property
    def window(self) -> tuple[int, int]:
        return (self.start, self.end)


class ItineraryDay(BaseModel):
    date: dt.date
    items: List[PlacedItem] = Field(default_factory=list)
    budget_slice: Optional[float] = None
    over_budget: bool = False
    notes: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def day_cost(self) -> float:
        return round(sum(item.cost for item in self.items), 2)

    @property
    def activity_count(self) -> int:
        return sum(1 for item in self.items if item.category == "activity")


class Destination(Coordinates):
    name: str


class ItineraryRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    destination: Destination
    start_date: dt.date
    end_date: dt.date
    group_size: int = 2  # range-checked by the planner so callers get a typed error
    budget: Optional[BudgetRange] = None
    preferences: PreferenceProfile = Field(default_factory=PreferenceProfile)
    candidates: List[Candidate] = Field(default_factory=list)


class BudgetExceededWarning(BaseModel):
    """Non-fatal: the day was still planned but costs more than its slice."""

    day_index: int
    date: dt.date
    day_cost: float
    budget_slice: float

    @property
    def overage(self) -> float:
        return round(self.day_cost - self.budget_slice, 2)


class TravelItinerary(BaseModel):
    id: str
    name: str
    destination: Destination
    days: List[ItineraryDay] = Field(default_factory=list)
    lodging: Optional[Candidate] = None
    request: ItineraryRequest
    budget_warnings: List[BudgetExceededWarning] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_estimated_cost(self) -> float:
        return round(sum(day.day_cost for day in self.days), 2)


class ItineraryError(BaseModel):
    code: str
    message: str
    details: List[str] = Field(default_factory=list)


class ItineraryResponse(BaseModel):
    success: bool
    itinerary: Optional[TravelItinerary] = None
    error: Optional[ItineraryError] = None


class Adjustment(BaseModel):
    day_index: int
    kind: Literal["cost", "activity", "pacing", "budget"]
    rationale: str


class OptimizationResult(BaseModel):
    balance_score: float = Field(..., ge=0.0, le=1.0)
    adjustments: List[Adjustment] = Field(default_factory=list)
    metrics: Dict[str, float] = Field(default_factory=dict)


# ------- Modification models -------
class AddActivity(BaseModel):
    kind: Literal["add_activity"] = "add_activity"
    day: int
    item: Candidate
    time: str  # "HH:MM"
    duration_minutes: Optional[int] = Field(None, gt=0)


class RemoveActivity(BaseModel):
    kind: Literal["remove_activity"] = "remove_activity"
    day: int
    activity_index: int


class ReplaceActivity(BaseModel):
    kind: Literal["replace_activity"] = "replace_activity"
    day: int
    activity_index: int
    new_item: Candidate


class ChangeLodging(BaseModel):
    kind: Literal["change_lodging"] = "change_lodging"
    new_lodging: Candidate


Modification = Annotated[
    Union[AddActivity, RemoveActivity, ReplaceActivity, ChangeLodging],
    Field(discriminator="kind"),
]


class ModifyRequest(BaseModel):
    itinerary: TravelItinerary
    modification: Modification


class OptimizeRequest(BaseModel):
    itinerary: TravelItinerary
    request: Optional[ItineraryRequest] = None


# ------- Conversation models -------
class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str = ""


class PreferenceExtractionRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    profile: PreferenceProfile = Field(default_factory=PreferenceProfile)
    stage: ConversationStage = "gathering_preferences"
