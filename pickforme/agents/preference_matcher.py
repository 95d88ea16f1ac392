"""Rule-based preference extraction from conversation messages.

Rules are an ordered list of ``(pattern, field, value)`` entries. List fields
(cuisines, dietary restrictions, interests) collect every matching rule;
scalar fields take the first matching rule within a message, and later user
messages override earlier ones. Extend the behaviour by adding rules, not by
touching the scoring code.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pickforme.schemas import ConversationContext, PreferenceProfile

_LIST_FIELDS = {"cuisines", "dietary_restrictions", "interests"}


@dataclass(frozen=True)
class PreferenceRule:
    pattern: str
    field: str
    value: Optional[Any] = None  # None: take the first capture group

    def match(self, text: str) -> Optional[Any]:
        m = re.search(self.pattern, text)
        if not m:
            return None
        if self.value is not None:
            return self.value
        return m.group(1)


def _keywords(words: Iterable[str]) -> str:
    return r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b"


_CUISINE_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("italian", ("italian", "pasta", "pizza", "risotto")),
    ("chinese", ("chinese", "dim sum", "noodles", "stir fry")),
    ("mexican", ("mexican", "tacos", "burrito", "salsa")),
    ("japanese", ("japanese", "sushi", "ramen", "tempura")),
    ("indian", ("indian", "curry", "tandoor", "biryani")),
    ("thai", ("thai", "pad thai", "tom yum", "green curry")),
    ("french", ("french", "bistro", "croissant", "baguette")),
    ("american", ("american", "burger", "bbq", "steak")),
    ("greek", ("greek", "gyro", "souvlaki")),
)

_DIETARY = ("vegetarian", "vegan", "gluten-free", "dairy-free", "kosher", "halal")

PREFERENCE_RULES: List[PreferenceRule] = [
    *(PreferenceRule(_keywords(words), "cuisines", cuisine) for cuisine, words in _CUISINE_KEYWORDS),
    PreferenceRule(_keywords(("cheap", "budget", "affordable")), "price_band", "$"),
    PreferenceRule(_keywords(("expensive", "fancy", "upscale", "splurge")), "price_band", "$$$"),
    PreferenceRule(_keywords(("moderate", "mid-range", "reasonably priced")), "price_band", "$$"),
    *(PreferenceRule(_keywords((tag,)), "dietary_restrictions", tag) for tag in _DIETARY),
    PreferenceRule(_keywords(("romantic", "date night")), "atmosphere", "romantic"),
    PreferenceRule(_keywords(("casual", "laid-back")), "atmosphere", "casual"),
    PreferenceRule(_keywords(("family", "kids", "kid-friendly")), "atmosphere", "family"),
    PreferenceRule(_keywords(("business", "client")), "atmosphere", "business"),
    PreferenceRule(_keywords(("upscale", "fancy")), "atmosphere", "upscale"),
    PreferenceRule(r"\b(\d{1,2})\s*(?:people|persons|person|pax|guests)\b", "party_size"),
    PreferenceRule(r"\bparty of (\d{1,2})\b", "party_size"),
    PreferenceRule(_keywords(("museum", "museums")), "interests", "museums"),
    PreferenceRule(_keywords(("hiking", "hike", "outdoors")), "interests", "outdoors"),
    PreferenceRule(_keywords(("nightlife", "bars", "clubs")), "interests", "nightlife"),
    PreferenceRule(_keywords(("shopping", "markets")), "interests", "shopping"),
    PreferenceRule(_keywords(("history", "historic")), "interests", "history"),
    PreferenceRule(_keywords(("backpacking", "shoestring")), "travel_style", "budget"),
    PreferenceRule(_keywords(("luxury", "five-star", "5-star")), "travel_style", "luxury"),
    PreferenceRule(_keywords(("adventure", "adventurous")), "travel_style", "adventure"),
    PreferenceRule(_keywords(("culture", "cultural")), "travel_style", "cultural"),
]


def match_message(text: str, rules: Iterable[PreferenceRule] = PREFERENCE_RULES) -> Dict[str, Any]:
    """Apply ``rules`` to one message and return the fields it sets."""
    lowered = text.lower()
    found: Dict[str, Any] = {}
    for rule in rules:
        value = rule.match(lowered)
        if value is None:
            continue
        if rule.field in _LIST_FIELDS:
            bucket = found.setdefault(rule.field, [])
            if value not in bucket:
                bucket.append(value)
        elif rule.field not in found:
            found[rule.field] = value
    if "party_size" in found:
        size = int(found["party_size"])
        if 1 <= size <= 20:
            found["party_size"] = size
        else:
            found.pop("party_size")
    return found


def extract_preferences(
    messages: Iterable[Mapping[str, Any]],
    rules: Iterable[PreferenceRule] = PREFERENCE_RULES,
) -> Dict[str, Any]:
    """Collect preference fields from the user turns of a conversation."""
    rules = list(rules)
    collected: Dict[str, Any] = {}
    for message in messages:
        if message.get("role", "user") != "user":
            continue
        for field, value in match_message(str(message.get("content", "")), rules).items():
            if field in _LIST_FIELDS:
                bucket = collected.setdefault(field, [])
                bucket.extend(v for v in value if v not in bucket)
            else:
                collected[field] = value
    return collected


def update_profile(
    profile: PreferenceProfile,
    messages: Iterable[Mapping[str, Any]],
) -> PreferenceProfile:
    return profile.merge(extract_preferences(messages))


def build_context(
    history: List[Mapping[str, Any]],
    current_message: str,
    *,
    stage: str = "gathering_preferences",
    prior_recommendations: Optional[List[str]] = None,
) -> ConversationContext:
    """Summarise the conversation so the engine knows which fields were stated."""
    turns = list(history) + [{"role": "user", "content": current_message}]
    extracted = extract_preferences(turns)
    explicit = sorted(extracted)
    return ConversationContext(
        stage=stage,
        last_user_query=current_message,
        explicit_fields=explicit,
        prior_recommendations=list(prior_recommendations or []),
    )
