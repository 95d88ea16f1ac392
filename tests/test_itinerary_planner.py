import datetime as dt

import pytest

from pickforme.errors import InvalidModificationError, InvalidRequestError
from pickforme.planner.itinerary_planner import ItineraryPlanner, generate_itinerary, travel_minutes
from pickforme.planner.slots import overlaps
from pickforme.schemas import (
    AddActivity,
    Candidate,
    ChangeLodging,
    ItineraryDay,
    ItineraryRequest,
    PlacedItem,
    RemoveActivity,
    ReplaceActivity,
    TravelItinerary,
)

START = dt.date(2026, 3, 2)


def _venue(id: str, kind: str = "restaurant", rating: float = 4.0, price: str = "$", **extra) -> Candidate:
    data = {
        "id": id,
        "name": id.replace("-", " ").title(),
        "rating": rating,
        "review_count": 150,
        "price": price,
        "kind": kind,
        "coordinates": {"latitude": 41.9, "longitude": 12.49},
    }
    data.update(extra)
    return Candidate.model_validate(data)


def _pool():
    return [
        _venue("trattoria", rating=4.6, price="$$"),
        _venue("osteria", rating=4.3),
        _venue("pizzeria", rating=4.0),
        _venue("forno", rating=3.9),
        _venue("colosseum", kind="attraction", price="$$", rating=4.8),
        _venue("pantheon", kind="attraction", price="free", rating=4.7),
        _venue("borghese", kind="attraction", price="$", rating=4.5),
        _venue("hotel-centrale", kind="lodging", price="$$", rating=4.2),
        _venue("hostel-roma", kind="lodging", price="$", rating=3.8),
    ]


def _build_request(**overrides) -> ItineraryRequest:
    data = {
        "destination": {"name": "Rome", "latitude": 41.9028, "longitude": 12.4964},
        "start_date": START.isoformat(),
        "end_date": (START + dt.timedelta(days=2)).isoformat(),
        "group_size": 2,
        "budget": {"min": 0, "max": 1200, "currency": "USD"},
        "candidates": [c.model_dump() for c in _pool()],
    }
    data.update(overrides)
    return ItineraryRequest.model_validate(data)


def _itinerary() -> TravelItinerary:
    request = _build_request()
    day = ItineraryDay(
        date=START,
        items=[
            PlacedItem(candidate=_venue("osteria"), category="meal", label="lunch", start=720, end=810, cost=30),
            PlacedItem(
                candidate=_venue("colosseum", kind="attraction"),
                category="activity",
                label="afternoon activity",
                start=840,
                end=960,
                cost=50,
            ),
            PlacedItem(
                candidate=_venue("hotel-centrale", kind="lodging", price="$$"),
                category="lodging",
                label="Overnight at Hotel Centrale",
                start=1320,
                end=1440,
                cost=160,
            ),
        ],
        budget_slice=400,
    )
    second = ItineraryDay(date=START + dt.timedelta(days=1), items=[], budget_slice=400)
    return TravelItinerary(
        id="ITIN_TEST",
        name="Rome 2-Day Trip",
        destination=request.destination,
        days=[day, second],
        request=request,
    )


def test_three_day_trip_respects_daily_slices():
    planner = ItineraryPlanner()

    itinerary = planner.generate(_build_request())

    assert len(itinerary.days) == 3
    assert [d.date for d in itinerary.days] == [START + dt.timedelta(days=i) for i in range(3)]
    flagged = {w.day_index for w in itinerary.budget_warnings}
    for idx, day in enumerate(itinerary.days):
        assert day.day_cost <= 400 + 1e-6 or idx in flagged
        assert day.over_budget == (idx in flagged)
    assert itinerary.total_estimated_cost == pytest.approx(sum(d.day_cost for d in itinerary.days))
    assert itinerary.name == "Rome 3-Day Trip"
    assert itinerary.id.startswith("ITIN_")


def test_lodging_covers_every_night_but_the_last():
    itinerary = ItineraryPlanner().generate(_build_request())

    assert itinerary.lodging is not None
    assert itinerary.lodging.id == "hotel-centrale"
    nights = [[i for i in day.items if i.category == "lodging"] for day in itinerary.days]
    assert [len(n) for n in nights] == [1, 1, 0]
    assert itinerary.days[0].notes.startswith("Day 1 in Rome. Check in at Hotel Centrale.")
    assert "Check out of Hotel Centrale." in itinerary.days[-1].notes


def test_tight_budget_is_flagged_not_refused():
    itinerary = ItineraryPlanner().generate(_build_request(budget={"min": 0, "max": 150}))

    assert len(itinerary.days) == 3
    assert itinerary.lodging.id == "hostel-roma"
    assert [w.day_index for w in itinerary.budget_warnings] == [0, 1, 2]
    assert all(w.overage > 0 for w in itinerary.budget_warnings)


def test_single_day_trip_has_no_lodging():
    request = _build_request(end_date=START.isoformat(), budget=None)

    itinerary = ItineraryPlanner().generate(request)

    assert len(itinerary.days) == 1
    assert itinerary.lodging is None
    assert itinerary.budget_warnings == []


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"end_date": "2026-03-01"}, "End date must not be before start date"),
        ({"end_date": "2026-03-20"}, "limited to 14 days"),
        ({"group_size": 0}, "Group size must be between 1 and 20"),
        ({"group_size": 21}, "Group size must be between 1 and 20"),
        ({"destination": {"name": " ", "latitude": 0, "longitude": 0}}, "Valid destination is required"),
    ],
)
def test_invalid_requests_are_rejected(overrides, message):
    with pytest.raises(InvalidRequestError) as info:
        ItineraryPlanner().generate(_build_request(**overrides))

    assert any(message in error for error in info.value.errors)


def test_generate_itinerary_wraps_errors_in_response():
    bad = generate_itinerary(_build_request(group_size=25))
    good = generate_itinerary(_build_request())

    assert bad.success is False
    assert bad.error.code == "VALIDATION_ERROR"
    assert bad.itinerary is None
    assert good.success is True
    assert len(good.itinerary.days) == 3


def test_optimize_is_read_only_and_flags_outliers():
    itinerary = _itinerary()
    itinerary.days.append(ItineraryDay(date=START + dt.timedelta(days=2), items=[], budget_slice=400))
    before = itinerary.model_dump()

    result = ItineraryPlanner().optimize(itinerary)

    assert itinerary.model_dump() == before
    assert 0.0 <= result.balance_score < 1.0
    kinds = {(a.day_index, a.kind) for a in result.adjustments}
    assert (0, "cost") in kinds
    assert (0, "activity") in kinds
    assert (1, "pacing") in kinds
    assert result.metrics["total_cost"] == 240.0
    assert result.metrics["budget_utilization"] == pytest.approx(0.2)


def test_optimize_even_plan_scores_full_balance():
    itinerary = ItineraryPlanner().generate(_build_request(budget=None, end_date=START.isoformat()))

    result = ItineraryPlanner().optimize(itinerary)

    assert result.balance_score == 1.0
    assert result.adjustments == []


def test_remove_out_of_range_leaves_itinerary_unchanged():
    itinerary = _itinerary()
    before = itinerary.model_dump()

    with pytest.raises(InvalidModificationError) as info:
        ItineraryPlanner().modify(itinerary, RemoveActivity(day=0, activity_index=5))

    assert info.value.day_index == 0
    assert info.value.item_index == 5
    assert itinerary.model_dump() == before


def test_remove_activity_returns_new_itinerary():
    itinerary = _itinerary()

    updated = ItineraryPlanner().modify(itinerary, {"kind": "remove_activity", "day": 0, "activity_index": 1})

    assert [i.candidate.id for i in updated.days[0].items] == ["osteria", "hotel-centrale"]
    assert len(itinerary.days[0].items) == 3
    assert updated.total_estimated_cost == 190.0


def test_lodging_cannot_be_removed():
    with pytest.raises(InvalidModificationError):
        ItineraryPlanner().modify(_itinerary(), RemoveActivity(day=0, activity_index=2))


def test_add_activity_conflict_suggests_times():
    itinerary = _itinerary()
    before = itinerary.model_dump()
    show = _venue("opera", kind="entertainment", price="$$")

    with pytest.raises(InvalidModificationError) as info:
        ItineraryPlanner().modify(itinerary, AddActivity(day=0, item=show, time="15:00"))

    assert info.value.alternatives == ["16:00"]
    assert info.value.to_dict()["alternative_times"] == ["16:00"]
    assert itinerary.model_dump() == before


def test_add_activity_inserts_in_time_order():
    show = _venue("opera", kind="entertainment", price="$$")

    updated = ItineraryPlanner().modify(_itinerary(), AddActivity(day=0, item=show, time="10:00", duration_minutes=90))

    first = updated.days[0].items[0]
    assert first.candidate.id == "opera"
    assert (first.start, first.end) == (600, 690)
    assert first.cost == 50.0
    assert first.category == "activity"


def test_add_activity_respects_opening_hours():
    night_club = _venue("club", kind="entertainment", hours={0: [{"open": 1320, "close": 240}]})

    with pytest.raises(InvalidModificationError) as info:
        ItineraryPlanner().modify(_itinerary(), AddActivity(day=1, item=night_club, time="10:00"))

    assert "closed" in info.value.message


def test_replace_activity_keeps_window_and_recomputes_cost():
    museum = _venue("vatican", kind="attraction", price="$$$")

    updated = ItineraryPlanner().modify(
        _itinerary(), ReplaceActivity(day=0, activity_index=1, new_item=museum)
    )

    item = updated.days[0].items[1]
    assert item.candidate.id == "vatican"
    assert (item.start, item.end) == (840, 960)
    assert item.cost == 100.0


def test_change_lodging_swaps_every_night():
    villa = _venue("villa", kind="lodging", price="$$$")

    updated = ItineraryPlanner().modify(_itinerary(), ChangeLodging(new_lodging=villa))

    assert updated.lodging.id == "villa"
    nights = [i for d in updated.days for i in d.items if i.category == "lodging"]
    assert [n.candidate.id for n in nights] == ["villa"]
    assert nights[0].cost == 260.0


def test_change_lodging_requires_lodging_kind():
    with pytest.raises(InvalidModificationError):
        ItineraryPlanner().modify(_itinerary(), ChangeLodging(new_lodging=_venue("diner")))


def test_modify_refreshes_budget_flags():
    villa = _venue("villa", kind="lodging", price="$$$$", estimated_cost=500)

    updated = ItineraryPlanner().modify(_itinerary(), ChangeLodging(new_lodging=villa))

    assert updated.days[0].over_budget
    assert [w.day_index for w in updated.budget_warnings] == [0]


def _stop(id: str, latitude: float, start: int, end: int, category: str = "activity") -> PlacedItem:
    venue = _venue(id, kind="attraction", coordinates={"latitude": latitude, "longitude": 12.49})
    return PlacedItem(candidate=venue, category=category, label=id, start=start, end=end, cost=10)


def test_change_lodging_fills_nights_planned_without_a_stay():
    without_lodging = [c.model_dump() for c in _pool() if c.kind != "lodging"]
    planner = ItineraryPlanner()
    itinerary = planner.generate(_build_request(candidates=without_lodging))
    assert itinerary.lodging is None
    villa = _venue("villa", kind="lodging", price="$$")

    updated = planner.modify(itinerary, ChangeLodging(new_lodging=villa))

    assert updated.lodging.id == "villa"
    nights = [[i for i in day.items if i.category == "lodging"] for day in updated.days]
    assert [len(n) for n in nights] == [1, 1, 0]
    assert all((n[0].start, n[0].end) == (1320, 1440) for n in nights[:2])
    assert updated.total_estimated_cost == pytest.approx(itinerary.total_estimated_cost + 2 * 160.0)
    for day in updated.days:
        assert [i.start for i in day.items] == sorted(i.start for i in day.items)


def test_change_lodging_rejects_a_night_already_taken():
    itinerary = _itinerary()
    itinerary.days.append(ItineraryDay(date=START + dt.timedelta(days=2), items=[], budget_slice=400))
    itinerary.days[1].items.append(_stop("late-show", 41.9, 1290, 1380, category="activity"))
    before = itinerary.model_dump()

    with pytest.raises(InvalidModificationError) as info:
        ItineraryPlanner().modify(itinerary, ChangeLodging(new_lodging=_venue("villa", kind="lodging")))

    assert info.value.day_index == 1
    assert itinerary.model_dump() == before


def test_travel_time_counts_each_hop_between_stops():
    day = ItineraryDay(
        date=START,
        items=[_stop("a", 41.9, 540, 600), _stop("b", 41.9, 660, 720)],
    )

    assert travel_minutes(day) == pytest.approx(15.0)
    assert travel_minutes(ItineraryDay(date=START)) == 0.0


def test_optimize_flags_days_spread_across_town():
    itinerary = _itinerary()
    itinerary.days[1].items.extend(
        [
            _stop("north", 41.90, 540, 660),
            _stop("south", 41.75, 720, 840),
            _stop("north-again", 41.90, 900, 1020),
            _stop("south-again", 41.75, 1080, 1200),
        ]
    )
    before = itinerary.model_dump()

    result = ItineraryPlanner().optimize(itinerary)

    assert itinerary.model_dump() == before
    travel_notes = [a for a in result.adjustments if "reduce travel time" in a.rationale]
    assert [a.day_index for a in travel_notes] == [1]
    assert travel_notes[0].kind == "pacing"
    assert result.metrics["max_day_travel_minutes"] > 120
    assert result.metrics["total_travel_minutes"] == pytest.approx(
        travel_minutes(itinerary.days[0]) + travel_minutes(itinerary.days[1]), abs=0.1
    )


@pytest.mark.parametrize(
    "modification",
    [
        RemoveActivity(day=7, activity_index=0),
        RemoveActivity(day=-1, activity_index=0),
        AddActivity(day=-1, item=_venue("opera", kind="entertainment"), time="10:00"),
        ReplaceActivity(day=2, activity_index=0, new_item=_venue("vatican", kind="attraction")),
    ],
)
def test_modify_rejects_days_outside_the_trip(modification):
    itinerary = _itinerary()
    before = itinerary.model_dump()

    with pytest.raises(InvalidModificationError) as info:
        ItineraryPlanner().modify(itinerary, modification)

    assert info.value.day_index == modification.day
    assert itinerary.model_dump() == before


@pytest.mark.parametrize("preferences", [{}, {"travel_style": "cultural"}, {"travel_style": "luxury"}])
def test_generated_days_never_double_book(preferences):
    itinerary = ItineraryPlanner().generate(_build_request(preferences=preferences))

    for day in itinerary.days:
        windows = [item.window for item in day.items]
        for i, first in enumerate(windows):
            for second in windows[i + 1:]:
                assert not overlaps(first, second)
    counts = [day.activity_count for day in itinerary.days]
    if preferences.get("travel_style") == "cultural":
        assert max(counts) == 3
    if preferences.get("travel_style") == "luxury":
        assert max(counts) == 1
