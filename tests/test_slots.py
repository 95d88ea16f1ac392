import datetime as dt

import pytest

from pickforme.errors import SlotUnavailable
from pickforme.planner.slots import (
    SlotAllocator,
    alternative_windows,
    format_hhmm,
    is_open,
    overlaps,
    parse_hhmm,
)
from pickforme.schemas import Candidate, PlacedItem

FRIDAY = dt.date(2026, 3, 6)
SATURDAY = dt.date(2026, 3, 7)


def _candidate(id: str = "venue", hours=None) -> Candidate:
    return Candidate(
        id=id,
        name=id.title(),
        rating=4.0,
        review_count=50,
        coordinates={"latitude": 41.9, "longitude": 12.5},
        hours=hours,
    )


def _placed(id: str, start: int, end: int) -> PlacedItem:
    return PlacedItem(candidate=_candidate(id), category="meal", start=start, end=end)


def test_parse_and_format_round_trip_known_values():
    assert parse_hhmm("08:30") == 510
    assert parse_hhmm("24:00") == 1440
    assert format_hhmm(1230) == "20:30"
    for bad in ("25:00", "noon", "12:75"):
        with pytest.raises(ValueError):
            parse_hhmm(bad)


def test_half_open_windows_do_not_overlap_at_boundary():
    assert overlaps((600, 720), (700, 800))
    assert not overlaps((600, 720), (720, 800))
    assert not overlaps((720, 800), (600, 720))


def test_overnight_hours_cover_evening_and_following_morning():
    late_bar = _candidate(hours={4: [{"open": 1080, "close": 120}]})

    assert is_open(late_bar, FRIDAY, (1200, 1320))
    assert is_open(late_bar, FRIDAY, (1320, 1440))
    assert is_open(late_bar, SATURDAY, (30, 90))
    assert not is_open(late_bar, SATURDAY, (720, 780))
    assert not is_open(late_bar, FRIDAY, (600, 660))


def test_missing_hours_mean_always_open_and_equal_bounds_mean_all_day():
    assert is_open(_candidate(), SATURDAY, (0, 1440))
    all_day = _candidate(hours={5: [{"open": 0, "close": 0}]})
    assert is_open(all_day, SATURDAY, (300, 400))
    assert not is_open(all_day, FRIDAY, (300, 400))


def test_alternative_windows_alternate_around_the_original():
    assert alternative_windows((600, 660)) == [(630, 690), (570, 630), (660, 720)]
    assert alternative_windows((600, 660), bounds=(600, 700)) == [(630, 690)]


def test_place_item_uses_first_free_fallback():
    allocator = SlotAllocator()
    existing = [_placed("lunch", 720, 780)]

    item = allocator.place_item(_candidate("museum"), (720, 780), existing, FRIDAY, category="activity")

    assert (item.start, item.end) == (780, 840)
    assert item.category == "activity"


def test_place_item_raises_with_attempted_windows():
    allocator = SlotAllocator()
    existing = [_placed("lunch", 720, 810)]

    with pytest.raises(SlotUnavailable) as info:
        allocator.place_item(_candidate("museum"), (720, 810), existing, FRIDAY)

    err = info.value
    assert err.candidate_id == "museum"
    assert err.attempted[0] == (720, 810)
    assert len(err.attempted) == 4
    assert "overlaps Lunch" in err.reason
    assert err.to_dict()["window"] == ["12:00", "13:30"]


def test_place_item_without_fallback_fails_fast():
    allocator = SlotAllocator()
    closed = _candidate("closed", hours={4: [{"open": 600, "close": 700}]})

    with pytest.raises(SlotUnavailable) as info:
        allocator.place_item(closed, (720, 780), [], FRIDAY, allow_fallback=False)

    assert info.value.attempted == [(720, 780)]
    assert "closed" in info.value.reason


def test_suggest_times_only_returns_feasible_starts():
    allocator = SlotAllocator()
    existing = [_placed("lunch", 720, 810), _placed("tour", 840, 960)]

    assert allocator.suggest_times(_candidate("show"), (900, 1020), existing, FRIDAY) == ["16:00"]
