# tests/agents/test_schedule_engine.py
"""Tests for the pure scheduling pipeline."""
from __future__ import annotations

from agents.schedule_engine import (
    DayWindow,
    PlannedStop,
    day_count,
    find_narrative_stop,
    insert_meal_breaks,
    labels_match,
    merge_narrative_notes,
    plan_stops,
    time_stops,
    total_duration_text,
)
from tools.durations import parse_clock_time, parse_duration_text
from tools.routes import make_travel_time
from workflows.schemas import (
    ItineraryOptions,
    NarrativeItinerary,
    NarrativeStop,
    OptimizedRoute,
    RouteStep,
)

WINDOW = DayWindow(start=9 * 60, end=20 * 60)


def _stops(labels, travel="30m", durations=None):
    durations = durations or {}
    return tuple(
        PlannedStop(
            label=label,
            duration_text=durations.get(label),
            travel_text=travel if index < len(labels) - 1 else None,
        )
        for index, label in enumerate(labels)
    )


def _time(stops, start="09:00", window=WINDOW, default=60):
    return time_stops(
        stops,
        start_minutes=parse_clock_time(start),
        window=window,
        default_visit_minutes=default,
        transportation="Walking",
    )


def _assert_timing_invariants(schedule):
    for item in schedule:
        arrival = parse_clock_time(item.arrival_time)
        departure = parse_clock_time(item.departure_time)
        assert departure == (arrival + item.duration_minutes) % 1440
    visits = [item for item in schedule if not item.is_break]
    for prev, nxt in zip(visits, visits[1:]):
        if prev.day_index != nxt.day_index:
            continue
        travel = parse_duration_text(prev.travel_time_to_next, default=15)
        expected = (parse_clock_time(prev.departure_time) + travel) % 1440
        assert parse_clock_time(nxt.arrival_time) == expected


# ==================== PLANNING ====================

def test_plan_stops_carries_next_hop_and_durations():
    steps = (
        RouteStep(origin="A", destination="B", travel_time=make_travel_time(900, 1000), mode="walking",
                  navigation_url="https://maps/a-b"),
    )
    route = OptimizedRoute.from_steps(("A", "B"), steps, "trivial")

    planned = plan_stops(route, {"B": "2 hours"}, {"A": "Start here"})

    assert planned[0] == PlannedStop(
        label="A", travel_text="15m", notes="Start here", navigation_url="https://maps/a-b"
    )
    assert planned[1].duration_text == "2 hours"
    assert planned[1].travel_text is None


# ==================== TIMING ====================

def test_time_stops_assigns_consecutive_clock_times():
    schedule = _time(_stops(["A", "B", "C"], travel="15 mins"))

    assert [(i.arrival_time, i.departure_time) for i in schedule] == [
        ("09:00", "10:00"),
        ("10:15", "11:15"),
        ("11:30", "12:30"),
    ]
    assert schedule[0].transportation == "Walking"
    assert schedule[-1].transportation is None
    assert day_count(schedule) == 1
    _assert_timing_invariants(schedule)


def test_time_stops_uses_explicit_duration_text():
    schedule = _time(_stops(["A", "B"], durations={"A": "2-3 hours", "B": "no idea"}))

    assert schedule[0].duration_minutes == 150
    assert schedule[1].duration_minutes == 60


def test_unparsable_travel_defaults_to_fifteen_minutes():
    schedule = _time(_stops(["A", "B"], travel="soon"))

    assert schedule[1].arrival_time == "10:15"


def test_day_rollover_starts_new_day_at_window_start():
    schedule = _time(_stops(["A", "B", "C", "D"]), default=180)

    assert [(i.day_index, i.arrival_time) for i in schedule] == [
        (1, "09:00"),
        (1, "12:30"),
        (1, "16:00"),
        (2, "09:00"),
    ]
    assert day_count(schedule) == 2
    _assert_timing_invariants(schedule)


def test_first_item_of_day_is_never_deferred():
    durations = {"A": "12 hours", "B": "12 hours", "C": "1 hour"}
    schedule = _time(_stops(["A", "B", "C"], durations=durations))

    assert [(i.day_index, i.arrival_time, i.departure_time) for i in schedule] == [
        (1, "09:00", "21:00"),
        (2, "09:00", "21:00"),
        (3, "09:00", "10:00"),
    ]


def test_late_start_time_seeds_first_day():
    schedule = _time(_stops(["A", "B"]), start="19:30")

    assert (schedule[0].day_index, schedule[0].arrival_time) == (1, "19:30")
    assert (schedule[1].day_index, schedule[1].arrival_time) == (2, "09:00")


def test_single_day_window_never_rolls_over():
    window = DayWindow.from_options(ItineraryOptions(multi_day=False))
    schedule = _time(_stops(["A", "B", "C", "D"]), window=window, default=240)

    assert {i.day_index for i in schedule} == {1}
    _assert_timing_invariants(schedule)


def test_day_window_from_options():
    window = DayWindow.from_options(
        ItineraryOptions(daily_start_time="08:00", daily_end_time="18:30", multi_day=True)
    )

    assert window == DayWindow(start=480, end=1110, rollover=True)


def test_meal_break_stops_use_fixed_durations():
    stops = (
        PlannedStop(label="A", travel_text="10m"),
        PlannedStop(label="Lunch Break", kind="break"),
        PlannedStop(label="Dinner Break", kind="break", duration_text="20 minutes"),
        PlannedStop(label="B"),
    )

    schedule = _time(stops, start="11:00")
    lunch, dinner = schedule[1], schedule[2]

    assert (lunch.kind, lunch.duration_minutes) == ("break", 60)
    assert (lunch.arrival_time, lunch.departure_time) == ("12:10", "13:10")
    assert (dinner.kind, dinner.duration_minutes) == ("break", 90)
    assert (dinner.arrival_time, dinner.departure_time) == ("13:10", "14:40")
    assert schedule[3].arrival_time == "14:40"
    assert schedule[3].duration_minutes == 60


# ==================== MEAL BREAKS ====================

def _full_day():
    return _time(_stops(["A", "B", "C", "D", "E", "F", "G"]))


def test_meal_breaks_follow_first_visit_in_window():
    schedule = insert_meal_breaks(_full_day())

    assert [i.label for i in schedule] == [
        "A", "B", "C", "Lunch Break", "D", "E", "F", "Dinner Break", "G",
    ]
    lunch = schedule[3]
    dinner = schedule[7]
    assert (lunch.kind, lunch.arrival_time, lunch.departure_time, lunch.duration_minutes) == (
        "break", "12:00", "13:00", 60,
    )
    assert (dinner.arrival_time, dinner.departure_time, dinner.duration_minutes) == ("18:00", "19:30", 90)
    assert "lunch" in lunch.notes.lower()
    _assert_timing_invariants(schedule)


def test_meal_breaks_are_not_added_twice():
    once = insert_meal_breaks(_full_day())

    assert insert_meal_breaks(once) == once


def test_meal_breaks_per_day():
    schedule = _time(_stops(["A", "B", "C", "D", "E"]), default=180)
    with_breaks = insert_meal_breaks(schedule)

    breaks = [(i.day_index, i.label) for i in with_breaks if i.is_break]
    # Day 1: B arrives 12:30, C arrives 16:00 (before the dinner window).
    # Day 2: D arrives 09:00, E arrives 12:30.
    assert breaks == [(1, "Lunch Break"), (2, "Lunch Break")]


def test_no_breaks_outside_meal_windows():
    schedule = _time(_stops(["A", "B"]))

    assert insert_meal_breaks(schedule) == schedule


# ==================== NARRATIVE NOTES ====================

def test_merge_narrative_notes_word_match_both_directions():
    schedule = insert_meal_breaks(_time(_stops(["Louvre Museum", "Eiffel", "Notre-Dame"])))
    schedule = tuple(
        item.model_copy(update={"notes": "Existing"}) if item.label == "Eiffel" else item
        for item in schedule
    )
    narrative = NarrativeItinerary(
        stops=(
            NarrativeStop(label="louvre", notes="Book tickets ahead"),
            NarrativeStop(label="The Eiffel Tower", notes="Go at sunset"),
            NarrativeStop(label="Lunch", notes="should not attach"),
        )
    )

    merged = merge_narrative_notes(schedule, narrative)
    by_label = {item.label: item for item in merged}

    assert by_label["Louvre Museum"].notes == "Book tickets ahead"
    assert by_label["Eiffel"].notes == "Existing | Go at sunset"
    assert by_label["Notre-Dame"].notes is None
    assert schedule[0].notes is None


def test_merge_without_narrative_is_identity():
    schedule = _time(_stops(["A", "B"]))

    assert merge_narrative_notes(schedule, None) == schedule


def test_labels_match_requires_whole_words():
    assert labels_match("Louvre", "LOUVRE")
    assert labels_match("Notre-Dame", "Notre-Dame Cathedral")
    assert labels_match("The Eiffel Tower", "eiffel tower")
    assert not labels_match("A", "Atlantis")
    assert not labels_match("Stop 1", "Stop 10")
    assert not labels_match("", "Louvre")
    assert not labels_match("Louvre", "Louvre Museum", exact=True)


def test_find_narrative_stop_prefers_exact_label():
    stops = (
        NarrativeStop(label="Louvre Museum", notes="Wide"),
        NarrativeStop(label="Louvre", notes="Exact"),
    )

    assert find_narrative_stop("louvre", stops).notes == "Exact"
    assert find_narrative_stop("Louvre Museum Paris", stops).notes == "Wide"
    assert find_narrative_stop("Atlantis", stops) is None


# ==================== SUMMARIES ====================

def test_total_duration_text():
    assert total_duration_text(_full_day()) == "10h"

    multi = _time(_stops(["A", "B", "C", "D"]), default=180)
    assert total_duration_text(multi) == "2 days (13h)"
