# agents/schedule_engine.py
"""Clock-time scheduling for an ordered route.

The engine is a pipeline of pure functions over immutable values::

    plan_stops -> time_stops -> insert_meal_breaks -> merge_narrative_notes

Each pass returns a new tuple of ``ScheduleItem`` so the stages can be
tested in isolation.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from itertools import groupby
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from tools.durations import (
    MINUTES_PER_DAY,
    format_clock_time,
    format_duration,
    parse_clock_time,
    parse_duration_text,
)
from workflows.schemas import (
    ItineraryOptions,
    NarrativeItinerary,
    NarrativeStop,
    OptimizedRoute,
    ScheduleItem,
)

DEFAULT_TRAVEL_MINUTES = 15
NOTES_SEPARATOR = " | "
_BREAK_CLEARANCE = 2


@dataclass(frozen=True)
class DayWindow:
    """Daily operating window in minutes since midnight."""

    start: int = 9 * 60
    end: int = 20 * 60
    rollover: bool = True

    @classmethod
    def from_options(cls, options: ItineraryOptions) -> "DayWindow":
        start = parse_clock_time(options.daily_start_time)
        end = parse_clock_time(options.daily_end_time)
        return cls(
            start=cls.start if start is None else start,
            end=cls.end if end is None else end,
            rollover=options.multi_day,
        )


@dataclass(frozen=True)
class MealBreak:
    label: str
    window_start: int
    window_end: int
    clock: int
    minutes: int
    notes: str

    def covers(self, minutes: Optional[int]) -> bool:
        return minutes is not None and self.window_start <= minutes < self.window_end


LUNCH = MealBreak(
    label="Lunch Break",
    window_start=11 * 60,
    window_end=14 * 60,
    clock=12 * 60,
    minutes=60,
    notes="Recommended lunch break - find a nearby restaurant",
)
DINNER = MealBreak(
    label="Dinner Break",
    window_start=16 * 60 + 30,
    window_end=19 * 60,
    clock=18 * 60,
    minutes=90,
    notes="Recommended dinner break - explore local cuisine",
)
MEAL_BREAKS = {LUNCH.label: LUNCH, DINNER.label: DINNER}


@dataclass(frozen=True)
class PlannedStop:
    """A stop in visiting order, before clock times are assigned."""

    label: str
    duration_text: Optional[str] = None
    travel_text: Optional[str] = None
    kind: str = "visit"
    notes: Optional[str] = None
    navigation_url: Optional[str] = None


# ============================================================================
# Planning
# ============================================================================

def plan_stops(
    route: OptimizedRoute,
    durations: Optional[Mapping[str, str]] = None,
    notes: Optional[Mapping[str, str]] = None,
) -> Tuple[PlannedStop, ...]:
    """One ``PlannedStop`` per ordered location, carrying the next hop."""
    durations = durations or {}
    notes = notes or {}
    planned: List[PlannedStop] = []
    for index, label in enumerate(route.ordered_locations):
        step = route.steps[index] if index < len(route.steps) else None
        planned.append(
            PlannedStop(
                label=label,
                duration_text=durations.get(label),
                travel_text=step.travel_time.duration_text if step else None,
                notes=notes.get(label),
                navigation_url=step.navigation_url if step else None,
            )
        )
    return tuple(planned)


def _stop_minutes(stop: PlannedStop, default_visit_minutes: int) -> int:
    if stop.kind == "break" and stop.label in MEAL_BREAKS:
        return MEAL_BREAKS[stop.label].minutes
    if stop.duration_text:
        return int(parse_duration_text(stop.duration_text, default=default_visit_minutes))
    return default_visit_minutes


# ============================================================================
# Timing
# ============================================================================

def time_stops(
    stops: Sequence[PlannedStop],
    *,
    start_minutes: int,
    window: DayWindow,
    default_visit_minutes: int,
    transportation: Optional[str] = None,
) -> Tuple[ScheduleItem, ...]:
    """Assign arrival/departure clock times and day indices.

    A stop that would end after ``window.end`` starts a new day at
    ``window.start``, unless it is the first stop of its day; a single long
    visit therefore never pushes the schedule forward forever.
    """
    day_index = 1
    clock = start_minutes
    first_of_day = True
    items: List[ScheduleItem] = []

    for stop in stops:
        minutes = _stop_minutes(stop, default_visit_minutes)
        if window.rollover and not first_of_day and clock + minutes > window.end:
            day_index += 1
            clock = window.start
            first_of_day = True

        items.append(
            ScheduleItem(
                label=stop.label,
                kind="break" if stop.kind == "break" else "visit",
                arrival_time=format_clock_time(clock),
                departure_time=format_clock_time(clock + minutes),
                duration_minutes=minutes,
                travel_time_to_next=stop.travel_text,
                day_index=day_index,
                notes=stop.notes,
                transportation=transportation if stop.travel_text else None,
                navigation_url=stop.navigation_url,
            )
        )

        clock += minutes
        if stop.travel_text:
            clock += int(parse_duration_text(stop.travel_text, default=DEFAULT_TRAVEL_MINUTES))
        first_of_day = False

    return tuple(items)


# ============================================================================
# Meal breaks
# ============================================================================

def _has_break_nearby(items: Sequence[ScheduleItem], index: int) -> bool:
    low = max(0, index - _BREAK_CLEARANCE)
    high = min(len(items), index + _BREAK_CLEARANCE + 1)
    return any(items[i].is_break for i in range(low, high) if i != index)


def _meal_slot(items: Sequence[ScheduleItem], meal: MealBreak) -> Optional[int]:
    for index, item in enumerate(items):
        if item.is_break:
            continue
        if meal.covers(parse_clock_time(item.arrival_time)) and not _has_break_nearby(items, index):
            return index
    return None


def _break_item(meal: MealBreak, day_index: int) -> ScheduleItem:
    return ScheduleItem(
        label=meal.label,
        kind="break",
        arrival_time=format_clock_time(meal.clock),
        departure_time=format_clock_time(meal.clock + meal.minutes),
        duration_minutes=meal.minutes,
        day_index=day_index,
        notes=meal.notes,
    )


def insert_meal_breaks(schedule: Sequence[ScheduleItem]) -> Tuple[ScheduleItem, ...]:
    """Add at most one lunch and one dinner break per day.

    A break goes right after the first visit arriving inside its window with
    no other break within two items. Breaks keep their fixed clock times and
    are not re-timed against their neighbours, so they can overlap a visit.
    """
    result: List[ScheduleItem] = []
    for day_index, group in groupby(schedule, key=lambda item: item.day_index):
        items = list(group)
        slots = [
            (index, meal)
            for meal in (DINNER, LUNCH)
            for index in [_meal_slot(items, meal)]
            if index is not None
        ]
        # Highest index first so earlier insertion points stay valid.
        for index, meal in sorted(slots, key=lambda slot: slot[0], reverse=True):
            items.insert(index + 1, _break_item(meal, day_index))
        result.extend(items)
    return tuple(result)


# ============================================================================
# Narrative enrichment
# ============================================================================

def _contains_words(haystack: str, needle: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack) is not None


def labels_match(label: str, other: str, *, exact: bool = False) -> bool:
    """Case-insensitive match; ``exact=False`` also accepts whole-word containment.

    "Notre-Dame" matches "Notre-Dame Cathedral", but "A" does not match
    "Atlantis" and "Stop 1" does not match "Stop 10".
    """
    left, right = label.strip().lower(), other.strip().lower()
    if not left or not right:
        return False
    if left == right:
        return True
    if exact:
        return False
    return _contains_words(right, left) or _contains_words(left, right)


def find_narrative_stop(label: str, stops: Iterable[NarrativeStop]) -> Optional[NarrativeStop]:
    """Exact label first, then whole-word containment."""
    candidates = list(stops)
    for exact in (True, False):
        for stop in candidates:
            if labels_match(label, stop.label, exact=exact):
                return stop
    return None


def merge_narrative_notes(
    schedule: Sequence[ScheduleItem],
    narrative: Optional[NarrativeItinerary],
) -> Tuple[ScheduleItem, ...]:
    if narrative is None or not narrative.stops:
        return tuple(schedule)

    merged: List[ScheduleItem] = []
    for item in schedule:
        match = None if item.is_break else find_narrative_stop(item.label, narrative.stops)
        if match is None or not match.notes:
            merged.append(item)
            continue
        notes = f"{item.notes}{NOTES_SEPARATOR}{match.notes}" if item.notes else match.notes
        merged.append(item.model_copy(update={"notes": notes}))
    return tuple(merged)


# ============================================================================
# Summaries
# ============================================================================

def day_count(schedule: Sequence[ScheduleItem]) -> int:
    return max((item.day_index for item in schedule), default=1)


def total_duration_text(schedule: Sequence[ScheduleItem]) -> str:
    """Sum of each day's span from first arrival to last departure."""
    total = 0
    for _, group in groupby(schedule, key=lambda item: item.day_index):
        items = [item for item in group if not item.is_break]
        if not items:
            continue
        first = parse_clock_time(items[0].arrival_time) or 0
        last = parse_clock_time(items[-1].departure_time) or 0
        span = last - first
        if span < 0:
            span += MINUTES_PER_DAY
        total += span
    days = day_count(schedule)
    if days > 1:
        return f"{days} days ({format_duration(total)})"
    return format_duration(total)


__all__ = [
    "DEFAULT_TRAVEL_MINUTES",
    "DINNER",
    "DayWindow",
    "LUNCH",
    "MealBreak",
    "PlannedStop",
    "day_count",
    "find_narrative_stop",
    "insert_meal_breaks",
    "labels_match",
    "merge_narrative_notes",
    "plan_stops",
    "time_stops",
    "total_duration_text",
]
