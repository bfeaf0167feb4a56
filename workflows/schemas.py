"""Pydantic schemas for routes, schedules and itinerary options."""

from __future__ import annotations

import re
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TravelMode = Literal["walking", "driving", "transit"]
ItemKind = Literal["visit", "break"]

_CLOCK_PATTERN = re.compile(r"^(?:[01]?\d|2[0-3]):[0-5]\d$|^24:00$")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Routing
# ============================================================================

class Coordinates(_Frozen):
    """Geographic coordinate (WGS84 degrees)."""
    lat: float
    lng: float


class TravelTime(_Frozen):
    """Cost of a single hop.

    ``estimated`` is set whenever the value was synthesized instead of read
    from a live route.
    """
    duration_seconds: int = Field(ge=0)
    distance_meters: int = Field(ge=0)
    duration_text: str
    distance_text: str
    estimated: bool = False


class RouteStep(_Frozen):
    """Hop between two consecutive stops."""
    origin: str
    destination: str
    travel_time: TravelTime
    mode: TravelMode
    navigation_url: Optional[str] = None


class OptimizedRoute(_Frozen):
    """Visiting order plus the cost of each hop."""
    ordered_locations: Tuple[str, ...] = ()
    total_travel_time_seconds: int = 0
    total_distance_meters: int = 0
    steps: Tuple[RouteStep, ...] = ()
    strategy: str = "trivial"

    @property
    def estimated(self) -> bool:
        return any(step.travel_time.estimated for step in self.steps)

    @classmethod
    def from_steps(
        cls,
        ordered_locations: Tuple[str, ...],
        steps: Tuple[RouteStep, ...],
        strategy: str,
    ) -> "OptimizedRoute":
        return cls(
            ordered_locations=tuple(ordered_locations),
            total_travel_time_seconds=sum(step.travel_time.duration_seconds for step in steps),
            total_distance_meters=sum(step.travel_time.distance_meters for step in steps),
            steps=tuple(steps),
            strategy=strategy,
        )


# ============================================================================
# Options
# ============================================================================

class ItineraryOptions(_Frozen):
    """Caller-supplied planning options with validation."""

    travel_mode: TravelMode = "walking"
    start_time: str = "09:00"
    visit_duration_minutes: int = Field(60, ge=15, le=480, description="Minutes per stop")
    include_breaks: bool = True
    multi_day: bool = True
    hotel_location: Optional[str] = None
    daily_start_time: str = "09:00"
    daily_end_time: str = "20:00"

    @field_validator("start_time", "daily_start_time", "daily_end_time")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        """Times must be 24h ``HH:MM``."""
        value = v.strip()
        if not _CLOCK_PATTERN.match(value):
            raise ValueError("Invalid time format. Use HH:MM format.")
        hour, minute = value.split(":")
        return f"{int(hour):02d}:{minute}"

    @field_validator("hotel_location", mode="before")
    @classmethod
    def blank_hotel_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @model_validator(mode="after")
    def check_window(self) -> "ItineraryOptions":
        if self.daily_end_time <= self.daily_start_time:
            raise ValueError("daily_end_time must be after daily_start_time")
        if self.start_time == "24:00":
            raise ValueError("start_time must be before 24:00")
        return self


# ============================================================================
# Schedule / Itinerary Output
# ============================================================================

class ScheduleItem(_Frozen):
    """A time-stamped stop or meal break."""
    label: str
    kind: ItemKind = "visit"
    arrival_time: str
    departure_time: str
    duration_minutes: int = Field(ge=0)
    travel_time_to_next: Optional[str] = None
    day_index: int = Field(1, ge=1)
    notes: Optional[str] = None
    transportation: Optional[str] = None
    navigation_url: Optional[str] = None

    @property
    def is_break(self) -> bool:
        return self.kind == "break"


class Itinerary(_Frozen):
    """Final result handed to the caller."""
    title: str
    total_duration: str
    total_travel_time: str
    schedule: Tuple[ScheduleItem, ...] = ()
    route: OptimizedRoute = Field(default_factory=OptimizedRoute)
    day_count: int = 1
    fallback_used: bool = False
    tier: str = "primary"
    warnings: Tuple[str, ...] = ()


# ============================================================================
# Narrative collaborator output
# ============================================================================

class NarrativeStop(_Frozen):
    """Per-stop suggestion; only label, duration and notes are consumed."""
    label: str
    duration: Optional[str] = None
    notes: Optional[str] = None


class NarrativeItinerary(_Frozen):
    title: str = "Your Travel Itinerary"
    total_duration: Optional[str] = None
    stops: Tuple[NarrativeStop, ...] = ()
