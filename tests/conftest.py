"""Pytest fixtures for offline planner tests."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

# Ensure placeholder keys exist so modules that read env on import succeed.
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "test-maps-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

from tools.geocoding_cache import GeocodingCache  # noqa: E402
from tools.routes import make_travel_time, zero_travel_time  # noqa: E402
from workflows.schemas import Coordinates, NarrativeItinerary, TravelTime  # noqa: E402


class FakeResponse:
    """Lightweight stand-in for httpx.Response used in patched requests."""

    def __init__(self, payload: Any, status_code: int = 200, headers: Dict[str, str] | None = None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.text = ""

    def json(self) -> Any:
        return self._payload


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TableProvider:
    """In-memory travel-time provider driven by lookup tables.

    ``seconds`` maps ``(origin, destination)`` to a duration; missing pairs
    fall back to ``default_seconds``. ``fail`` makes every call raise.
    """

    def __init__(
        self,
        seconds: Optional[Dict[Tuple[str, str], int]] = None,
        coords: Optional[Dict[str, Coordinates]] = None,
        *,
        default_seconds: int = 600,
        fail: bool = False,
    ):
        self.seconds = seconds or {}
        self.coords = coords or {}
        self.default_seconds = default_seconds
        self.fail = fail
        self.cache = GeocodingCache(auto_sweep=False)
        self.travel_calls: List[Tuple[str, str, str]] = []
        self.geocode_calls: List[str] = []

    async def geocode(self, address: str) -> Optional[Coordinates]:
        self.geocode_calls.append(address)
        if self.fail:
            raise RuntimeError("geocoding backend down")
        return self.coords.get(address)

    async def travel_time(self, origin: str, destination: str, mode: str = "walking", departure_time=None) -> TravelTime:
        self.travel_calls.append((origin, destination, mode))
        if self.fail:
            raise RuntimeError("routes backend down")
        if origin == destination:
            return zero_travel_time()
        seconds = self.seconds.get((origin, destination), self.default_seconds)
        return make_travel_time(seconds, seconds * 1.4)


class FakeNarrative:
    """Narrative collaborator returning a canned answer or raising."""

    def __init__(self, result: Optional[NarrativeItinerary] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[Tuple[Tuple[str, ...], str, Optional[str]]] = []

    async def generate_itinerary(self, stops: Sequence[str], city: str, session_id: Optional[str] = None) -> NarrativeItinerary:
        self.calls.append((tuple(stops), city, session_id))
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


@pytest.fixture
def fake_response():
    """Factory that returns FakeResponse objects."""

    def _factory(payload: Any, status_code: int = 200, headers: Dict[str, str] | None = None) -> FakeResponse:
        return FakeResponse(payload, status_code=status_code, headers=headers)

    return _factory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    instance = GeocodingCache(clock=clock, auto_sweep=False)
    yield instance
    instance.close()


@pytest.fixture
def table_provider():
    """Factory for ``TableProvider`` instances."""
    return TableProvider


@pytest.fixture
def fake_narrative():
    """Factory for ``FakeNarrative`` instances."""
    return FakeNarrative
