# agents/itinerary_agent.py
"""ItineraryAgent: turns a list of stops into a timed, day-by-day itinerary.

The agent runs an ordered list of tiers and returns the first that succeeds:

1. primary   - narrative enrichment and matrix-optimized route (<= 10 stops).
2. large     - fast geographic route, narrative on the first 8 stops only.
3. narrative - narrative order with 15-minute synthetic hops.
4. basic     - input order, 90-minute visits and 30-minute hops from 09:00.

Each tier reports success or a typed "unavailable" outcome instead of raising;
only malformed input (no stops, blank stop) reaches the caller.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import config
from agents.narrative_agent import NarrativeAgent, NarrativeProvider, NarrativeUnavailableError
from agents.route_optimizer import RouteOptimizer
from agents.schedule_engine import (
    DayWindow,
    day_count,
    find_narrative_stop,
    insert_meal_breaks,
    labels_match,
    merge_narrative_notes,
    plan_stops,
    time_stops,
    total_duration_text,
)
from tools.durations import format_seconds, parse_clock_time, parse_duration_text
from tools.geocoding_cache import CacheStats, GeocodingCache
from tools.routes import TravelTimeProvider, make_travel_time, navigation_url, zero_travel_time
from workflows.schemas import (
    Itinerary,
    ItineraryOptions,
    NarrativeItinerary,
    OptimizedRoute,
    RouteStep,
    ScheduleItem,
    TravelMode,
)

logger = logging.getLogger(__name__)

TRANSPORTATION_TEXT: Dict[str, str] = {
    "walking": "Walking",
    "driving": "Driving",
    "transit": "Public Transit",
}

NARRATIVE_HOP_SECONDS = 15 * 60
BASIC_VISIT_MINUTES = 90
BASIC_HOP_SECONDS = 30 * 60
BASIC_START_TIME = "09:00"


class MalformedInputError(ValueError):
    """The stop list cannot be planned at all."""


@dataclass(frozen=True)
class TierOutcome:
    tier: str
    itinerary: Optional[Itinerary] = None
    reason: Optional[str] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.itinerary is not None

    @classmethod
    def success(cls, tier: str, itinerary: Itinerary) -> "TierOutcome":
        return cls(tier=tier, itinerary=itinerary)

    @classmethod
    def unavailable(cls, tier: str, reason: str) -> "TierOutcome":
        return cls(tier=tier, reason=reason)

    @classmethod
    def skip(cls, tier: str, reason: str) -> "TierOutcome":
        return cls(tier=tier, reason=reason, skipped=True)


@dataclass
class _BuildContext:
    """Per-request state shared by the tiers."""

    stops: Tuple[str, ...]
    city: str
    options: ItineraryOptions
    session_id: Optional[str]
    narrative: Optional[NarrativeItinerary] = None
    narrative_error: Optional[str] = None
    narrative_attempted: bool = False
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


Tier = Callable[[_BuildContext], Awaitable[TierOutcome]]


class ItineraryAgent:
    """Build itineraries with graceful degradation."""

    def __init__(
        self,
        *,
        provider: Optional[TravelTimeProvider] = None,
        optimizer: Optional[RouteOptimizer] = None,
        narrative: Optional[NarrativeProvider] = None,
        cache: Optional[GeocodingCache] = None,
        narrative_timeout_s: Optional[float] = None,
        large_narrative_timeout_s: Optional[float] = None,
        optimization_timeout_s: Optional[float] = None,
        large_threshold: Optional[int] = None,
        large_narrative_stops: Optional[int] = None,
    ) -> None:
        if cache is None:
            cache = getattr(provider, "cache", None)
        if cache is None:
            cache = GeocodingCache(
                default_ttl_seconds=config.GEOCODE_CACHE_TTL_SECONDS,
                max_entries=config.GEOCODE_CACHE_MAX_ENTRIES,
                sweep_interval_seconds=config.GEOCODE_CACHE_SWEEP_SECONDS,
            )
        self.cache = cache
        if provider is None or narrative is None:
            missing = config.validate_api_keys()
            if missing:
                logger.warning(f"Missing API keys: {', '.join(missing)} - affected stages will fall back")
        self.provider = provider or TravelTimeProvider(cache)
        self.optimizer = optimizer or RouteOptimizer(self.provider)
        self.narrative = narrative if narrative is not None else NarrativeAgent()
        self.narrative_timeout_s = narrative_timeout_s or config.NARRATIVE_TIMEOUT_SECONDS
        self.large_narrative_timeout_s = large_narrative_timeout_s or config.NARRATIVE_LARGE_TIMEOUT_SECONDS
        self.optimization_timeout_s = optimization_timeout_s or config.OPTIMIZATION_TIMEOUT_SECONDS
        self.large_threshold = large_threshold or config.LARGE_ITINERARY_THRESHOLD
        self.large_narrative_stops = large_narrative_stops or config.LARGE_ITINERARY_NARRATIVE_STOPS
        self._tiers: List[Tier] = [
            self._primary_tier,
            self._large_tier,
            self._narrative_tier,
            self._basic_tier,
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_itinerary(
        self,
        locations: Sequence[str],
        city: str,
        options: Optional[ItineraryOptions] = None,
        session_id: Optional[str] = None,
    ) -> Itinerary:
        coroutine = self.build_itinerary_async(locations, city, options, session_id)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coroutine)
        # Called from inside a running loop: run on a private loop in a worker thread.
        with ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coroutine).result()

    async def build_itinerary_async(
        self,
        locations: Sequence[str],
        city: str,
        options: Optional[ItineraryOptions] = None,
        session_id: Optional[str] = None,
    ) -> Itinerary:
        stops = self._validate_locations(locations)
        ctx = _BuildContext(
            stops=stops,
            city=str(city or "").strip() or "Your",
            options=options or ItineraryOptions(),
            session_id=session_id,
        )
        logger.info(
            f"Building itinerary for {len(stops)} stops in {ctx.city} ({ctx.options.travel_mode})"
        )

        for tier in self._tiers:
            try:
                outcome = await tier(ctx)
            except Exception as exc:
                name = tier.__name__.strip("_").replace("_tier", "")
                logger.error(f"{name} tier failed: {exc}")
                outcome = TierOutcome.unavailable(name, str(exc))

            if outcome.ok:
                logger.info(f"Itinerary built by the {outcome.tier} tier")
                return outcome.itinerary  # type: ignore[return-value]
            if outcome.skipped:
                logger.debug(f"{outcome.tier} tier skipped: {outcome.reason}")
                continue
            logger.warning(f"{outcome.tier} tier unavailable: {outcome.reason}")
            ctx.warn(f"{outcome.tier} tier unavailable: {outcome.reason}")

        raise MalformedInputError("No itinerary could be constructed for the given stops")

    def clear_cache(self) -> None:
        self.cache.clear()

    async def preload_locations(self, addresses: Iterable[str]) -> int:
        return await self.cache.preload(addresses, self.provider.geocode)

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def close(self) -> None:
        self.cache.close()

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    async def _primary_tier(self, ctx: _BuildContext) -> TierOutcome:
        if len(ctx.stops) > self.large_threshold:
            return TierOutcome.skip("primary", f"more than {self.large_threshold} stops")

        narrative, route = await asyncio.gather(
            self._request_narrative(ctx, ctx.stops, self.narrative_timeout_s),
            self._optimize(ctx, force_fast=False),
            return_exceptions=True,
        )
        if isinstance(route, BaseException):
            return TierOutcome.unavailable("primary", f"route optimization failed: {route}")
        if narrative is None or isinstance(narrative, BaseException):
            return TierOutcome.unavailable("primary", f"narrative unavailable: {ctx.narrative_error}")

        mode = TRANSPORTATION_TEXT[ctx.options.travel_mode]
        itinerary = self._assemble(
            ctx,
            route,
            narrative,
            tier="primary",
            title=f"Smart {ctx.city} Itinerary - {mode} route",
        )
        return TierOutcome.success("primary", itinerary)

    async def _large_tier(self, ctx: _BuildContext) -> TierOutcome:
        if len(ctx.stops) <= self.large_threshold:
            return TierOutcome.skip("large", f"{self.large_threshold} stops or fewer")

        logger.info(f"Large itinerary detected ({len(ctx.stops)} stops), using fast route optimization")
        narrative, route = await asyncio.gather(
            self._request_narrative(
                ctx, ctx.stops[: self.large_narrative_stops], self.large_narrative_timeout_s
            ),
            self._optimize(ctx, force_fast=True),
            return_exceptions=True,
        )
        if isinstance(route, BaseException):
            return TierOutcome.unavailable("large", f"route optimization failed: {route}")
        if narrative is None or isinstance(narrative, BaseException):
            narrative = None
            ctx.warn("Narrative unavailable; proceeding with route data only")

        mode = TRANSPORTATION_TEXT[ctx.options.travel_mode]
        itinerary = self._assemble(
            ctx,
            route,
            narrative,
            tier="large",
            title=f"Smart {ctx.city} Itinerary - {mode} route ({len(ctx.stops)} stops)",
        )
        return TierOutcome.success("large", itinerary)

    async def _narrative_tier(self, ctx: _BuildContext) -> TierOutcome:
        narrative = await self._request_narrative(ctx, ctx.stops, self.narrative_timeout_s)
        if narrative is None:
            return TierOutcome.unavailable("narrative", f"narrative unavailable: {ctx.narrative_error}")

        mode = ctx.options.travel_mode
        ordered = order_from_narrative(ctx.stops, narrative)
        route = synthetic_route(ordered, mode, NARRATIVE_HOP_SECONDS, strategy="narrative")
        itinerary = self._assemble(
            ctx,
            route,
            narrative,
            tier="narrative",
            title=f"{ctx.city} Itinerary - {TRANSPORTATION_TEXT[mode]} (Basic)",
            total_duration=narrative.total_duration,
        )
        return TierOutcome.success("narrative", itinerary)

    async def _basic_tier(self, ctx: _BuildContext) -> TierOutcome:
        mode = ctx.options.travel_mode
        route = synthetic_route(ctx.stops, mode, BASIC_HOP_SECONDS, strategy="sequential")
        window = DayWindow.from_options(ctx.options)
        schedule = time_stops(
            plan_stops(route),
            start_minutes=parse_clock_time(BASIC_START_TIME) or 0,
            window=window,
            default_visit_minutes=BASIC_VISIT_MINUTES,
            transportation=TRANSPORTATION_TEXT[mode],
        )
        itinerary = self._finish(
            ctx,
            route,
            schedule,
            tier="basic",
            title=f"{ctx.city} Basic Itinerary",
        )
        return TierOutcome.success("basic", itinerary)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _request_narrative(
        self,
        ctx: _BuildContext,
        stops: Sequence[str],
        timeout_s: float,
    ) -> Optional[NarrativeItinerary]:
        """Ask the collaborator once per build; later tiers reuse the answer."""
        if ctx.narrative_attempted:
            return ctx.narrative
        ctx.narrative_attempted = True
        try:
            ctx.narrative = await asyncio.wait_for(
                self.narrative.generate_itinerary(list(stops), ctx.city, ctx.session_id),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            ctx.narrative_error = f"timed out after {timeout_s:.0f}s"
        except NarrativeUnavailableError as exc:
            ctx.narrative_error = str(exc)
        except Exception as exc:
            ctx.narrative_error = f"{type(exc).__name__}: {exc}"
        if ctx.narrative_error:
            logger.warning(f"Narrative request failed: {ctx.narrative_error}")
        return ctx.narrative

    async def _optimize(self, ctx: _BuildContext, *, force_fast: bool) -> OptimizedRoute:
        return await asyncio.wait_for(
            self.optimizer.optimize(
                ctx.stops,
                ctx.options.travel_mode,
                force_fast=force_fast,
                start_from=ctx.options.hotel_location,
            ),
            timeout=self.optimization_timeout_s,
        )

    def _assemble(
        self,
        ctx: _BuildContext,
        route: OptimizedRoute,
        narrative: Optional[NarrativeItinerary],
        *,
        tier: str,
        title: str,
        total_duration: Optional[str] = None,
    ) -> Itinerary:
        options = ctx.options
        durations: Dict[str, str] = {}
        if narrative is not None:
            for label in route.ordered_locations:
                match = find_narrative_stop(label, narrative.stops)
                if match and match.duration and parse_duration_text(match.duration, default=None):
                    durations[label] = match.duration

        schedule = time_stops(
            plan_stops(route, durations),
            start_minutes=parse_clock_time(options.start_time) or 0,
            window=DayWindow.from_options(options),
            default_visit_minutes=options.visit_duration_minutes,
            transportation=TRANSPORTATION_TEXT[options.travel_mode],
        )
        if options.include_breaks:
            schedule = insert_meal_breaks(schedule)
        schedule = merge_narrative_notes(schedule, narrative)

        return self._finish(
            ctx,
            route,
            schedule,
            tier=tier,
            title=title,
            total_duration=total_duration,
            narrative_missing=narrative is None,
        )

    def _finish(
        self,
        ctx: _BuildContext,
        route: OptimizedRoute,
        schedule: Tuple[ScheduleItem, ...],
        *,
        tier: str,
        title: str,
        total_duration: Optional[str] = None,
        narrative_missing: bool = False,
    ) -> Itinerary:
        if route.estimated:
            ctx.warn("Some travel times are estimated")
        fallback_used = tier not in ("primary", "large") or route.estimated or narrative_missing
        return Itinerary(
            title=title,
            total_duration=total_duration or total_duration_text(schedule),
            total_travel_time=format_seconds(route.total_travel_time_seconds),
            schedule=schedule,
            route=route,
            day_count=day_count(schedule),
            fallback_used=fallback_used,
            tier=tier,
            warnings=tuple(ctx.warnings),
        )

    @staticmethod
    def _validate_locations(locations: Sequence[str]) -> Tuple[str, ...]:
        if locations is None or isinstance(locations, str):
            raise MalformedInputError("locations must be a list of stop names")
        stops = tuple(locations)
        if not stops:
            raise MalformedInputError("At least one location is required")
        cleaned: List[str] = []
        for index, stop in enumerate(stops):
            if not isinstance(stop, str) or not stop.strip():
                raise MalformedInputError(f"Location #{index + 1} is empty")
            cleaned.append(stop.strip())
        return tuple(cleaned)


# ============================================================================
# Fallback route construction
# ============================================================================

def order_from_narrative(stops: Sequence[str], narrative: NarrativeItinerary) -> Tuple[str, ...]:
    """Narrative order restricted to known stops; unmentioned stops go last."""
    remaining = list(stops)
    ordered: List[str] = []
    for suggestion in narrative.stops:
        match = next(
            (
                stop
                for exact in (True, False)
                for stop in remaining
                if labels_match(stop, suggestion.label, exact=exact)
            ),
            None,
        )
        if match is not None:
            ordered.append(match)
            remaining.remove(match)
    return tuple(ordered + remaining)


def synthetic_route(
    ordered: Sequence[str],
    mode: TravelMode,
    hop_seconds: int,
    *,
    strategy: str,
) -> OptimizedRoute:
    """Route in the given order with a fixed, estimated cost per hop."""
    steps: List[RouteStep] = []
    for origin, destination in zip(ordered, ordered[1:]):
        travel = zero_travel_time() if origin == destination else make_travel_time(
            hop_seconds, 0, estimated=True
        )
        steps.append(
            RouteStep(
                origin=origin,
                destination=destination,
                travel_time=travel,
                mode=mode,
                navigation_url=navigation_url(origin, destination, mode),
            )
        )
    return OptimizedRoute.from_steps(tuple(ordered), tuple(steps), strategy)


__all__ = [
    "ItineraryAgent",
    "MalformedInputError",
    "TierOutcome",
    "order_from_narrative",
    "synthetic_route",
]
