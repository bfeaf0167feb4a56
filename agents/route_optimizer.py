# agents/route_optimizer.py
"""RouteOptimizer: orders stops with a greedy nearest-neighbour walk.

Two strategies trade accuracy for provider calls:

* exact (3-8 stops): full pairwise travel-time matrix, O(n^2) calls.
* fast (9+ stops): geocode once per stop, walk on great-circle distance and
  only price the n-1 chosen hops, O(n) calls.

This is a heuristic, not a TSP solver; it guarantees a deterministic order
that is never worse to compute than the matrix it is given.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import config
from tools.routes import (
    TravelTimeProvider,
    estimate_from_distance,
    haversine_km,
    navigation_url,
    zero_travel_time,
)
from workflows.schemas import Coordinates, OptimizedRoute, RouteStep, TravelMode, TravelTime

logger = logging.getLogger(__name__)

EXACT_PATH_MAX_STOPS = 8
_ORIGIN = Coordinates(lat=0.0, lng=0.0)


def nearest_neighbor_order(size: int, cost: Callable[[int, int], float], start: int = 0) -> List[int]:
    """Greedy walk over indices ``0..size-1`` starting at ``start``.

    Ties go to the lowest index: ``min`` keeps the first of equal costs and
    the remaining indices stay in ascending order.
    """
    if size <= 0:
        return []
    order = [start]
    remaining = [index for index in range(size) if index != start]
    current = start
    while remaining:
        current = min(remaining, key=lambda candidate: cost(current, candidate))
        remaining.remove(current)
        order.append(current)
    return order


class RouteOptimizer:
    """Produce an ``OptimizedRoute`` for an unordered list of stops."""

    def __init__(
        self,
        provider: TravelTimeProvider,
        *,
        max_concurrency: Optional[int] = None,
        pacing_s: Optional[float] = None,
    ) -> None:
        self.provider = provider
        self.max_concurrency = max(1, max_concurrency or config.ROUTE_MAX_CONCURRENCY)
        self.pacing_s = config.FAST_PATH_PACING_SECONDS if pacing_s is None else max(0.0, pacing_s)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def optimize(
        self,
        locations: Sequence[str],
        mode: TravelMode = "walking",
        *,
        force_fast: bool = False,
        start_from: Optional[str] = None,
    ) -> OptimizedRoute:
        stops = list(locations)
        if not stops:
            return OptimizedRoute()

        if start_from:
            return await self._optimize_from_anchor(stops, mode, start_from, force_fast)

        if len(stops) <= 2 and not force_fast:
            return await self._trivial(stops, mode)
        if force_fast or len(stops) > EXACT_PATH_MAX_STOPS:
            return await self._fast(stops, mode)
        return await self._exact(stops, mode)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _trivial(self, stops: List[str], mode: TravelMode) -> OptimizedRoute:
        steps: Tuple[RouteStep, ...] = ()
        if len(stops) == 2:
            matrix = await self._build_matrix(stops, mode, pairs=[(0, 1)])
            steps = (self._step(stops[0], stops[1], matrix[(0, 1)], mode),)
        return OptimizedRoute.from_steps(tuple(stops), steps, "trivial")

    async def _exact(self, stops: List[str], mode: TravelMode, start: int = 0) -> OptimizedRoute:
        logger.info(f"Optimizing {len(stops)} stops with the travel-time matrix ({mode})")
        matrix = await self._build_matrix(stops, mode)
        order = nearest_neighbor_order(
            len(stops), lambda i, j: matrix[(i, j)].duration_seconds, start=start
        )
        steps = tuple(
            self._step(stops[i], stops[j], matrix[(i, j)], mode) for i, j in zip(order, order[1:])
        )
        route = OptimizedRoute.from_steps(tuple(stops[i] for i in order), steps, "exact")
        logger.info(
            f"Exact route ready: {route.total_travel_time_seconds}s, {route.total_distance_meters}m"
        )
        return route

    async def _fast(self, stops: List[str], mode: TravelMode, start: int = 0) -> OptimizedRoute:
        logger.info(f"Optimizing {len(stops)} stops on straight-line distance ({mode})")
        coords = await self._geocode_all(stops)
        order = nearest_neighbor_order(
            len(stops), lambda i, j: haversine_km(coords[i], coords[j]), start=start
        )
        edges = list(zip(order, order[1:]))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _price(position: int, i: int, j: int) -> TravelTime:
            async with semaphore:
                if position and self.pacing_s:
                    await asyncio.sleep(self.pacing_s)
                try:
                    return await self.provider.travel_time(stops[i], stops[j], mode)
                except Exception as exc:
                    logger.warning(
                        f"Travel time {stops[i]} -> {stops[j]} failed ({exc}), using straight-line estimate"
                    )
                    if stops[i] == stops[j]:
                        return zero_travel_time()
                    return estimate_from_distance(haversine_km(coords[i], coords[j]), mode)

        travel_times = await asyncio.gather(
            *(_price(position, i, j) for position, (i, j) in enumerate(edges))
        )
        steps = tuple(
            self._step(stops[i], stops[j], travel, mode)
            for (i, j), travel in zip(edges, travel_times)
        )
        route = OptimizedRoute.from_steps(tuple(stops[i] for i in order), steps, "fast")
        logger.info(
            f"Fast route ready: {route.total_travel_time_seconds}s, {route.total_distance_meters}m"
        )
        return route

    async def _optimize_from_anchor(
        self,
        stops: List[str],
        mode: TravelMode,
        anchor: str,
        force_fast: bool,
    ) -> OptimizedRoute:
        """Walk from ``anchor`` (e.g. the hotel) and drop it from the result."""
        candidates = [anchor] + stops
        # The anchor is not a stop; size the strategy on the stops alone.
        if force_fast or len(stops) > EXACT_PATH_MAX_STOPS:
            route = await self._fast(candidates, mode)
        else:
            route = await self._exact(candidates, mode)
        return OptimizedRoute.from_steps(route.ordered_locations[1:], route.steps[1:], route.strategy)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _build_matrix(
        self,
        stops: List[str],
        mode: TravelMode,
        pairs: Optional[List[Tuple[int, int]]] = None,
    ) -> Dict[Tuple[int, int], TravelTime]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        if pairs is None:
            pairs = [(i, j) for i in range(len(stops)) for j in range(len(stops)) if i != j]

        async def _cell(i: int, j: int) -> TravelTime:
            async with semaphore:
                try:
                    return await self.provider.travel_time(stops[i], stops[j], mode)
                except Exception as exc:
                    logger.warning(f"Travel time {stops[i]} -> {stops[j]} failed ({exc}), estimating")
            coords = await self._geocode_all([stops[i], stops[j]])
            if stops[i] == stops[j]:
                return zero_travel_time()
            return estimate_from_distance(haversine_km(coords[0], coords[1]), mode)

        results = await asyncio.gather(*(_cell(i, j) for i, j in pairs))
        return dict(zip(pairs, results))

    async def _geocode_all(self, stops: List[str]) -> List[Coordinates]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        unique = list(dict.fromkeys(stops))

        async def _lookup(address: str) -> Coordinates:
            async with semaphore:
                try:
                    coords = await self.provider.geocode(address)
                except Exception as exc:
                    logger.warning(f"Geocoding {address} failed: {exc}")
                    coords = None
            if coords is None:
                logger.warning(f"No coordinates for {address}, placing it at (0, 0)")
                return _ORIGIN
            return coords

        found = await asyncio.gather(*(_lookup(address) for address in unique))
        by_address = dict(zip(unique, found))
        return [by_address[stop] for stop in stops]

    @staticmethod
    def _step(origin: str, destination: str, travel: TravelTime, mode: TravelMode) -> RouteStep:
        return RouteStep(
            origin=origin,
            destination=destination,
            travel_time=travel,
            mode=mode,
            navigation_url=navigation_url(origin, destination, mode),
        )


__all__ = ["EXACT_PATH_MAX_STOPS", "RouteOptimizer", "nearest_neighbor_order"]
