# tests/agents/test_route_optimizer.py
"""Tests for RouteOptimizer using in-memory providers."""
from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from agents.route_optimizer import RouteOptimizer, nearest_neighbor_order
from workflows.schemas import Coordinates


def _optimize(optimizer, locations, mode="walking", **kw):
    return asyncio.run(optimizer.optimize(locations, mode, **kw))


def _assert_route_invariants(route, locations):
    assert Counter(route.ordered_locations) == Counter(locations)
    if route.ordered_locations:
        assert len(route.steps) == len(route.ordered_locations) - 1
    assert route.total_travel_time_seconds == sum(s.travel_time.duration_seconds for s in route.steps)
    assert route.total_distance_meters == sum(s.travel_time.distance_meters for s in route.steps)
    for step, (origin, destination) in zip(route.steps, zip(route.ordered_locations, route.ordered_locations[1:])):
        assert (step.origin, step.destination) == (origin, destination)


# ==================== FIXTURES ====================

@pytest.fixture
def exact_provider(table_provider):
    seconds = {
        ("A", "C"): 100,
        ("A", "B"): 300,
        ("A", "D"): 500,
        ("C", "D"): 50,
        ("C", "B"): 200,
        ("D", "B"): 70,
    }
    return table_provider(seconds, default_seconds=900)


@pytest.fixture
def line_provider(table_provider):
    # Input order is shuffled along a line of longitudes.
    longitudes = [0, 5, 1, 6, 2, 7, 3, 8, 4]
    coords = {f"S{i}": Coordinates(lat=0.0, lng=lng / 100) for i, lng in enumerate(longitudes)}
    return table_provider(coords=coords)


# ==================== NEAREST NEIGHBOUR ====================

def test_nearest_neighbor_prefers_cheapest_then_lowest_index():
    costs = [
        [0, 5, 5, 1],
        [5, 0, 2, 9],
        [5, 2, 0, 9],
        [1, 3, 3, 0],
    ]
    assert nearest_neighbor_order(4, lambda i, j: costs[i][j]) == [0, 3, 1, 2]
    assert nearest_neighbor_order(0, lambda i, j: 0) == []
    assert nearest_neighbor_order(3, lambda i, j: 0, start=2) == [2, 0, 1]


# ==================== TRIVIAL SIZES ====================

def test_empty_input_returns_empty_route(table_provider):
    route = _optimize(RouteOptimizer(table_provider()), [])

    assert route.ordered_locations == ()
    assert route.steps == ()
    assert route.total_travel_time_seconds == 0


def test_single_stop_has_no_steps(table_provider):
    provider = table_provider()
    route = _optimize(RouteOptimizer(provider), ["Louvre"])

    assert route.ordered_locations == ("Louvre",)
    assert route.steps == ()
    assert provider.travel_calls == []


def test_two_stops_keep_input_order_with_one_step(table_provider):
    provider = table_provider({("Louvre", "Eiffel Tower"): 1500})
    route = _optimize(RouteOptimizer(provider), ["Louvre", "Eiffel Tower"])

    assert route.ordered_locations == ("Louvre", "Eiffel Tower")
    assert len(route.steps) == 1
    assert route.total_travel_time_seconds == 1500
    assert route.strategy == "trivial"
    assert route.steps[0].navigation_url.startswith("https://www.google.com/maps/dir/")
    assert len(provider.travel_calls) == 1


# ==================== EXACT PATH ====================

def test_exact_path_walks_nearest_neighbor_over_matrix(exact_provider):
    route = _optimize(RouteOptimizer(exact_provider), ["A", "B", "C", "D"])

    assert route.ordered_locations == ("A", "C", "D", "B")
    assert route.total_travel_time_seconds == 100 + 50 + 70
    assert route.strategy == "exact"
    assert len(exact_provider.travel_calls) == 4 * 3
    _assert_route_invariants(route, ["A", "B", "C", "D"])


def test_exact_path_ties_keep_input_order(table_provider):
    stops = ["P", "Q", "R", "S", "T"]
    route = _optimize(RouteOptimizer(table_provider(default_seconds=600)), stops)

    assert route.ordered_locations == tuple(stops)
    _assert_route_invariants(route, stops)


def test_exact_path_with_duplicate_stops_is_a_permutation(table_provider):
    stops = ["A", "B", "A", "C"]
    route = _optimize(RouteOptimizer(table_provider()), stops)

    _assert_route_invariants(route, stops)
    zero_hops = [s for s in route.steps if s.origin == s.destination]
    assert all(s.travel_time.duration_seconds == 0 for s in zero_hops)


def test_exact_path_survives_failing_provider(table_provider):
    stops = ["A", "B", "C"]
    route = _optimize(RouteOptimizer(table_provider(fail=True)), stops)

    _assert_route_invariants(route, stops)
    assert route.estimated
    assert all(s.travel_time.duration_seconds > 0 for s in route.steps)


# ==================== FAST PATH ====================

def test_fast_path_orders_by_great_circle_distance(line_provider):
    stops = [f"S{i}" for i in range(9)]
    route = _optimize(RouteOptimizer(line_provider, pacing_s=0), stops)

    assert route.strategy == "fast"
    assert route.ordered_locations == ("S0", "S2", "S4", "S6", "S8", "S1", "S3", "S5", "S7")
    _assert_route_invariants(route, stops)


def test_fast_path_prices_only_chosen_edges(line_provider):
    stops = [f"S{i}" for i in range(9)]
    route = _optimize(RouteOptimizer(line_provider, pacing_s=0), stops)

    assert len(line_provider.travel_calls) == len(stops) - 1
    assert sorted(line_provider.geocode_calls) == sorted(stops)
    priced = [(origin, destination) for origin, destination, _ in line_provider.travel_calls]
    assert sorted(priced) == sorted((s.origin, s.destination) for s in route.steps)


def test_fast_path_failed_edges_become_geographic_estimates(table_provider):
    stops = [f"Stop {i}" for i in range(12)]
    route = _optimize(RouteOptimizer(table_provider(fail=True), pacing_s=0), stops)

    _assert_route_invariants(route, stops)
    assert route.ordered_locations == tuple(stops)
    assert route.estimated
    assert all(s.travel_time.estimated for s in route.steps)


def test_force_fast_on_small_input(line_provider):
    route = _optimize(RouteOptimizer(line_provider, pacing_s=0), ["S0", "S1", "S2"], force_fast=True)

    assert route.strategy == "fast"
    assert route.ordered_locations == ("S0", "S2", "S1")


# ==================== ANCHORED START ====================

def test_start_from_anchor_is_not_part_of_route(table_provider):
    provider = table_provider({("Hotel", "C"): 60, ("C", "A"): 120, ("A", "B"): 180}, default_seconds=1000)
    route = _optimize(RouteOptimizer(provider), ["A", "B", "C"], start_from="Hotel")

    assert route.ordered_locations == ("C", "A", "B")
    assert route.total_travel_time_seconds == 120 + 180
    _assert_route_invariants(route, ["A", "B", "C"])


def test_anchor_does_not_count_toward_exact_path_size(table_provider):
    stops = [f"S{i}" for i in range(8)]
    provider = table_provider()

    route = _optimize(RouteOptimizer(provider, pacing_s=0), stops, start_from="Hotel")

    assert route.strategy == "exact"
    assert len(provider.travel_calls) == 9 * 8
    _assert_route_invariants(route, stops)


def test_anchor_with_nine_stops_takes_fast_path(line_provider):
    stops = [f"S{i}" for i in range(9)]

    route = _optimize(RouteOptimizer(line_provider, pacing_s=0), stops, start_from="Hotel")

    assert route.strategy == "fast"
    assert Counter(route.ordered_locations) == Counter(stops)
