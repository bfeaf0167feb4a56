# tools/routes.py
"""Travel-time provider backed by Google Geocoding and the Routes API.

``TravelTimeProvider.travel_time`` never raises: provider failures are
converted into estimates so the optimizer always receives a usable value.

    provider error ............................. synthetic estimate
    no route (transit) ... driving-derived ..... synthetic estimate
    no route (walking / driving) ............... synthetic estimate
"""
from __future__ import annotations

import asyncio
import logging
import math
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

import config
from tools.durations import format_distance, format_seconds
from tools.geocoding_cache import GeocodingCache
from workflows.schemas import Coordinates, TravelMode, TravelTime

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
ROUTES_ENDPOINT = "https://routes.googleapis.com/directions/v2:computeRoutes"
ROUTES_FIELD_MASK = "routes.duration,routes.distanceMeters,routes.legs.duration,routes.legs.distanceMeters"

EARTH_RADIUS_KM = 6371.0

_ROUTES_TRAVEL_MODE = {"walking": "WALK", "driving": "DRIVE", "transit": "TRANSIT"}

# Synthetic estimate used when the provider is unavailable.
_FALLBACK_SPEED_KMH = {"walking": 4.5, "driving": 20.0, "transit": 12.0}
_FALLBACK_DISTANCE_RANGE_M = (800.0, 2000.0)
_FALLBACK_TRANSIT_WAIT_RANGE_S = (300.0, 900.0)

# Transit derived from a driving route.
TRANSIT_SLOWDOWN_FACTOR = 1.5
TRANSIT_WAIT_ALLOWANCE_S = 900

# Straight-line estimate used by the optimizer's geographic path.
_GEOGRAPHIC_SPEED_KMH = {"walking": 5.0, "driving": 30.0, "transit": 20.0}

_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
_QUOTA_STATUSES = {"OVER_DAILY_LIMIT", "OVER_QUERY_LIMIT"}


class RoutesAPIError(Exception):
    """Raised when the mapping backend cannot answer."""

    def __init__(self, message: str, api_status: str = "UNKNOWN_ERROR", status_code: int = 500) -> None:
        super().__init__(message)
        self.api_status = api_status
        self.status_code = status_code

    @property
    def quota_exceeded(self) -> bool:
        return self.api_status in _QUOTA_STATUSES

    @property
    def rate_limited(self) -> bool:
        return self.api_status == "OVER_QUERY_LIMIT" or self.status_code == 429


class ProviderUnavailableError(RoutesAPIError):
    """Quota, rate limit, network, timeout or configuration failure."""


class NoRouteFoundError(RoutesAPIError):
    """The backend answered but returned no usable route."""

    def __init__(self, message: str) -> None:
        super().__init__(message, api_status="ZERO_RESULTS", status_code=404)


# ============================================================================
# HTTP helper
# ============================================================================

def _is_retryable_error(exc: BaseException) -> bool:
    status = getattr(getattr(exc, "response", None), "status_code", None)
    return isinstance(status, int) and status in _RETRYABLE_STATUSES


async def _request(method: str, url: str, **kw: Any) -> httpx.Response:
    """Send one request, retrying 429/5xx with exponential backoff."""
    timeout_s = kw.pop("timeout", config.PROVIDER_TIMEOUT_SECONDS)
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(_is_retryable_error),
        wait=wait_exponential(min=0.5, max=4),
        stop=stop_after_attempt(max(1, config.PROVIDER_MAX_ATTEMPTS)),
        reraise=True,
    ):
        with attempt:
            async with httpx.AsyncClient(timeout=timeout_s) as client:
                r = await client.request(method, url, **kw)
                r.raise_for_status()
                return r
    raise RuntimeError("retry loop exited without a response")  # pragma: no cover


# ============================================================================
# Pure helpers
# ============================================================================

def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometers."""
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def make_travel_time(duration_s: float, distance_m: float, *, estimated: bool = False) -> TravelTime:
    duration_s = max(0, int(round(duration_s)))
    distance_m = max(0, int(round(distance_m)))
    return TravelTime(
        duration_seconds=duration_s,
        distance_meters=distance_m,
        duration_text=format_seconds(duration_s),
        distance_text=format_distance(distance_m),
        estimated=estimated,
    )


def zero_travel_time() -> TravelTime:
    return make_travel_time(0, 0)


def estimate_from_distance(distance_km: float, mode: TravelMode) -> TravelTime:
    """Straight-line distance converted at an assumed city speed."""
    speed = _GEOGRAPHIC_SPEED_KMH.get(mode, _GEOGRAPHIC_SPEED_KMH["walking"])
    seconds = distance_km / speed * 3600
    # A non-zero hop between distinct stops keeps zero reserved for identical endpoints.
    return make_travel_time(max(seconds, 60), distance_km * 1000, estimated=True)


def navigation_url(origin: str, destination: str, mode: TravelMode) -> str:
    params = urlencode({"api": "1", "origin": origin, "destination": destination, "travelmode": mode})
    return f"https://www.google.com/maps/dir/?{params}"


def _duration_to_seconds(proto_duration: Optional[str]) -> int:
    # Duration strings look like "123s" or "3.5s"
    if not proto_duration:
        return 0
    s = str(proto_duration).strip().rstrip("s")
    try:
        return int(float(s))
    except ValueError:
        return 0


def _latlng(coords: Coordinates) -> Dict[str, Any]:
    return {"location": {"latLng": {"latitude": coords.lat, "longitude": coords.lng}}}


# ============================================================================
# Provider
# ============================================================================

class TravelTimeProvider:
    """Geocoding and point-to-point travel times with built-in degradation."""

    def __init__(
        self,
        cache: GeocodingCache,
        *,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.cache = cache
        self.api_key = api_key if api_key is not None else config.get_google_maps_api_key()
        self.timeout_s = timeout_s if timeout_s is not None else config.PROVIDER_TIMEOUT_SECONDS
        self._rng = rng or random.Random()
        self.request_count = 0
        if not self.api_key:
            logger.warning("Google Maps API key not provided - travel times will be estimated")

    # ------------------------------------------------------------------
    # Geocoding
    # ------------------------------------------------------------------

    async def geocode(self, address: str) -> Optional[Coordinates]:
        """Coordinates for ``address`` or ``None`` when unavailable."""
        try:
            return await self._geocode_strict(address)
        except RoutesAPIError as exc:
            logger.warning(f"Geocoding unavailable for '{address}': {exc}")
            return None

    async def _geocode_strict(self, address: str) -> Optional[Coordinates]:
        cached = self.cache.get(address)
        if cached is not None:
            return cached
        if not self.api_key:
            raise ProviderUnavailableError("GOOGLE_MAPS_API_KEY is not set", "REQUEST_DENIED", 403)

        data = await self._call("GET", GEOCODE_URL, params={"address": address, "key": self.api_key})
        status = data.get("status", "OK")
        if status == "ZERO_RESULTS" or (status == "OK" and not data.get("results")):
            logger.warning(f"No geocoding results found for: {address}")
            return None
        if status != "OK":
            code = 429 if status in _QUOTA_STATUSES else 403 if status == "REQUEST_DENIED" else 500
            message = data.get("error_message") or status
            raise ProviderUnavailableError(f"Geocoding API error: {message}", status, code)

        loc = data["results"][0]["geometry"]["location"]
        coords = Coordinates(lat=float(loc["lat"]), lng=float(loc["lng"]))
        self.cache.set(address, coords)
        return coords

    # ------------------------------------------------------------------
    # Travel time
    # ------------------------------------------------------------------

    async def travel_time(
        self,
        origin: str,
        destination: str,
        mode: TravelMode = "walking",
        departure_time: Optional[datetime] = None,
    ) -> TravelTime:
        if origin == destination:
            return zero_travel_time()

        try:
            return await self.route_travel_time(origin, destination, mode, departure_time)
        except NoRouteFoundError:
            if mode == "transit":
                logger.warning(
                    f"No transit route {origin} -> {destination}, deriving estimate from driving"
                )
                try:
                    return await self._transit_from_driving(origin, destination, departure_time)
                except RoutesAPIError as exc:
                    logger.warning(f"Driving fallback also failed ({exc}), using distance-based estimate")
            else:
                logger.warning(f"No {mode} route {origin} -> {destination}, using distance-based estimate")
        except RoutesAPIError as exc:
            logger.warning(
                f"Routes API unavailable for {origin} -> {destination} "
                f"(status={exc.api_status}, quota={exc.quota_exceeded}): {exc}"
            )
        return self.fallback_estimate(mode)

    async def route_travel_time(
        self,
        origin: str,
        destination: str,
        mode: TravelMode,
        departure_time: Optional[datetime] = None,
    ) -> TravelTime:
        """Live travel time; raises ``RoutesAPIError`` subclasses on failure."""
        if not self.api_key:
            raise ProviderUnavailableError("GOOGLE_MAPS_API_KEY is not set", "REQUEST_DENIED", 403)

        origin_coords = await self._geocode_strict(origin)
        dest_coords = await self._geocode_strict(destination)
        if origin_coords is None or dest_coords is None:
            raise ProviderUnavailableError(
                "Failed to geocode locations for Routes API", "GEOCODING_FAILED", 400
            )

        body: Dict[str, Any] = {
            "origin": _latlng(origin_coords),
            "destination": _latlng(dest_coords),
            "travelMode": _ROUTES_TRAVEL_MODE[mode],
            "computeAlternativeRoutes": False,
            "languageCode": "en-US",
            "units": "METRIC",
        }
        if mode == "transit":
            departure = departure_time or datetime.now(timezone.utc) + timedelta(minutes=5)
            if departure.tzinfo is None:
                departure = departure.replace(tzinfo=timezone.utc)
            body["departureTime"] = departure.isoformat().replace("+00:00", "Z")
            body["transitPreferences"] = {
                "allowedTravelModes": ["BUS", "SUBWAY", "TRAIN", "RAIL"],
                "routingPreference": "LESS_WALKING",
            }
        elif mode == "driving":
            body["routingPreference"] = "TRAFFIC_AWARE"

        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": ROUTES_FIELD_MASK,
        }
        data = await self._call("POST", ROUTES_ENDPOINT, headers=headers, json=body)

        routes = data.get("routes") or []
        if not routes:
            raise NoRouteFoundError(f"No {mode} route returned for {origin} -> {destination}")

        route = routes[0]
        legs = route.get("legs") or []
        duration_s = _duration_to_seconds(route.get("duration"))
        if not duration_s and legs:
            duration_s = sum(_duration_to_seconds(leg.get("duration")) for leg in legs)
        distance_m = int(route.get("distanceMeters") or 0)
        if not distance_m and legs:
            distance_m = sum(int(leg.get("distanceMeters") or 0) for leg in legs)

        if duration_s <= 0:
            raise NoRouteFoundError(f"Route without duration for {origin} -> {destination}")
        return make_travel_time(duration_s, distance_m)

    async def _transit_from_driving(
        self,
        origin: str,
        destination: str,
        departure_time: Optional[datetime],
    ) -> TravelTime:
        driving = await self.route_travel_time(origin, destination, "driving", departure_time)
        duration = driving.duration_seconds * TRANSIT_SLOWDOWN_FACTOR + TRANSIT_WAIT_ALLOWANCE_S
        logger.info(
            f"Transit time estimated from driving data: {driving.duration_text} driving "
            f"-> {format_seconds(duration)} transit"
        )
        return make_travel_time(duration, driving.distance_meters, estimated=True)

    def fallback_estimate(self, mode: TravelMode) -> TravelTime:
        """Synthetic city-block estimate for when no live data is available."""
        distance_m = self._rng.uniform(*_FALLBACK_DISTANCE_RANGE_M)
        speed = _FALLBACK_SPEED_KMH.get(mode, _FALLBACK_SPEED_KMH["walking"])
        duration_s = (distance_m / 1000) * (3600 / speed)
        if mode == "transit":
            duration_s += self._rng.uniform(*_FALLBACK_TRANSIT_WAIT_RANGE_S)
        return make_travel_time(duration_s, distance_m, estimated=True)

    async def _call(self, method: str, url: str, **kw: Any) -> Dict[str, Any]:
        self.request_count += 1
        try:
            r = await asyncio.wait_for(
                _request(method, url, timeout=self.timeout_s, **kw),
                timeout=self.timeout_s * max(1, config.PROVIDER_MAX_ATTEMPTS) + 5,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailableError(f"Timed out calling {url}", "TIMEOUT", 504) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderUnavailableError(
                f"HTTP {status} calling {url}: {exc.response.text[:300]}", "HTTP_ERROR", status
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"HTTP error calling {url}: {exc}", "NETWORK_ERROR") from exc

        try:
            data = r.json()
        except ValueError as exc:
            raise ProviderUnavailableError(f"Invalid JSON from {url}", "INVALID_RESPONSE") from exc
        if not isinstance(data, dict):
            raise ProviderUnavailableError(f"Unexpected payload from {url}", "INVALID_RESPONSE")
        return data


__all__ = [
    "NoRouteFoundError",
    "ProviderUnavailableError",
    "RoutesAPIError",
    "TravelTimeProvider",
    "estimate_from_distance",
    "haversine_km",
    "make_travel_time",
    "navigation_url",
    "zero_travel_time",
]
