# tools/geocoding_cache.py
"""TTL- and capacity-bounded cache of geocoding results.

Keys are normalized addresses so that "Paris" and "paris " share an entry.
When the cache is full, the entry with the oldest insertion timestamp is
evicted (FIFO). Reads never refresh an entry, so this is not an LRU.

One instance is created at application start and handed to the travel-time
provider; it is safe to share between concurrent itinerary requests.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from workflows.schemas import Coordinates

logger = logging.getLogger(__name__)

_ESTIMATED_BYTES_PER_ENTRY = 200


@dataclass(frozen=True)
class CacheEntry:
    coordinates: Coordinates
    inserted_at: float
    ttl_seconds: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl_seconds


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    hit_count: int
    miss_count: int
    hit_rate: float
    memory_usage: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "hit_rate": self.hit_rate,
            "memory_usage": self.memory_usage,
        }


def normalize_address(address: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = str(address).lower()
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


class GeocodingCache:
    """Thread-safe address -> coordinates store."""

    def __init__(
        self,
        *,
        default_ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 1000,
        sweep_interval_seconds: float = 60 * 60,
        clock: Callable[[], float] = time.time,
        auto_sweep: bool = True,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max(1, max_entries)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hit_count = 0
        self._miss_count = 0
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if auto_sweep:
            self.start_sweeper()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, address: str) -> Optional[Coordinates]:
        key = normalize_address(address)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._miss_count += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._miss_count += 1
                return None
            self._hit_count += 1
        logger.debug(f"Cache hit for: {address}")
        return entry.coordinates

    def set(self, address: str, coordinates: Coordinates, ttl: Optional[float] = None) -> None:
        key = normalize_address(address)
        entry = CacheEntry(
            coordinates=coordinates,
            inserted_at=self._clock(),
            ttl_seconds=self.default_ttl_seconds if ttl is None else ttl,
        )
        with self._lock:
            if key in self._entries:
                # Re-insert so the refreshed entry moves to the back of the queue.
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._evict_oldest()
            self._entries[key] = entry
        logger.debug(f"Cached coordinates for: {address}")

    def has(self, address: str) -> bool:
        key = normalize_address(address)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, address: str) -> bool:
        with self._lock:
            return self._entries.pop(normalize_address(address), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hit_count = 0
            self._miss_count = 0
        logger.info("Geocoding cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired geocoding entries")
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hit_count + self._miss_count
            hit_rate = (self._hit_count / total) * 100 if total else 0.0
            return CacheStats(
                total_entries=len(self._entries),
                hit_count=self._hit_count,
                miss_count=self._miss_count,
                hit_rate=hit_rate,
                memory_usage=len(self._entries) * _ESTIMATED_BYTES_PER_ENTRY,
            )

    def entries(self) -> List[Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            return [
                {"address": key, "coordinates": entry.coordinates, "age": now - entry.inserted_at}
                for key, entry in self._entries.items()
            ]

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        if self.sweep_interval_seconds <= 0:
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="geocoding-cache-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop_event.set()
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=1.0)

    close = stop_sweeper

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            self.cleanup()

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda key: self._entries[key].inserted_at)
        del self._entries[oldest_key]
        logger.debug(f"Evicted oldest geocoding entry: {oldest_key}")

    # ------------------------------------------------------------------
    # Warm-up and persistence
    # ------------------------------------------------------------------

    async def preload(
        self,
        addresses: Iterable[str],
        lookup: Callable[[str], Awaitable[Optional[Coordinates]]],
    ) -> int:
        """Geocode addresses that are not cached yet; returns how many were stored.

        A failing lookup is logged and skipped so one bad address cannot abort
        the batch.
        """
        pending = [address for address in dict.fromkeys(addresses) if not self.has(address)]
        logger.info(f"Preloading {len(pending)} addresses into geocoding cache")

        async def _load(address: str) -> bool:
            try:
                coordinates = await lookup(address)
            except Exception as exc:
                logger.warning(f"Failed to preload {address}: {exc}")
                return False
            if coordinates is None:
                return False
            self.set(address, coordinates)
            return True

        results = await asyncio.gather(*(_load(address) for address in pending))
        loaded = sum(1 for ok in results if ok)
        logger.info(f"Preloading completed: {loaded}/{len(pending)} addresses cached")
        return loaded

    def export(self) -> str:
        with self._lock:
            data = {
                "entries": [
                    [
                        key,
                        {
                            "coordinates": entry.coordinates.model_dump(),
                            "timestamp": entry.inserted_at,
                            "ttl": entry.ttl_seconds,
                        },
                    ]
                    for key, entry in self._entries.items()
                ],
                "stats": {"hit_count": self._hit_count, "miss_count": self._miss_count},
                "timestamp": self._clock(),
            }
        return json.dumps(data)

    def import_(self, data: str) -> bool:
        """Replace the contents with a previous ``export()``; ``False`` if malformed."""
        try:
            parsed = json.loads(data)
            raw_entries = parsed["entries"]
            if not isinstance(raw_entries, list):
                raise ValueError("Invalid cache data format")
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.error(f"Failed to import cache data: {exc}")
            return False

        imported: Dict[str, CacheEntry] = {}
        for item in raw_entries:
            entry = self._entry_from_raw(item)
            if entry is not None:
                imported[item[0]] = entry

        stats = parsed.get("stats") or {}
        with self._lock:
            self._entries = imported
            self._hit_count = int(stats.get("hit_count", 0) or 0)
            self._miss_count = int(stats.get("miss_count", 0) or 0)
        logger.info(f"Imported {len(imported)} geocoding cache entries")
        return True

    @staticmethod
    def _entry_from_raw(item: Any) -> Optional[CacheEntry]:
        try:
            key, raw = item
            coords = raw["coordinates"]
            if not isinstance(key, str):
                return None
            if not all(isinstance(coords.get(axis), (int, float)) for axis in ("lat", "lng")):
                return None
            if not isinstance(raw["timestamp"], (int, float)) or not isinstance(raw["ttl"], (int, float)):
                return None
            return CacheEntry(
                coordinates=Coordinates(lat=coords["lat"], lng=coords["lng"]),
                inserted_at=float(raw["timestamp"]),
                ttl_seconds=float(raw["ttl"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError):
            return None


__all__ = ["CacheEntry", "CacheStats", "GeocodingCache", "normalize_address"]
