"""
In-memory cache for reverse geocode results

Keys are coordinates rounded to 4 decimal places (~11m). Entries expire on
read once they are older than the TTL; nothing is purged proactively.
"""

import logging
import time
from typing import Callable, Optional

from ..config import GEOCODE_CACHE_TTL_SECONDS
from ..schemas import CacheEntry

logger = logging.getLogger(__name__)


def cache_key(latitude: float, longitude: float) -> str:
    return f"{latitude:.4f},{longitude:.4f}"


class GeocodeCache:
    """Coordinate -> address cache with TTL-on-read"""

    def __init__(
        self,
        ttl_seconds: float = GEOCODE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, latitude: float, longitude: float) -> Optional[str]:
        """Return the cached address, or None when absent or expired"""
        key = cache_key(latitude, longitude)
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"❌ Geocode cache MISS: {key}")
            return None

        if self._clock() - entry.timestamp >= self.ttl_seconds:
            logger.debug(f"⌛ Geocode cache EXPIRED: {key}")
            return None

        logger.debug(f"✅ Geocode cache HIT: {key}")
        return entry.address

    def put(self, latitude: float, longitude: float, address: str) -> None:
        self._entries[cache_key(latitude, longitude)] = CacheEntry(
            address=address, timestamp=self._clock()
        )

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Geocoding cache cleared")

    def stats(self) -> dict:
        """Size plus the age in seconds of every entry"""
        now = self._clock()
        return {
            "size": len(self._entries),
            "entries": [
                {"key": key, "age": now - entry.timestamp} for key, entry in self._entries.items()
            ],
        }
