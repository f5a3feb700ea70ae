"""
Redis caching for proxied provider responses
Every operation fails open: a Redis outage only costs a cache miss
"""
import json
import logging
from typing import Any, Optional

import redis

from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)


class Cache:
    """Redis cache wrapper with JSON serialization"""

    def __init__(self, key_prefix: str = "laundry"):
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            value = get_redis_client().get(self._key(key))
        except (redis.RedisError, OSError) as e:
            logger.warning(f"⚠️ Cache get error for {key}: {e}")
            return None

        if value:
            logger.debug(f"✅ Cache HIT: {key}")
            return json.loads(value)
        logger.debug(f"❌ Cache MISS: {key}")
        return None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        try:
            get_redis_client().setex(self._key(key), ttl, json.dumps(value))
        except (redis.RedisError, OSError) as e:
            logger.warning(f"⚠️ Cache set error for {key}: {e}")
            return False
        logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
        return True


# Global cache instance
cache = Cache()


def build_autocomplete_key(query: str, latitude: Optional[float], longitude: Optional[float], radius: int) -> str:
    """Cache key for proxied autocomplete; bias rounded like the geocode cache"""
    bias = f"{latitude:.4f},{longitude:.4f}" if latitude is not None and longitude is not None else "none"
    return f"places:auto:{bias}:{radius}:{query.strip().lower()}"


def build_place_details_key(place_id: str) -> str:
    return f"places:details:{place_id}"
