"""
Per-IP rate limiting for the public proxy endpoints

Fixed window counters in Redis (INCR + EXPIRE). When Redis is unreachable
the limiter fails open: the proxy must keep serving address lookups.
"""

import logging
import os
import time
from typing import Optional

import redis
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None

# After a failed connection attempt, skip reconnecting until this monotonic time
REDIS_RETRY_COOLDOWN_SECONDS = int(os.getenv("REDIS_RETRY_COOLDOWN_SECONDS", "30"))
_redis_retry_at = 0.0


def get_redis_client() -> redis.Redis:
    """
    Get or create the shared Redis client.
    Uses REDIS_URL when set, otherwise the individual REDIS_* settings.
    """
    global redis_client, _redis_retry_at

    if redis_client is None:
        if time.monotonic() < _redis_retry_at:
            raise redis.ConnectionError("Redis unavailable, retry pending")

        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            logger.info("📡 Using Redis URL connection")
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            logger.info(f"📡 Using Redis at {redis_host}:{redis_port}")
            client = redis.Redis(
                host=redis_host,
                port=redis_port,
                password=os.getenv("REDIS_PASSWORD", None),
                db=int(os.getenv("REDIS_DB", "0")),
                ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )

        try:
            client.ping()
        except (redis.RedisError, OSError):
            _redis_retry_at = time.monotonic() + REDIS_RETRY_COOLDOWN_SECONDS
            logger.warning(f"⚠️ Redis unreachable, not retrying for {REDIS_RETRY_COOLDOWN_SECONDS}s")
            raise
        redis_client = client
        logger.info("Redis connected successfully")

    return redis_client


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: redis.Redis
) -> tuple[bool, int, int]:
    """
    Count one request against a fixed window.

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    window = int(time.time()) // window_seconds
    window_key = f"{key}:{window}"

    pipe = client.pipeline()
    pipe.incr(window_key)
    pipe.expire(window_key, window_seconds)
    count, _ = pipe.execute()

    ttl = window_seconds - int(time.time()) % window_seconds
    return int(count) <= limit, int(count), ttl


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Create a per-IP rate limiter dependency

    Example usage:
        rate_limit_places = create_rate_limiter(limit=60, window_seconds=60, key_prefix="places")

        @router.get("/places-proxy")
        async def places_proxy(_: None = Depends(rate_limit_places)):
            ...
    """

    async def rate_limiter(request: Request):
        key = f"{key_prefix}:{client_ip(request)}"
        try:
            is_allowed, current_count, ttl = check_rate_limit(
                key, limit, window_seconds, get_redis_client()
            )
        except (redis.RedisError, OSError) as e:
            logger.warning(f"⚠️ Rate limiter unavailable, allowing request: {e}")
            return

        if not is_allowed:
            logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit}")
            raise HTTPException(
                status_code=429,
                detail={
                    "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                    "retry_after": ttl,
                },
                headers={"Retry-After": str(ttl)},
            )

    return rate_limiter
