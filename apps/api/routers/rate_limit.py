"""Fixed-window request quotas per client, counted in Redis with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from fastapi import HTTPException, Request
from redis.exceptions import RedisError

from config import settings

logger = logging.getLogger(__name__)

RATE_KEY_PREFIX = "lifeline:rate:"

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()
_redis_client: Optional[redis.Redis] = None


def _get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if settings.TRUST_FORWARDED_FOR and forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _consume_redis_quota(key: str, window_seconds: int) -> Tuple[int, int]:
    client = _get_redis()
    async with client.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = await pipe.execute()
    if int(ttl) < 0:
        # First hit of the window, or a key that lost its expiry.
        await client.expire(key, window_seconds)
        ttl = window_seconds
    return int(count), max(int(ttl), 1)


async def _consume_local_quota(key: str, window_seconds: int) -> Tuple[int, int]:
    now = time.monotonic()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
    return count, max(int(reset_at - now), 1)


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable:
    """FastAPI dependency allowing ``limit`` requests per client per window."""

    async def _dependency(request: Request) -> None:
        if not settings.RATE_LIMITS_ENABLED or getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"{RATE_KEY_PREFIX}{prefix}:{_client_identifier(request)}"
        try:
            count, retry_after = await _consume_redis_quota(key, window_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("Rate limit store unavailable, counting %s locally: %s", prefix, exc)
            count, retry_after = await _consume_local_quota(key, window_seconds)

        if count > limit:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency


async def close_rate_limit_store() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
