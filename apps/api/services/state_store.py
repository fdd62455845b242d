"""Ephemeral key-value store for authorization handshake secrets (Redis or in-process)."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """TTL'd JSON entries with an atomic read-and-delete."""

    @abstractmethod
    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def take(self, key: str) -> Optional[Dict[str, Any]]:
        """Return and delete the entry in one step; None when absent or expired."""
        raise NotImplementedError

    @abstractmethod
    async def purge_expired(self, prefix: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def count(self, prefix: str) -> int:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def _decode(raw: Any) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable state entry")
        return None
    return value if isinstance(value, dict) else None


class RedisStateStore(StateStore):
    """Redis-backed store; GET+DEL run inside one MULTI/EXEC transaction."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "RedisStateStore":
        return cls(redis.from_url(url or settings.REDIS_URL, decode_responses=True))

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        await self._client.setex(key, max(int(ttl_seconds), 1), json.dumps(value))

    async def take(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.get(key)
            pipe.delete(key)
            raw, _deleted = await pipe.execute()
        return _decode(raw)

    async def purge_expired(self, prefix: str) -> int:
        # Redis expires TTL'd keys itself; only entries that lost their TTL remain.
        removed = 0
        async for key in self._client.scan_iter(match=f"{prefix}*", count=500):
            if await self._client.ttl(key) == -1:
                removed += int(await self._client.delete(key))
        if removed:
            logger.info("Purged %s state entries without expiry", removed)
        return removed

    async def count(self, prefix: str) -> int:
        total = 0
        async for _key in self._client.scan_iter(match=f"{prefix}*", count=500):
            total += 1
        return total

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryStateStore(StateStore):
    """Process-local store for single-process deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = (json.dumps(value), self._clock() + max(int(ttl_seconds), 1))

    async def take(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return _decode(raw)

    async def purge_expired(self, prefix: str) -> int:
        now = self._clock()
        async with self._lock:
            expired = [
                key for key, (_raw, expires_at) in self._entries.items()
                if key.startswith(prefix) and now >= expires_at
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    async def count(self, prefix: str) -> int:
        now = self._clock()
        async with self._lock:
            return sum(
                1 for key, (_raw, expires_at) in self._entries.items()
                if key.startswith(prefix) and now < expires_at
            )


def build_state_store() -> StateStore:
    """Build the configured state store backend."""
    backend = str(settings.OAUTH_STATE_BACKEND or "redis").strip().lower()
    if backend == "memory":
        return InMemoryStateStore()
    return RedisStateStore.from_url(settings.REDIS_URL)
