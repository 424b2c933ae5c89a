"""
Cache stores for aggregated observations.

The aggregator only needs ``get``/``set``/``delete``/``clear`` from a store.
Stores never expire entries on their own: staleness is enforced by the
aggregator, which compares an entry's ``last_updated_utc`` with its max age on
every read and evicts stale entries explicitly.

Two stores are provided:
- ``InMemoryCacheStore`` for single-process use and tests
- ``RedisCacheStore`` backed by ``redis.asyncio`` for shared caches

Both optionally report their size, which the aggregator surfaces in its health
status.
"""
import asyncio
import copy
import json
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import redis.asyncio as redis

from .models import utcnow

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    """Minimal async key/value store used by the aggregator."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...


def _detached(value: Any) -> Any:
    """Deep copy so callers never share an instance with the store."""
    if hasattr(value, "model_copy"):
        return value.model_copy(deep=True)
    return copy.deepcopy(value)


def generate_cache_key(namespace: str, subject_key: str, date: Optional[str] = None) -> str:
    """Build a stable cache key such as ``weather:JFK:2025-01-15``.

    Args:
        namespace: Observation type (``weather``, ``flight``)
        subject_key: Airport code, coordinate string or flight number
        date: ISO date, today (UTC) when omitted
    """
    date_str = date or utcnow().date().isoformat()
    return f"{namespace}:{subject_key.strip().upper()}:{date_str}"


class InMemoryCacheStore:
    """Dictionary-backed store guarded by an asyncio lock.

    Values are copied on the way in and out, so an entry only changes through
    ``set``.
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            value = self._entries.get(key)
        if value is None:
            logger.debug(f"Cache MISS: {key}")
        else:
            logger.debug(f"Cache HIT: {key}")
            value = _detached(value)
        return value

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._entries[key] = _detached(value)
        logger.debug(f"Cache SET: {key}")

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)
        logger.debug(f"Cache DELETE: {key}")

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def size(self) -> int:
        async with self._lock:
            return len(self._entries)


class RedisCacheStore:
    """Redis-backed store holding JSON-serialized observations without TTL.

    Args:
        redis_url: Redis connection URL.
        prefix: Namespace prepended to every key; ``clear`` and ``size`` only
            touch keys under this prefix.
        client: Pre-built ``redis.asyncio.Redis`` client (overrides ``redis_url``).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "obsagg",
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.prefix = prefix
        self._client = client

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._client

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        client = await self.get_client()
        raw = await client.get(self._make_key(key))
        if raw is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            await client.delete(self._make_key(key))
            return None

    async def set(self, key: str, value: Any) -> None:
        if hasattr(value, "model_dump_json"):
            serialized = value.model_dump_json()
        else:
            serialized = json.dumps(value, default=str)
        client = await self.get_client()
        await client.set(self._make_key(key), serialized)
        logger.debug(f"Cache SET: {key}")

    async def delete(self, key: str) -> None:
        client = await self.get_client()
        await client.delete(self._make_key(key))

    async def clear(self) -> None:
        client = await self.get_client()
        keys = [k async for k in client.scan_iter(match=f"{self.prefix}:*")]
        if keys:
            deleted = await client.delete(*keys)
            logger.info(f"Cache CLEAR: {deleted} keys under {self.prefix}")

    async def size(self) -> int:
        client = await self.get_client()
        count = 0
        async for _ in client.scan_iter(match=f"{self.prefix}:*"):
            count += 1
        return count

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
