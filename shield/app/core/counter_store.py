"""Sliding-window counter store.

Per-key ordered lists of millisecond timestamps with key-level TTL,
backed by Redis lists in production and by a dictionary in single-process
deployments and tests.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

import redis
import redis.asyncio as aioredis

from shield.app.core.config import Settings
from shield.app.core.logging import get_logger
from shield.app.exceptions import StoreUnavailable

logger = get_logger(__name__)

T = TypeVar("T")

REDIS_EXCEPTIONS = (
    redis.ConnectionError,
    redis.TimeoutError,
    redis.RedisError,
    OSError,
)


class CounterStore(ABC):
    """Abstract base class for counter stores.

    Every operation may raise StoreUnavailable on transient failures;
    callers decide whether to fail open.
    """

    @abstractmethod
    async def append_timestamp(self, key: str, timestamp: int, ttl_seconds: int) -> None:
        """Append a timestamp to the key's list and refresh the key TTL.

        Args:
            key: Composite key ``{policy-prefix}:{identifier}``.
            timestamp: Arrival time in milliseconds since the epoch.
            ttl_seconds: Expiry for the whole key.
        """

    @abstractmethod
    async def list_timestamps(self, key: str) -> list[int]:
        """Return all stored timestamps for key, oldest first.

        Returns an empty list if the key does not exist.
        """

    @abstractmethod
    async def trim_timestamps(self, key: str, keep_from_index: int) -> None:
        """Remove entries with index below keep_from_index."""

    @abstractmethod
    async def delete_keys(self, prefix: str) -> int:
        """Delete every key starting with prefix.

        Returns:
            Number of keys removed.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the store answers."""

    async def sweep_expired(self) -> int:
        """Evict keys whose TTL lapsed.

        Stores with server-side expiry have nothing to do here.

        Returns:
            Number of keys removed.
        """
        return 0

    async def close(self) -> None:
        """Release any connection held by the store."""


@dataclass
class _WindowEntry:
    """Internal list entry with TTL tracking."""

    timestamps: list[int] = field(default_factory=list)
    expires_at: float | None = None

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() > self.expires_at


class InMemoryCounterStore(CounterStore):
    """In-memory counter store with TTL support.

    Suitable for single-instance deployments and tests. Data is lost on
    restart and is not shared between worker processes.
    """

    def __init__(self) -> None:
        self._data: dict[str, _WindowEntry] = {}
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> Optional[_WindowEntry]:
        entry = self._data.get(key)
        if entry is not None and entry.is_expired():
            del self._data[key]
            return None
        return entry

    async def append_timestamp(self, key: str, timestamp: int, ttl_seconds: int) -> None:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                entry = _WindowEntry()
                self._data[key] = entry
            entry.timestamps.append(timestamp)
            entry.expires_at = time.time() + ttl_seconds if ttl_seconds > 0 else None

    async def list_timestamps(self, key: str) -> list[int]:
        async with self._lock:
            entry = self._live_entry(key)
            return list(entry.timestamps) if entry else []

    async def trim_timestamps(self, key: str, keep_from_index: int) -> None:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return
            del entry.timestamps[:keep_from_index]
            if not entry.timestamps:
                del self._data[key]

    async def delete_keys(self, prefix: str) -> int:
        async with self._lock:
            doomed = [key for key in self._data if key.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    async def ping(self) -> bool:
        return True

    async def sweep_expired(self) -> int:
        return await self.cleanup_expired()

    async def cleanup_expired(self) -> int:
        """Remove all expired keys.

        Keys are otherwise only evicted when read again, so identifiers
        that never come back stay until this runs.

        Returns:
            Number of keys removed.
        """
        async with self._lock:
            expired = [key for key, entry in self._data.items() if entry.is_expired()]
            for key in expired:
                del self._data[key]
            return len(expired)


class RedisCounterStore(CounterStore):
    """Redis-backed counter store using list primitives.

    Shared by all worker processes. Each call is bounded by ``timeout``
    seconds; timeouts and Redis errors are raised as StoreUnavailable.

    Example:
        >>> store = RedisCounterStore(redis_url="redis://localhost:6379/0")
        >>> await store.append_timestamp("ratelimit:auth:203.0.113.7", now, 900)
    """

    SCAN_BATCH_SIZE = 500

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        timeout: float = 0.5,
    ) -> None:
        if redis_client is None and redis_url is None:
            raise ValueError("RedisCounterStore needs a redis_client or a redis_url")
        self._redis = redis_client
        self._redis_url = redis_url
        self._timeout = timeout

    def _get_client(self) -> Any:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def _bounded(
        self, operation: str, awaitable: Awaitable[T], timeout: Optional[float] = None
    ) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout or self._timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(operation, e) from e
        except REDIS_EXCEPTIONS as e:
            raise StoreUnavailable(operation, e) from e

    async def append_timestamp(self, key: str, timestamp: int, ttl_seconds: int) -> None:
        client = self._get_client()

        async def _append() -> None:
            pipe = client.pipeline()
            pipe.rpush(key, timestamp)
            pipe.expire(key, ttl_seconds)
            await pipe.execute()

        await self._bounded("append_timestamp", _append())

    async def list_timestamps(self, key: str) -> list[int]:
        client = self._get_client()
        raw = await self._bounded("list_timestamps", client.lrange(key, 0, -1))
        return [int(value) for value in raw or []]

    async def trim_timestamps(self, key: str, keep_from_index: int) -> None:
        client = self._get_client()
        await self._bounded("trim_timestamps", client.ltrim(key, keep_from_index, -1))

    async def delete_keys(self, prefix: str) -> int:
        client = self._get_client()

        async def _delete() -> int:
            deleted = 0
            batch: list[Any] = []
            async for key in client.scan_iter(match=f"{prefix}*", count=self.SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= self.SCAN_BATCH_SIZE:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
            return deleted

        # Bulk deletes only run from cleanup, so they get a longer bound.
        return await self._bounded("delete_keys", _delete(), timeout=self._timeout * 20)

    async def ping(self) -> bool:
        client = self._get_client()
        return bool(await self._bounded("ping", client.ping()))

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_counter_store(config: Settings) -> CounterStore:
    """Build the counter store selected by settings.

    Returns a RedisCounterStore when ``redis_enabled`` is set, otherwise an
    InMemoryCounterStore. The caller owns the instance and must close it.
    """
    if config.redis_enabled:
        logger.info("Using Redis counter store")
        return RedisCounterStore(
            redis_url=config.redis_url,
            timeout=config.store_timeout_seconds,
        )
    logger.info("Using in-memory counter store (rate limits are per process)")
    return InMemoryCounterStore()
