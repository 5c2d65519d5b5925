"""
Durable result cache backed by a single SQLite table.

Collection calls are network-bound and the same topic is often requested
again within minutes, so collectors memoize their result lists here. The
store survives process restarts.

Expired entries are never returned: `get` deletes them on read, and a
background task sweeps the table periodically so entries that are never
read again do not accumulate.
"""

import asyncio
import json
import logging
import weakref
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any

import aiosqlite

from src.collection.clock import SYSTEM_CLOCK, Clock
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_expires_at ON cache(expires_at);
"""


@dataclass(frozen=True)
class CacheStats:
    """Row counts at the time of the call."""

    total: int
    expired: int


@dataclass(frozen=True)
class CacheEntry:
    """One cache row."""

    key: str
    value: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


def build_cache_key(source_kind: str, topic: str, options_fragment: str = "") -> str:
    """Recommended key scheme: {sourceKind}:{topic}:{serializedOptions}."""
    return f"{source_kind}:{topic}:{options_fragment}"


class ResultCache:
    """
    Async key/value cache with per-entry expiry.

    Usage:
        cache = ResultCache("./data/cache.db")
        await cache.connect()

        await cache.set("forum:ai safety:{}", records, ttl_seconds=3600)
        records = await cache.get("forum:ai safety:{}")

        await cache.close()

    Storage errors on reads and writes are logged and treated as a miss or
    a no-op; a broken cache slows collection down but never aborts it.
    """

    def __init__(
        self,
        path: str = "./data/cache.db",
        sweep_interval: float | None = 3600.0,
        clock: Clock | None = None,
    ):
        """
        Initialize cache.

        Args:
            path: SQLite file path, or ":memory:"
            sweep_interval: Seconds between background sweeps (None disables)
            clock: Time source for expiry (tests pass a fake one)
        """
        self._path = path
        self._sweep_interval = sweep_interval
        self._clock = clock or SYSTEM_CLOCK
        self._conn: aiosqlite.Connection | None = None
        self._sweep_task: asyncio.Task | None = None
        # Entries vanish once no caller holds the lock
        self._key_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._metrics = get_metrics()

    async def connect(self) -> None:
        """
        Open the database, create the table and start the sweeper.

        Raises on failure: a cache that cannot be opened is a misconfiguration.
        """
        if self._conn is not None:
            return

        try:
            if self._path != IN_MEMORY:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)

            self._conn = await aiosqlite.connect(self._path, timeout=30)
            if self._path != IN_MEMORY:
                await self._conn.execute("PRAGMA journal_mode=WAL;")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
            logger.info(f"Result cache opened at {self._path}")

        except Exception as e:
            logger.error(f"Failed to open result cache at {self._path}: {e}")
            raise

        if self._sweep_interval:
            self._sweep_task = asyncio.create_task(
                self._sweep_loop(), name="result_cache_sweeper"
            )

    async def close(self) -> None:
        """Stop the sweeper and close the database."""
        if self._sweep_task:
            self._sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Result cache closed")

    async def __aenter__(self) -> "ResultCache":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get the connection, raising if not connected."""
        if self._conn is None:
            raise RuntimeError("ResultCache not connected. Call connect() first.")
        return self._conn

    def lock(self, key: str) -> asyncio.Lock:
        """
        Per-key lock for callers that compute-then-store.

        Holding it across get/compute/set makes concurrent identical
        requests wait for the first one instead of repeating its work.
        """
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock

    async def get(self, key: str) -> Any | None:
        """
        Return the decoded value for `key`, or None if absent or expired.

        An expired row is deleted on the way out.
        """
        try:
            async with self.conn.execute(
                "SELECT key, value, created_at, expires_at FROM cache WHERE key = ?",
                (key,),
            ) as cursor:
                row = await cursor.fetchone()

            if row is None:
                self._metrics.record_cache(hit=False)
                return None

            entry = CacheEntry(*row)
            if entry.is_expired(self._clock.time()):
                await self.delete(key)
                self._metrics.record_cache(hit=False)
                return None

            value = json.loads(entry.value)

        except Exception as e:
            logger.error(f"Failed to read cache entry {key}: {e}")
            return None

        logger.debug(f"Cache hit: {key}")
        self._metrics.record_cache(hit=True)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float = 3600) -> None:
        """
        Store `value` under `key`, replacing any existing entry and its expiry.

        Raises:
            ValueError: If ttl_seconds is not positive
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        try:
            now = self._clock.time()
            await self.conn.execute(
                "INSERT OR REPLACE INTO cache (key, value, created_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, json.dumps(value), now, now + ttl_seconds),
            )
            await self.conn.commit()
            logger.debug(f"Cached entry: {key}")

        except Exception as e:
            logger.error(f"Failed to cache entry {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            await self.conn.commit()
            logger.debug(f"Deleted cache entry: {key}")
        except Exception as e:
            logger.error(f"Failed to delete cache entry {key}: {e}")

    async def clear(self) -> None:
        await self.conn.execute("DELETE FROM cache")
        await self.conn.commit()
        logger.info("Cache cleared")

    async def sweep(self) -> int:
        """
        Delete every expired entry.

        Returns:
            Number of rows removed
        """
        cursor = await self.conn.execute(
            "DELETE FROM cache WHERE expires_at <= ?", (self._clock.time(),)
        )
        await self.conn.commit()
        removed = cursor.rowcount
        if removed > 0:
            logger.debug(f"Cleaned up {removed} expired cache entries")
        return removed

    async def stats(self) -> CacheStats:
        now = self._clock.time()
        async with self.conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END), 0) "
            "FROM cache",
            (now,),
        ) as cursor:
            total, expired = await cursor.fetchone()
        return CacheStats(total=total, expired=expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Failed to sweep result cache: {e}")
