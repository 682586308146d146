"""In-memory TTL cache for upstream vendor responses. No Redis needed.

Entries expire per key. Expired entries are dropped when a read observes them,
and a background sweep removes the ones nobody reads again.

Note: each uvicorn worker owns its own cache instance. With --workers 2 a
resource may be fetched once per worker, and clearing the cache only
affects the worker that handled the request.
"""

import asyncio
import json
import logging
import math
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from fastapi import Request

from errors import CacheError, CacheValueError, InvalidPatternError, InvalidTTLError

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 300

_MISSING = object()


@dataclass
class CacheEntry:
    """A single cached value with its absolute expiry on the cache clock."""

    key: str
    value: Any
    created_at: float
    expires_at: float
    size_bytes: int

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class TTLCache:
    """Keyed store with per-entry TTL, lazy eviction and a periodic sweep."""

    def __init__(
        self,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "response",
    ):
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        self.name = name
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._inflight: dict[str, asyncio.Task] = {}
        self._sweeper: asyncio.Task | None = None
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for *key*, or *default* if absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return default
            if entry.is_expired(now):
                del self._store[key]
                self._evictions += 1
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store *value* under *key* for *ttl_seconds*, replacing any prior entry.

        Raises:
            InvalidTTLError: ttl_seconds is not a positive integer.
            CacheValueError: value cannot be encoded as JSON.
        """
        if not isinstance(key, str):
            raise CacheError(f"Cache keys must be strings, got {type(key).__name__}")
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise InvalidTTLError(ttl_seconds)
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheValueError(key, str(e)) from e

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl_seconds,
            size_bytes=len(key.encode("utf-8")) + len(encoded.encode("utf-8")),
        )
        with self._lock:
            self._store[key] = entry
            self._sets += 1
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> int:
        """Remove every entry regardless of expiry. Returns how many were removed."""
        with self._lock:
            removed = len(self._store)
            self._store.clear()
        if removed:
            logger.info("Cache %s cleared: %d entries removed", self.name, removed)
        return removed

    def clear_pattern(self, pattern: str | re.Pattern) -> int:
        """Remove every entry whose key matches *pattern* (re.search semantics)."""
        if isinstance(pattern, re.Pattern):
            regex = pattern
        else:
            try:
                regex = re.compile(pattern)
            except re.error as e:
                raise InvalidPatternError(pattern, str(e)) from e

        with self._lock:
            doomed = [key for key in self._store if regex.search(key)]
            for key in doomed:
                del self._store[key]
        if doomed:
            logger.info("Cache %s pattern clear %r: %d entries removed", self.name, regex.pattern, len(doomed))
        return len(doomed)

    def has(self, key: str) -> bool:
        """Existence check. An expired entry counts as absent and is dropped."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(now):
                del self._store[key]
                self._evictions += 1
                return False
            return True

    def get_ttl(self, key: str) -> int | None:
        """Remaining whole seconds for *key*, or None if missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
        if entry is None or entry.is_expired(now):
            return None
        return math.ceil(entry.expires_at - now)

    def extend_ttl(self, key: str, ttl_seconds: int) -> bool:
        """Reset the expiry of a live entry to now + ttl_seconds."""
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise InvalidTTLError(ttl_seconds)
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired(now):
                return False
            entry.expires_at = now + ttl_seconds
            return True

    def keys(self, prefix: str = "") -> list[str]:
        """Snapshot of unexpired keys, optionally limited to a prefix."""
        now = self._clock()
        with self._lock:
            return [
                key for key, entry in self._store.items()
                if key.startswith(prefix) and not entry.is_expired(now)
            ]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_memory_usage(self) -> int:
        """Rough byte estimate: JSON size of every stored value plus its key."""
        with self._lock:
            return sum(entry.size_bytes for entry in self._store.values())

    def get_stats(self) -> dict:
        now = self._clock()
        with self._lock:
            total = len(self._store)
            expired = sum(1 for entry in self._store.values() if entry.is_expired(now))
            memory = sum(entry.size_bytes for entry in self._store.values())
            lookups = self._hits + self._misses
            return {
                "name": self.name,
                "total_entries": total,
                "active_entries": total - expired,
                "expired_entries": expired,
                "memory_usage_bytes": memory,
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "sweep_interval_seconds": self.sweep_interval_seconds,
                "sweeper_running": self.sweeper_running,
            }

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove all entries past expiry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
            self._evictions += len(expired)
        if expired:
            logger.info("Cache %s sweep: removed %d expired entries", self.name, len(expired))
        return len(expired)

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the background sweep on the running event loop. Idempotent."""
        if self.sweeper_running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info("Cache %s sweeper started (every %ss)", self.name, self.sweep_interval_seconds)

    async def stop(self) -> None:
        """Cancel the background sweep and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cache %s sweeper stopped", self.name)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache %s sweep failed", self.name)

    async def __aenter__(self) -> "TTLCache":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: int,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value for *key*, or await *fetch* and cache its result.

        Concurrent misses for the same key share one in-flight fetch. A broken
        cache degrades to a miss; errors raised by *fetch* propagate.
        """
        try:
            cached = self.get(key, _MISSING)
        except Exception:
            logger.warning("Cache %s read failed for %s; treating as miss", self.name, key, exc_info=True)
            cached = _MISSING
        if cached is not _MISSING:
            logger.debug("Cache hit: %s", key)
            return cached

        task = self._inflight.get(key)
        if task is None:
            logger.debug("Cache miss: %s", key)
            task = asyncio.ensure_future(self._fetch_and_store(key, ttl_seconds, fetch))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget_inflight(key, done))
        else:
            logger.debug("Cache miss coalesced with in-flight fetch: %s", key)
        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: str, ttl_seconds: int, fetch: Callable[[], Awaitable[Any]]) -> Any:
        value = await fetch()
        try:
            self.set(key, value, ttl_seconds)
        except Exception:
            logger.warning("Cache %s write failed for %s; serving uncached", self.name, key, exc_info=True)
        return value

    def _forget_inflight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Every awaiter may have been cancelled; consume the error so asyncio
        # does not report it as never retrieved.
        if not task.cancelled():
            task.exception()


def get_cache(request: Request) -> TTLCache:
    """FastAPI dependency: the response cache owned by this app instance."""
    return request.app.state.cache
