"""Bounded, TTL-aware LRU cache shared by tool executions."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from infra_analyst.config import CacheConfig

logger = logging.getLogger(__name__)


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()
"""Sentinel returned by `ToolCache.get` when no live entry exists."""


@dataclass(slots=True)
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    ttl_seconds: float
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_seconds


def make_cache_key(tool_name: str, params: dict[str, Any]) -> str:
    """Deterministic key from tool name and normalized parameters.

    Keys stay human readable so `invalidate` can match on substrings such as a
    tool name or `"account_ids": [3]`.
    """
    normalized = {
        key: sorted(value) if isinstance(value, list) and _sortable(value) else value
        for key, value in params.items()
        if value is not None
    }
    return f"{tool_name}:{json.dumps(normalized, sort_keys=True, default=str)}"


def _sortable(values: list[Any]) -> bool:
    return all(isinstance(v, (int, float, str)) for v in values) and len(
        {type(v) for v in values}
    ) <= 1


class ToolCache:
    """Thread-safe LRU cache with per-entry TTL.

    One instance is shared by every session, so all reads and writes go through
    a single lock. `clock` is injectable for deterministic TTL tests.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, Future[Any]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any:
        with self._lock:
            return self._lookup(key)

    def _lookup(self, key: str) -> Any:
        # Caller holds the lock.
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return MISS
        if entry.expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug("cache expired key=%s", key)
            return MISS
        entry.hits += 1
        self._hits += 1
        self._entries.move_to_end(key)
        return entry.payload

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.config.default_ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            now = self._clock()
            if key in self._entries:
                self._entries.move_to_end(key)
            else:
                self._evict_for_insert(now)
            self._entries[key] = CacheEntry(
                key=key, payload=value, created_at=now, ttl_seconds=ttl
            )

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl_seconds: float | None = None,
    ) -> tuple[Any, bool]:
        """Return `(value, cache_hit)`, computing and storing on a miss.

        Concurrent callers for the same key share one factory call: the first
        computes, the others wait for its result (or its exception). The factory
        runs outside the lock so slow data-store reads never block unrelated keys.
        """
        with self._lock:
            cached = self._lookup(key)
            if cached is not MISS:
                return cached, True
            pending = self._inflight.get(key)
            leader = pending is None
            if leader:
                pending = self._inflight[key] = Future()
        if not leader:
            return pending.result(), True

        try:
            value = factory()
            self.set(key, value, ttl_seconds)
        except Exception as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(value)
        finally:
            with self._lock:
                self._inflight.pop(key, None)
        return value, False

    def invalidate(self, pattern: str) -> int:
        """Remove every key containing `pattern`; returns the number removed."""
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.info("cache invalidated pattern=%r count=%d", pattern, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, float | int]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "size": len(self._entries),
                "capacity": self.config.capacity,
                "hit_rate": (self._hits / total) if total else 0.0,
            }

    def _evict_for_insert(self, now: float) -> None:
        # Caller holds the lock. Expired entries go first, then least recently used.
        if len(self._entries) < self.config.capacity:
            return
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            del self._entries[key]
            self._evictions += 1
        while len(self._entries) >= self.config.capacity:
            key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("cache evicted lru key=%s", key)
