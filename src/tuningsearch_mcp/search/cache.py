"""In-memory TTL cache with LRU eviction for upstream responses.

Entries expire lazily on read and through a periodic sweep. When a new key is
inserted into a full cache, the least recently accessed entry is evicted.
Keys are derived from request parameters with a small rolling hash; the
normalized parameter string is stored with each entry and compared on read,
so a hash collision is reported as a miss instead of returning the wrong
response.
"""

import asyncio
import copy
import dataclasses
import json
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tuningsearch_mcp.monitoring.metrics import (
    record_cache_eviction,
    record_cache_lookup,
    set_cache_size,
)

logger = logging.getLogger(__name__)

DEFAULT_SIZE_ESTIMATE = 1000
MIN_LOOKUPS_FOR_HIT_RATIO = 20


class CacheKind(str, Enum):
    """Kinds of cached responses, used as key prefixes."""

    SEARCH = "search"
    NEWS = "news"
    CRAWL = "crawl"


@dataclass
class CacheConfig:
    """Cache configuration. All durations are in seconds.

    Attributes:
        default_ttl: TTL for entries stored without an explicit TTL.
        max_size: Maximum number of entries.
        search_ttl: TTL for web search responses.
        news_ttl: TTL for news search responses.
        crawl_ttl: TTL for crawl responses.
        enable_stats: Whether hit/miss statistics are collected.
        cleanup_interval: Seconds between active expiry sweeps.
        enable_auto_cleanup: Whether ``start()`` runs the sweep task.
    """

    default_ttl: float = 300.0
    max_size: int = 1000
    search_ttl: float = 600.0
    news_ttl: float = 300.0
    crawl_ttl: float = 1800.0
    enable_stats: bool = True
    cleanup_interval: float = 60.0
    enable_auto_cleanup: bool = True

    def __post_init__(self) -> None:
        """Validate parameters."""
        if self.max_size < 1:
            raise ValueError("max_size must be at least 1")

    def ttl_for(self, kind: CacheKind) -> float:
        """Return the TTL configured for a kind of response."""
        return {
            CacheKind.SEARCH: self.search_ttl,
            CacheKind.NEWS: self.news_ttl,
            CacheKind.CRAWL: self.crawl_ttl,
        }.get(kind, self.default_ttl)


@dataclass
class CacheEntry:
    """A cached value and its bookkeeping."""

    data: Any
    params: str
    created_at: float
    ttl: float
    last_accessed: float
    access_count: int = 0
    size_bytes: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class CacheStats:
    """Snapshot of cache statistics."""

    hits: int = 0
    misses: int = 0
    hit_ratio: float = 0.0
    size: int = 0
    memory_usage: int = 0
    expired_cleanups: int = 0
    evictions: int = 0
    average_access_time_ms: float = 0.0
    efficiency_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class CacheHealth:
    """Cache health verdict with the reasons behind it."""

    status: str = "healthy"
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def normalize_params(params: Mapping[str, Any]) -> str:
    """Build the canonical parameter string used for cache keys.

    Keys are sorted and None values dropped.
    """
    parts = []
    for key in sorted(params):
        value = params[key]
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, Enum):
            value = value.value
        parts.append(f"{key}={value}")
    return "&".join(parts)


def _to_base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, remainder = divmod(number, 36)
        out.append(digits[remainder])
    return "".join(reversed(out))


def hash_string(value: str) -> str:
    """32-bit rolling hash (``h * 31 + c``), returned in base 36."""
    h = 0
    for char in value:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def make_cache_key(prefix: str, params: Mapping[str, Any]) -> tuple[str, str]:
    """Derive a cache key from request parameters.

    Args:
        prefix: Key prefix, normally a CacheKind value.
        params: Request parameters.

    Returns:
        Tuple of (key, normalized parameter string).
    """
    normalized = normalize_params(params)
    return f"{prefix}:{hash_string(normalized)}", normalized


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    return str(value)


def estimate_size(value: Any) -> int:
    """Rough size of a value in bytes: two bytes per serialized character."""
    try:
        return len(json.dumps(value, default=_json_default)) * 2
    except (TypeError, ValueError):
        return DEFAULT_SIZE_ESTIMATE


class ResponseCache:
    """Key-addressed, TTL-expiring, size-bounded response store.

    Values are deep-copied on the way in and on the way out, so callers never
    share state with the cache.

    Args:
        config: Cache configuration.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[tuple[str, str], asyncio.Future[Any]] = {}
        self._cleanup_task: asyncio.Task[None] | None = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expired_cleanups = 0
        self._memory_usage = 0
        self._access_count = 0
        self._average_access_time_ms = 0.0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # =========================================================================
    # Core operations
    # =========================================================================

    def get(self, key: str, params: str | None = None) -> Any | None:
        """Return a copy of the cached value, or None on a miss.

        Args:
            key: Cache key.
            params: Normalized parameters the key was derived from. When
                given, an entry stored under different parameters is a miss.

        Returns:
            A deep copy of the value, or None.
        """
        started = time.perf_counter()
        try:
            entry = self._entries.get(key)
            if entry is None:
                self._record_miss()
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._record_miss()
                return None

            if params is not None and entry.params != params:
                logger.warning(f"Cache key collision on {key}, treating as miss")
                self._record_miss()
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._entries.move_to_end(key)
            self._record_hit()
            return copy.deepcopy(entry.data)
        finally:
            self._record_access_time((time.perf_counter() - started) * 1000)

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        params: str = "",
    ) -> None:
        """Store a value.

        Inserting a new key into a full cache evicts the least recently
        accessed entry first. Replacing an existing key never evicts.

        Args:
            key: Cache key.
            value: Value to store; a deep copy is kept.
            ttl: Time to live in seconds; defaults to ``default_ttl``.
            params: Normalized parameters the key was derived from.
        """
        if key in self._entries:
            self._remove(key)
        else:
            while len(self._entries) >= self.config.max_size:
                self._evict_lru()

        now = self._clock()
        data = copy.deepcopy(value)
        size = estimate_size(data)
        self._entries[key] = CacheEntry(
            data=data,
            params=params,
            created_at=now,
            ttl=self.config.default_ttl if ttl is None else ttl,
            last_accessed=now,
            size_bytes=size,
        )
        self._memory_usage += size
        set_cache_size(len(self._entries))

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        if key not in self._entries:
            return False
        self._remove(key)
        return True

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every entry whose key matches a regular expression.

        Args:
            pattern: Regex searched in each key, e.g. ``"^search:"``.

        Returns:
            Number of entries removed.
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            self._remove(key)
        if matched:
            logger.info(f"Invalidated {len(matched)} cache entries matching {regex.pattern!r}")
        return len(matched)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        self._entries.clear()
        self._memory_usage = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expired_cleanups = 0
        self._access_count = 0
        self._average_access_time_ms = 0.0
        set_cache_size(0)

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        self._expired_cleanups += len(expired)
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        params: str = "",
    ) -> tuple[Any, bool]:
        """Return the cached value or load, store and return it.

        Concurrent misses for the same key and parameters share one load.
        Colliding keys with different parameters load separately. If the
        caller running a shared load is cancelled, a waiter takes it over.

        Args:
            key: Cache key.
            loader: Async callable producing the value on a miss.
            ttl: TTL for a newly loaded value.
            params: Normalized parameters the key was derived from.

        Returns:
            Tuple of (value, served_from_cache).
        """
        cached = self.get(key, params)
        if cached is not None:
            return cached, True

        slot = (key, params)
        while (pending := self._in_flight.get(slot)) is not None:
            try:
                value = await asyncio.shield(pending)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if pending.cancelled() and not (task and task.cancelling()):
                    continue
                raise
            return copy.deepcopy(value), False

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._in_flight[slot] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark the exception as retrieved when nobody else was waiting
            future.exception()
            raise
        else:
            self.set(key, value, ttl, params)
            future.set_result(value)
            return value, False
        finally:
            if self._in_flight.get(slot) is future:
                del self._in_flight[slot]

    # =========================================================================
    # Typed helpers
    # =========================================================================

    def get_kind(self, kind: CacheKind, params: Mapping[str, Any]) -> Any | None:
        key, normalized = make_cache_key(kind.value, params)
        return self.get(key, normalized)

    def set_kind(self, kind: CacheKind, params: Mapping[str, Any], value: Any) -> None:
        key, normalized = make_cache_key(kind.value, params)
        self.set(key, value, self.config.ttl_for(kind), normalized)

    async def load_kind(
        self,
        kind: CacheKind,
        params: Mapping[str, Any],
        loader: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """``get_or_load`` keyed and timed for a kind of response."""
        key, normalized = make_cache_key(kind.value, params)
        return await self.get_or_load(key, loader, self.config.ttl_for(kind), normalized)

    def get_search(self, params: Mapping[str, Any]) -> Any | None:
        return self.get_kind(CacheKind.SEARCH, params)

    def set_search(self, params: Mapping[str, Any], value: Any) -> None:
        self.set_kind(CacheKind.SEARCH, params, value)

    def get_news(self, params: Mapping[str, Any]) -> Any | None:
        return self.get_kind(CacheKind.NEWS, params)

    def set_news(self, params: Mapping[str, Any], value: Any) -> None:
        self.set_kind(CacheKind.NEWS, params, value)

    def get_crawl(self, params: Mapping[str, Any]) -> Any | None:
        return self.get_kind(CacheKind.CRAWL, params)

    def set_crawl(self, params: Mapping[str, Any], value: Any) -> None:
        self.set_kind(CacheKind.CRAWL, params, value)

    def invalidate_search_cache(self) -> int:
        return self.invalidate(f"^{CacheKind.SEARCH.value}:")

    def invalidate_news_cache(self) -> int:
        return self.invalidate(f"^{CacheKind.NEWS.value}:")

    def invalidate_crawl_cache(self) -> int:
        return self.invalidate(f"^{CacheKind.CRAWL.value}:")

    # =========================================================================
    # Statistics and health
    # =========================================================================

    def get_stats(self) -> CacheStats:
        """Return a snapshot of the cache statistics."""
        total = self._hits + self._misses
        hit_ratio = self._hits / total if total else 0.0
        size = len(self._entries)
        size_score = max(0.0, 50 - size / self.config.max_size * 50)
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            hit_ratio=hit_ratio,
            size=size,
            memory_usage=self._memory_usage,
            expired_cleanups=self._expired_cleanups,
            evictions=self._evictions,
            average_access_time_ms=self._average_access_time_ms,
            efficiency_score=round(hit_ratio * 50 + size_score),
        )

    def get_health(self) -> CacheHealth:
        """Assess cache health from its statistics.

        Returns:
            CacheHealth with status healthy, warning or critical.
        """
        stats = self.get_stats()
        health = CacheHealth()

        def degrade(status: str) -> None:
            if status == "critical" or health.status == "healthy":
                health.status = status

        lookups = stats.hits + stats.misses
        if lookups >= MIN_LOOKUPS_FOR_HIT_RATIO and stats.hit_ratio < 0.3:
            health.issues.append(f"Low hit ratio: {stats.hit_ratio * 100:.1f}%")
            health.recommendations.append("Consider increasing cache TTL or reviewing cache key strategy")
            degrade("warning")

        memory_mb = stats.memory_usage / (1024 * 1024)
        if memory_mb > 100:
            health.issues.append(f"High memory usage: {memory_mb:.1f}MB")
            health.recommendations.append("Consider reducing cache size or TTL")
            degrade("critical" if memory_mb > 500 else "warning")

        size_ratio = stats.size / self.config.max_size
        if size_ratio > 0.9:
            health.issues.append(f"Cache nearly full: {size_ratio * 100:.1f}%")
            health.recommendations.append("Consider increasing max cache size")
            degrade("warning")

        if lookups and stats.evictions / lookups > 0.1:
            health.issues.append(f"High eviction rate: {stats.evictions / lookups * 100:.1f}%")
            health.recommendations.append("Consider increasing cache size or reducing TTL")
            degrade("warning")

        return health

    # =========================================================================
    # Sweep task
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start(self) -> None:
        """Start the periodic expiry sweep. Calling it twice is a no-op."""
        if not self.config.enable_auto_cleanup or self.is_running:
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        logger.debug(f"Cache sweep started (every {self.config.cleanup_interval}s)")

    def stop(self) -> None:
        """Stop the periodic expiry sweep. Calling it twice is a no-op."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def destroy(self) -> None:
        """Stop the sweep and drop all entries."""
        self.stop()
        self.clear()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup()

    # =========================================================================
    # Internals
    # =========================================================================

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._memory_usage -= entry.size_bytes
        set_cache_size(len(self._entries))

    def _evict_lru(self) -> None:
        key, _ = next(iter(self._entries.items()))
        self._remove(key)
        self._evictions += 1
        record_cache_eviction()
        logger.debug(f"Evicted least recently used cache entry {key}")

    def _record_hit(self) -> None:
        record_cache_lookup(hit=True)
        if self.config.enable_stats:
            self._hits += 1

    def _record_miss(self) -> None:
        record_cache_lookup(hit=False)
        if self.config.enable_stats:
            self._misses += 1

    def _record_access_time(self, elapsed_ms: float) -> None:
        if not self.config.enable_stats:
            return
        self._access_count += 1
        self._average_access_time_ms += (elapsed_ms - self._average_access_time_ms) / self._access_count
