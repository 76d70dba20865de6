"""Simple in-memory TTL cache with single-flight fetches. No Redis needed.

Note: Each uvicorn worker has its own cache instances. With --workers 2,
data may be fetched twice (once per worker). Within a worker, concurrent
misses for the same key share one upstream call.
"""

import asyncio
import inspect
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from errors import RateLimitDeniedError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Compute = Callable[[], Union[T, Awaitable[T]]]

_MISSING: Any = object()


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    value: T
    stored_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class CacheStats:
    name: str
    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    in_flight: int
    coalesced: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return round(self.hits / lookups, 4) if lookups else 0.0

    def to_dict(self) -> dict:
        return {**asdict(self), "hit_rate": self.hit_rate}


class TTLCache(Generic[T]):
    """Keyed TTL cache bounded by capacity (oldest-inserted evicted first).

    ``get_or_compute`` memoizes an expensive call: concurrent callers for the
    same missing key await a single computation. A failed computation stores
    nothing and leaves the key free for the next caller.

    Besides live entries the cache remembers the last value stored per key,
    which ``get_stale`` returns even after expiry so callers can fall back to
    it when an upstream is down.
    """

    def __init__(
        self,
        capacity: int = 1000,
        default_ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.name = name
        self.capacity = capacity
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._last_known: OrderedDict[str, T] = OrderedDict()
        self._in_flight: dict[str, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._coalesced = 0

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        """Freshness check that leaves hit/miss counters alone."""
        entry = self._store.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    def _lookup(self, key: str) -> Any:
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return _MISSING
        if not entry.is_fresh(self._clock()):
            del self._store[key]
            self._expirations += 1
            self._misses += 1
            return _MISSING
        self._hits += 1
        return entry.value

    def get(self, key: str, default: Any = None) -> T | Any:
        value = self._lookup(key)
        if value is _MISSING:
            logger.debug("Cache %s MISS for %s", self.name, key)
            return default
        logger.debug("Cache %s HIT for %s", self.name, key)
        return value

    def is_in_flight(self, key: str) -> bool:
        """True while a computation for *key* is running."""
        return key in self._in_flight

    def get_stale(self, key: str, default: Any = None) -> T | Any:
        """Return the last value stored for *key*, expired or not."""
        return self._last_known.get(key, default)

    def set(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl}")

        if key in self._store:
            # Overwrite counts as a fresh insertion for eviction order.
            del self._store[key]
        elif len(self._store) >= self.capacity:
            self._evict_oldest()

        self._store[key] = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl_seconds=ttl)
        self._last_known.pop(key, None)
        self._last_known[key] = value
        while len(self._last_known) > self.capacity:
            self._last_known.popitem(last=False)

    def _evict_oldest(self) -> None:
        key, _entry = self._store.popitem(last=False)
        self._last_known.pop(key, None)
        self._evictions += 1
        logger.debug("Cache %s evicted %s (capacity %d)", self.name, key, self.capacity)

    def invalidate(self, key: str) -> bool:
        """Drop *key* unconditionally. Returns True if a live entry was removed."""
        removed = self._store.pop(key, None) is not None
        self._last_known.pop(key, None)
        return removed

    def clear(self) -> None:
        self._store.clear()
        self._last_known.clear()

    async def get_or_compute(
        self,
        key: str,
        compute: Compute,
        ttl_seconds: float | None = None,
        *,
        force_refresh: bool = False,
        stale_while_revalidate: bool = False,
    ) -> T:
        """Return the fresh value for *key*, computing it at most once concurrently.

        Args:
            key: Cache key, see ``cache_key``.
            compute: Zero-argument callable returning the value or an awaitable of it.
            ttl_seconds: Lifetime of the stored value. Defaults to the cache default.
            force_refresh: Skip the fresh lookup (cache busting). An in-flight
                computation for the key is still joined rather than duplicated.
            stale_while_revalidate: If the key has expired but a last-known value
                exists, return it at once and refresh in the background.

        Raises:
            Whatever ``compute`` raises, to every caller awaiting that computation.
        """
        if not force_refresh:
            value = self._lookup(key)
            if value is not _MISSING:
                return value
            if stale_while_revalidate and key in self._last_known:
                if key not in self._in_flight:
                    logger.info("Cache %s serving stale %s while refreshing", self.name, key)
                    self._start(key, compute, ttl_seconds)
                return self._last_known[key]

        task = self._in_flight.get(key)
        if task is None:
            task = self._start(key, compute, ttl_seconds)
        else:
            self._coalesced += 1
            logger.debug("Cache %s joining in-flight fetch for %s", self.name, key)

        # Shielded so one cancelled caller does not cancel the shared fetch.
        return await asyncio.shield(task)

    def _start(self, key: str, compute: Compute, ttl_seconds: float | None) -> asyncio.Task:
        task = asyncio.ensure_future(self._compute_and_store(key, compute, ttl_seconds))
        self._in_flight[key] = task
        task.add_done_callback(partial(self._on_done, key))
        return task

    async def _compute_and_store(self, key: str, compute: Compute, ttl_seconds: float | None) -> T:
        try:
            value = compute()
            if inspect.isawaitable(value):
                value = await value
            self.set(key, value, ttl_seconds)
            return value
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        # Covers tasks cancelled before their coroutine ever ran.
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, RateLimitDeniedError):
            logger.debug("Cache %s fetch for %s denied by rate limiter", self.name, key)
        elif exc is not None:
            logger.warning("Cache %s fetch failed for %s: %s", self.name, key, exc)

    def get_stats(self) -> CacheStats:
        return CacheStats(
            name=self.name,
            size=len(self._store),
            capacity=self.capacity,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            expirations=self._expirations,
            in_flight=len(self._in_flight),
            coalesced=self._coalesced,
        )


def cache_key(resource: str, **params: Any) -> str:
    """Build ``resource:a=1:b=2`` with params sorted by name; None values are dropped."""
    parts = [resource]
    parts.extend(f"{name}={params[name]}" for name in sorted(params) if params[name] is not None)
    return ":".join(parts)


@dataclass
class CachedResult(Generic[T]):
    value: T
    cached: bool = False
    stale: bool = False
    fallback: bool = False
    error: str | None = None

    def as_response(self, **extra: Any) -> dict:
        """JSON envelope shared by the market routes."""
        body = {
            "success": not self.fallback,
            "data": self.value,
            "cached": self.cached,
            "stale": self.stale,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        if self.fallback:
            body["fallback"] = True
        if self.error:
            body["error"] = self.error
        return body


async def fetch_with_fallback(
    cache: TTLCache,
    key: str,
    compute: Compute,
    ttl_seconds: float | None = None,
    *,
    force_refresh: bool = False,
    fallback: Any = _MISSING,
) -> CachedResult:
    """Cached fetch that prefers stale data, then *fallback*, over an upstream error.

    Only ``UpstreamError`` triggers the fallback chain; rate-limit denials and
    not-found errors propagate unchanged.
    """
    cached = not force_refresh and key in cache
    try:
        value = await cache.get_or_compute(key, compute, ttl_seconds, force_refresh=force_refresh)
    except UpstreamError as e:
        stale = cache.get_stale(key, _MISSING)
        if stale is not _MISSING:
            logger.warning("Serving stale %s after upstream failure: %s", key, e)
            return CachedResult(stale, cached=True, stale=True, error=str(e))
        if fallback is not _MISSING:
            logger.warning("Serving fallback for %s after upstream failure: %s", key, e)
            return CachedResult(fallback, fallback=True, error=str(e))
        raise
    return CachedResult(value, cached=cached)
