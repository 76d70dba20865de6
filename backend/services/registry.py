"""One TTLCache per cached resource, built at startup and injected into routes."""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx
from fastapi import Request

from config import DEFAULT_TTLS, Settings
from services.cache import CachedResult, TTLCache, fetch_with_fallback
from services.crypto import CoinGeckoClient
from services.fear_greed import FearGreedClient
from services.finance import YahooFinanceClient
from services.polymarket import PolymarketClient
from services.rate_limiter import SlidingWindowLimiter

logger = logging.getLogger(__name__)

# Resources whose payload is a single value regardless of parameters.
SMALL_CAPACITY = {"fear_greed": 10, "crypto_trending": 10}


class CacheRegistry:
    """Per-resource caches sharing one clock, each with its own TTL policy."""

    def __init__(
        self,
        ttls: dict[str, float],
        capacity: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttls = dict(ttls)
        self._caches: dict[str, TTLCache] = {
            resource: TTLCache(
                capacity=min(capacity, SMALL_CAPACITY.get(resource, capacity)),
                default_ttl_seconds=ttl,
                clock=clock,
                name=resource,
            )
            for resource, ttl in self._ttls.items()
        }

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "CacheRegistry":
        return cls(settings.cache_ttls, capacity=settings.cache_capacity, clock=clock)

    def get(self, resource: str) -> TTLCache:
        try:
            return self._caches[resource]
        except KeyError:
            raise KeyError(f"No cache configured for {resource!r}. Known: {sorted(self._caches)}") from None

    def ttl(self, resource: str) -> float:
        return self._ttls.get(resource, DEFAULT_TTLS.get(resource, 60))

    def stats(self) -> dict[str, dict]:
        return {resource: cache.get_stats().to_dict() for resource, cache in self._caches.items()}

    def total_entries(self) -> int:
        return sum(len(cache) for cache in self._caches.values())


@dataclass
class Upstreams:
    """The third-party API clients, sharing one httpx.AsyncClient."""

    coingecko: CoinGeckoClient
    finance: YahooFinanceClient
    fear_greed: FearGreedClient
    polymarket: PolymarketClient

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient, settings: Settings) -> "Upstreams":
        return cls(
            coingecko=CoinGeckoClient(http, settings.coingecko_api_url, api_key=settings.coingecko_api_key),
            finance=YahooFinanceClient(http, settings.yahoo_finance_url),
            fear_greed=FearGreedClient(http, settings.fear_greed_url),
            polymarket=PolymarketClient(http, settings.polymarket_api_url),
        )


# ---------------------------------------------------------------------------
# FastAPI dependencies: state lives on app.state, created in create_app()
# ---------------------------------------------------------------------------

def get_caches(request: Request) -> CacheRegistry:
    return request.app.state.caches


def get_rate_limiter(request: Request) -> SlidingWindowLimiter:
    return request.app.state.rate_limiter


def get_upstreams(request: Request) -> "Upstreams":
    return request.app.state.upstreams


def client_identity(request: Request) -> str:
    """Identify the caller for rate limiting, honoring reverse-proxy headers."""
    if request.app.state.settings.is_local:
        return "dev-client"

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    if request.client:
        return request.client.host
    return "unknown"


class CachedFetcher:
    """Request-scoped helper: cached, rate-limited, stale-tolerant upstream fetch."""

    def __init__(self, caches: CacheRegistry, limiter: SlidingWindowLimiter, identity: str):
        self.caches = caches
        self.limiter = limiter
        self.identity = identity

    async def fetch(
        self,
        resource: str,
        key: str,
        fetch: Callable[[], Awaitable],
        *,
        force_refresh: bool = False,
        **options,
    ) -> CachedResult:
        """Serve *key* from the *resource* cache, fetching on a miss.

        Only a request that starts a new upstream fetch spends the caller's
        rate limit; callers joining an in-flight fetch or hitting a fresh
        entry are not charged. Other options (``fallback``) are passed to
        ``fetch_with_fallback``.
        """
        cache = self.caches.get(resource)
        if (force_refresh or key not in cache) and not cache.is_in_flight(key):
            self.limiter.acquire(self.identity)
        return await fetch_with_fallback(
            cache,
            key,
            fetch,
            self.caches.ttl(resource),
            force_refresh=force_refresh,
            **options,
        )


def get_fetcher(request: Request) -> CachedFetcher:
    return CachedFetcher(get_caches(request), get_rate_limiter(request), client_identity(request))
