"""Health, readiness and cache statistics routes."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from services.rate_limiter import SlidingWindowLimiter
from services.registry import CacheRegistry, get_caches, get_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter()

NO_STORE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


@router.get("/ready")
async def ready(request: Request) -> dict:
    """Lightweight readiness check, no external calls."""
    settings = request.app.state.settings
    return {"status": "ok", "service": "coinfeedly-api", "commit": settings.git_sha}


@router.get("/health")
async def health(request: Request, caches: CacheRegistry = Depends(get_caches)) -> JSONResponse:
    """Service status with a cache summary. Makes no upstream calls."""
    settings = request.app.state.settings
    stats = caches.stats()
    body = {
        "status": "ok",
        "service": "coinfeedly-api",
        "commit": settings.git_sha,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache": {
            "total_entries": caches.total_entries(),
            "in_flight": sum(s["in_flight"] for s in stats.values()),
            "hits": sum(s["hits"] for s in stats.values()),
            "misses": sum(s["misses"] for s in stats.values()),
        },
    }
    return JSONResponse(body, headers=NO_STORE)


@router.get("/api/cache-stats")
async def cache_stats(
    caches: CacheRegistry = Depends(get_caches),
    limiter: SlidingWindowLimiter = Depends(get_rate_limiter),
) -> JSONResponse:
    """Per-cache counters plus rate limiter occupancy."""
    pruned = limiter.prune()
    body = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_entries": caches.total_entries(),
        "caches": caches.stats(),
        "rate_limiter": {
            "max_requests": limiter.max_requests,
            "window_seconds": limiter.window_seconds,
            "tracked_clients": limiter.tracked_clients,
            "pruned_clients": pruned,
        },
    }
    return JSONResponse(body, headers={**NO_STORE, "X-Cache-Status": "STATS"})
