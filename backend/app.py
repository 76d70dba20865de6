"""FastAPI application entry point for the Coin Feedly market API."""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Callable

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, settings as default_settings
from errors import register_error_handlers
from services.rate_limiter import SlidingWindowLimiter
from services.registry import CacheRegistry, Upstreams
from services.upstream import build_http_client

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Structured logging: JSON for production, human-readable for local."""
    if settings.is_production:
        logging.basicConfig(
            level=logging.INFO,
            format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}',
            stream=sys.stdout,
        )
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    """Build the app with its caches, rate limiter and upstream clients.

    All shared state is created here and hung off ``app.state``; routes reach
    it through dependencies in services/registry.py. Passing ``http_client``
    (e.g. one on an ``httpx.MockTransport``) leaves its lifecycle to the caller.
    """
    settings = settings or default_settings
    owns_client = http_client is None
    http_client = http_client or build_http_client(settings.http_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = settings.validate()
        if missing:
            logger.warning("Missing env vars (free-tier rate limits apply): %s", ", ".join(missing))
        logger.info(
            "Caches ready: %s",
            ", ".join(f"{name}={ttl}s" for name, ttl in settings.cache_ttls.items()),
        )
        yield
        if owns_client:
            await http_client.aclose()

    app = FastAPI(title="Coin Feedly API", version="1.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.caches = CacheRegistry.from_settings(settings, clock=clock)
    app.state.rate_limiter = SlidingWindowLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        clock=clock,
    )
    app.state.upstreams = Upstreams.from_settings(http_client, settings)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Centralized error handlers
    register_error_handlers(app)

    from routes.crypto import router as crypto_router
    from routes.health import router as health_router
    from routes.market import router as market_router

    app.include_router(health_router)
    app.include_router(crypto_router)
    app.include_router(market_router)

    return app


configure_logging(default_settings)
app = create_app()
