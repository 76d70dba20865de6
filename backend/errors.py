"""Custom exceptions and centralized FastAPI error handlers."""

import logging
import math

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CoinFeedlyError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class UpstreamError(CoinFeedlyError):
    """A third-party API call failed: network error, bad status or bad payload."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source} API error: {message}", status_code=502)
        self.source = source


class NotFoundError(CoinFeedlyError):
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class UnsupportedMarketError(CoinFeedlyError):
    def __init__(self, market: str, supported: set[str]):
        super().__init__(
            f"Unsupported market type: {market}. Supported: {sorted(supported)}",
            status_code=400,
        )


class RateLimitDeniedError(CoinFeedlyError):
    """The client used up its upstream allowance for the current window."""

    def __init__(self, retry_after: float, limit: int, remaining: int = 0):
        super().__init__("Rate limit exceeded. Please try again later.", status_code=429)
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after))


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(RateLimitDeniedError)
    async def handle_rate_limited(_request: Request, exc: RateLimitDeniedError):
        return JSONResponse(
            {"error": str(exc), "retry_after": exc.retry_after_seconds},
            status_code=exc.status_code,
            headers={
                "Retry-After": str(exc.retry_after_seconds),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": str(exc.remaining),
            },
        )

    @app.exception_handler(CoinFeedlyError)
    async def handle_coinfeedly_error(_request: Request, exc: CoinFeedlyError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(ValueError)
    async def handle_value_error(_request: Request, exc: ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
        )
