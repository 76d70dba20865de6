"""Shared httpx plumbing for the third-party market data APIs."""

import asyncio
import logging
from typing import Any

import httpx

from errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

USER_AGENT = "CoinFeedly/1.0"

# Statuses worth another attempt: throttling and transient server errors.
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 10.0


def build_http_client(timeout_seconds: float) -> httpx.AsyncClient:
    """Shared client for all upstream calls; closed in the app lifespan."""
    return httpx.AsyncClient(
        timeout=timeout_seconds,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        follow_redirects=True,
    )


def _retry_delay(response: httpx.Response | None, attempt: int, backoff_seconds: float) -> float:
    if response is not None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), MAX_RETRY_AFTER_SECONDS)
            except ValueError:
                pass
    return backoff_seconds * (2 ** attempt)


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    params: dict | None = None,
    headers: dict | None = None,
    attempts: int = 1,
    backoff_seconds: float = 0.5,
    not_found: str | None = None,
) -> Any:
    """GET *url* and decode JSON, turning every failure into ``UpstreamError``.

    Args:
        source: Upstream name used in log lines and error messages.
        attempts: Total tries for timeouts and retryable statuses.
        backoff_seconds: Base delay, doubled per retry unless Retry-After is sent.
        not_found: If set, a 404 raises ``NotFoundError`` with this message.
    """
    last_error = "no attempts made"
    for attempt in range(max(1, attempts)):
        response = None
        try:
            response = await client.get(url, params=params, headers=headers)
            if response.status_code == 404 and not_found:
                raise NotFoundError(not_found)
            if response.status_code in RETRYABLE_STATUSES:
                last_error = f"HTTP {response.status_code}"
            else:
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError as e:
                    raise UpstreamError(source, "malformed JSON payload") from e
        except httpx.TimeoutException:
            last_error = "request timed out"
        except httpx.HTTPStatusError as e:
            raise UpstreamError(source, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(source, str(e) or type(e).__name__) from e

        if attempt + 1 < attempts:
            delay = _retry_delay(response, attempt, backoff_seconds)
            logger.info("%s request failed (%s), retrying in %.1fs", source, last_error, delay)
            await asyncio.sleep(delay)

    logger.error("%s request to %s failed: %s", source, url, last_error)
    raise UpstreamError(source, last_error)
