"""Crypto Fear & Greed Index from alternative.me.

Free API, no key required. The index updates once a day.
"""

import logging
from datetime import datetime, timezone

import httpx

from errors import UpstreamError
from services.upstream import get_json

logger = logging.getLogger(__name__)

SOURCE = "Fear & Greed"

# Served when the API is down and nothing has ever been cached.
NEUTRAL_FALLBACK = {
    "value": 50,
    "classification": "Neutral",
    "timestamp": None,
    "time_until_update": None,
}


class FearGreedClient:
    def __init__(self, http: httpx.AsyncClient, url: str = "https://api.alternative.me/fng/"):
        self._http = http
        self._url = url

    async def get_index(self, limit: int = 1) -> dict:
        """Latest index value plus up to ``limit - 1`` previous days as history."""
        data = await get_json(self._http, self._url, source=SOURCE, params={"limit": limit})

        metadata_error = (data.get("metadata") or {}).get("error") if isinstance(data, dict) else None
        if metadata_error:
            raise UpstreamError(SOURCE, metadata_error)
        points = data.get("data") if isinstance(data, dict) else None
        if not points:
            raise UpstreamError(SOURCE, "no fear & greed data available")

        try:
            parsed = [parse_point(p) for p in points]
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(SOURCE, f"malformed data point: {e}") from e

        latest = parsed[0]
        latest["time_until_update"] = points[0].get("time_until_update")
        if limit > 1:
            latest["history"] = parsed[1:]
        return latest


def parse_point(point: dict) -> dict:
    return {
        "value": int(point["value"]),
        "classification": point["value_classification"],
        "timestamp": datetime.fromtimestamp(int(point["timestamp"]), tz=timezone.utc).isoformat(),
    }
