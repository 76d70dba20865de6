"""CoinGecko client for coin lists, detail, charts, search and trending coins.

Free tier allows roughly 10-30 calls/minute, which is why every call here is
fronted by a TTLCache in the routes. Set COINGECKO_API_KEY for the demo tier.
"""

import logging

import httpx

from errors import UpstreamError
from services.upstream import get_json

logger = logging.getLogger(__name__)

SOURCE = "CoinGecko"

MARKET_PARAMS = {
    "vs_currency": "usd",
    "order": "market_cap_desc",
    "sparkline": "true",
    "price_change_percentage": "1h,24h,7d",
}


class CoinGeckoClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        attempts: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._headers = {"x-cg-demo-api-key": api_key} if api_key else None
        self._attempts = attempts
        self._backoff_seconds = backoff_seconds

    async def _get(self, path: str, params: dict | None = None, not_found: str | None = None):
        logger.info("Fetching %s%s", SOURCE, path)
        return await get_json(
            self._http,
            f"{self._base_url}{path}",
            source=SOURCE,
            params=params,
            headers=self._headers,
            attempts=self._attempts,
            backoff_seconds=self._backoff_seconds,
            not_found=not_found,
        )

    async def get_markets(self, page: int = 1, per_page: int = 50, ids: list[str] | None = None) -> list[dict]:
        """Coins ranked by market cap, in CoinGecko's ``/coins/markets`` shape."""
        params = {**MARKET_PARAMS, "page": page, "per_page": per_page}
        if ids:
            params["ids"] = ",".join(ids)
        data = await self._get("/coins/markets", params)
        if not isinstance(data, list):
            raise _bad_payload("/coins/markets")
        return data

    async def get_coin(self, coin_id: str) -> dict:
        """Single coin, flattened to the same fields ``get_markets`` returns."""
        data = await self._get(
            f"/coins/{coin_id}",
            {
                "localization": "false",
                "tickers": "false",
                "market_data": "true",
                "community_data": "false",
                "developer_data": "false",
                "sparkline": "true",
            },
            not_found=f"Cryptocurrency not found: {coin_id}",
        )
        return transform_coin(data)

    async def get_chart(self, coin_id: str, days: int = 7) -> list[dict]:
        """Price history as ``[{timestamp, price, volume}]`` with millisecond timestamps."""
        params = {"vs_currency": "usd", "days": days}
        if days > 1:
            params["interval"] = "daily"
        data = await self._get(
            f"/coins/{coin_id}/market_chart",
            params,
            not_found=f"Cryptocurrency not found: {coin_id}",
        )
        prices = data.get("prices") if isinstance(data, dict) else None
        if prices is None:
            raise _bad_payload("market_chart")

        volumes = {int(ts): vol for ts, vol in data.get("total_volumes", [])}
        return [
            {"timestamp": int(ts), "price": price, "volume": volumes.get(int(ts))}
            for ts, price in prices
        ]

    async def search(self, query: str, limit: int = 10) -> list[dict]:
        data = await self._get("/search", {"query": query})
        ids = _coin_ids(data, "/search", lambda coin: coin["id"])[:limit]
        if not ids:
            return []
        return await self.get_markets(per_page=limit, ids=ids)

    async def get_trending(self, limit: int = 10) -> list[dict]:
        data = await self._get("/search/trending")
        ids = _coin_ids(data, "/search/trending", lambda coin: coin["item"]["id"])[:limit]
        if not ids:
            return []
        return await self.get_markets(per_page=limit, ids=ids)


def _bad_payload(endpoint: str) -> UpstreamError:
    return UpstreamError(SOURCE, f"unexpected payload from {endpoint}")


def _coin_ids(data, endpoint: str, extract) -> list[str]:
    coins = data.get("coins", []) if isinstance(data, dict) else None
    if not isinstance(coins, list):
        raise _bad_payload(endpoint)
    try:
        return [extract(coin) for coin in coins]
    except (KeyError, TypeError) as e:
        raise _bad_payload(endpoint) from e


def transform_coin(data: dict) -> dict:
    """Flatten a ``/coins/{id}`` response into the ``/coins/markets`` row shape."""
    market = data.get("market_data") or {}

    def usd(field: str):
        value = market.get(field)
        return value.get("usd") if isinstance(value, dict) else None

    sparkline = market.get("sparkline_7d")
    return {
        "id": data.get("id"),
        "symbol": data.get("symbol"),
        "name": data.get("name"),
        "image": (data.get("image") or {}).get("small", ""),
        "current_price": usd("current_price"),
        "market_cap": usd("market_cap"),
        "market_cap_rank": data.get("market_cap_rank"),
        "total_volume": usd("total_volume"),
        "high_24h": usd("high_24h"),
        "low_24h": usd("low_24h"),
        "price_change_24h": market.get("price_change_24h"),
        "price_change_percentage_24h": market.get("price_change_percentage_24h"),
        "price_change_percentage_1h_in_currency": usd("price_change_percentage_1h_in_currency"),
        "price_change_percentage_7d_in_currency": usd("price_change_percentage_7d_in_currency"),
        "circulating_supply": market.get("circulating_supply"),
        "total_supply": market.get("total_supply"),
        "max_supply": market.get("max_supply"),
        "fully_diluted_valuation": usd("fully_diluted_valuation"),
        "sparkline_in_7d": {"price": sparkline["price"]} if sparkline else None,
    }
