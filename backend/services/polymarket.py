"""Polymarket Gamma API client for prediction markets.

Only markets about crypto, finance or politics are kept; sports and
entertainment markets are dropped.
"""

import json
import logging
import re

import httpx

from errors import UpstreamError
from services.upstream import get_json

logger = logging.getLogger(__name__)

SOURCE = "Polymarket"

CATEGORY_KEYWORDS = {
    "crypto": [
        "bitcoin", "ethereum", "crypto", "btc", "eth", "defi", "altcoin", "solana",
        "cardano", "chainlink", "avalanche", "binance", "coinbase", "blockchain",
        "nft", "web3", "stablecoin", "staking", "halving", "etf",
    ],
    "finance": [
        "fed", "federal reserve", "interest rate", "inflation", "recession", "gdp",
        "unemployment", "jobs report", "cpi", "treasury", "yield", "dollar",
        "stock market", "s&p", "nasdaq", "dow", "earnings", "bank", "default",
    ],
    "politics": [
        "election", "president", "congress", "senate", "governor", "trump",
        "biden", "vote", "ballot", "primary", "impeachment", "nomination", "veto",
    ],
}

EXCLUDE_KEYWORDS = [
    "nba", "nfl", "mlb", "nhl", "soccer", "football", "basketball", "baseball",
    "hockey", "tennis", "golf", "boxing", "ufc", "oscar", "emmy", "grammy",
    "movie", "celebrity",
]

CATEGORIES = set(CATEGORY_KEYWORDS) | {"all"}


def _pattern(keywords: list[str]) -> re.Pattern:
    return re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE)


_CATEGORY_PATTERNS = {name: _pattern(words) for name, words in CATEGORY_KEYWORDS.items()}
_EXCLUDE_PATTERN = _pattern(EXCLUDE_KEYWORDS)


def classify(text: str) -> str | None:
    """First matching category for a market's text, or None if off-topic."""
    if _EXCLUDE_PATTERN.search(text):
        return None
    for name, pattern in _CATEGORY_PATTERNS.items():
        if pattern.search(text):
            return name
    return None


class PolymarketClient:
    def __init__(self, http: httpx.AsyncClient, base_url: str = "https://gamma-api.polymarket.com"):
        self._http = http
        self._base_url = base_url.rstrip("/")

    async def get_markets(self, category: str = "all", limit: int = 10, fetch_limit: int = 100) -> list[dict]:
        """Active markets in *category*, highest volume first."""
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category '{category}'. Available: {sorted(CATEGORIES)}")

        data = await get_json(
            self._http,
            f"{self._base_url}/markets",
            source=SOURCE,
            params={"active": "true", "closed": "false", "archived": "false", "limit": fetch_limit},
        )
        if not isinstance(data, list):
            raise UpstreamError(SOURCE, "unexpected payload from /markets")

        markets = []
        for raw in data:
            try:
                market = transform_market(raw)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed market %s: %s", raw.get("id") if isinstance(raw, dict) else raw, e)
                continue
            if market is None:
                continue
            if category != "all" and market["category"] != category:
                continue
            markets.append(market)

        markets.sort(key=lambda m: m["volume"], reverse=True)
        return markets[:limit]


def _json_list(value) -> list:
    # Gamma encodes outcome arrays as JSON strings.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    return value if isinstance(value, list) else []


def transform_market(raw: dict) -> dict | None:
    if not isinstance(raw, dict):
        return None
    question = raw.get("question") or ""
    category = classify(f"{question} {raw.get('description') or ''}")
    if category is None:
        return None

    outcomes = _json_list(raw.get("outcomes"))
    prices = [float(p) for p in _json_list(raw.get("outcomePrices"))]
    return {
        "id": str(raw.get("id")),
        "question": question,
        "slug": raw.get("slug"),
        "category": category,
        "end_date": raw.get("endDate"),
        "volume": float(raw.get("volume") or 0),
        "liquidity": float(raw.get("liquidity") or 0),
        "outcomes": [
            {"name": name, "probability": prices[i] if i < len(prices) else None}
            for i, name in enumerate(outcomes)
        ],
    }
