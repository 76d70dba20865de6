"""Yahoo Finance chart API client for stocks, indices, commodities and forex.

Unofficial endpoint with soft limits. Quotes are fetched per symbol and
fanned out with asyncio.gather; symbols that fail are dropped unless every
one of them fails.
"""

import asyncio
import logging

import httpx

from errors import UnsupportedMarketError, UpstreamError
from services.upstream import get_json

logger = logging.getLogger(__name__)

SOURCE = "Yahoo Finance"

# Browser UA: the chart endpoint rejects unknown clients.
YAHOO_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}

MAJOR_STOCKS = [
    "AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "META", "NVDA", "NFLX", "AMD", "INTC",
    "JPM", "BAC", "WMT", "PG", "JNJ", "V", "MA", "HD", "DIS", "PYPL",
]
MAJOR_INDICES = ["^GSPC", "^DJI", "^IXIC", "^RUT", "^VIX", "^TNX", "^FVX"]
MAJOR_COMMODITIES = ["GC=F", "SI=F", "CL=F", "NG=F", "PL=F", "PA=F", "HG=F", "ZC=F", "ZS=F", "KC=F"]
MAJOR_FOREX = ["EURUSD=X", "GBPUSD=X", "USDJPY=X", "USDCHF=X", "AUDUSD=X", "USDCAD=X", "NZDUSD=X"]

COMMODITY_UNITS = {
    "GC=F": "oz",       # Gold
    "SI=F": "oz",       # Silver
    "CL=F": "barrel",   # Crude Oil
    "NG=F": "MMBtu",    # Natural Gas
    "PL=F": "oz",       # Platinum
    "PA=F": "oz",       # Palladium
    "HG=F": "lb",       # Copper
    "ZC=F": "bushel",   # Corn
    "ZS=F": "bushel",   # Soybeans
    "KC=F": "lb",       # Coffee
}

MARKET_TYPES = {"stocks", "indices", "commodities", "forex", "ticker"}

# Ticker strip: a few of each market, in display order.
TICKER_MIX = [
    ("stocks", MAJOR_STOCKS[:8]),
    ("indices", MAJOR_INDICES[:3]),
    ("commodities", MAJOR_COMMODITIES[:3]),
    ("forex", MAJOR_FOREX[:2]),
]

SYMBOLS_BY_TYPE = {
    "stocks": MAJOR_STOCKS,
    "indices": MAJOR_INDICES,
    "commodities": MAJOR_COMMODITIES,
    "forex": MAJOR_FOREX,
}


def validate_market_type(market: str) -> str:
    market = market.lower()
    if market not in MARKET_TYPES:
        raise UnsupportedMarketError(market, MARKET_TYPES)
    return market


class YahooFinanceClient:
    def __init__(self, http: httpx.AsyncClient, base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"):
        self._http = http
        self._base_url = base_url.rstrip("/")

    async def get_quote(self, symbol: str) -> dict | None:
        """Latest quote for one symbol, or None if Yahoo has no chart for it."""
        data = await get_json(
            self._http,
            f"{self._base_url}/{symbol}",
            source=SOURCE,
            headers=YAHOO_HEADERS,
        )
        results = (data.get("chart") or {}).get("result") if isinstance(data, dict) else None
        if not results:
            return None
        return parse_quote(symbol, results[0].get("meta") or {})

    async def get_quotes(self, symbols: list[str]) -> list[dict]:
        """Quotes for *symbols*, skipping individual failures.

        Raises UpstreamError only when no symbol could be fetched.
        """
        results = await asyncio.gather(*[self.get_quote(s) for s in symbols], return_exceptions=True)

        quotes = []
        failures = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, UpstreamError):
                failures.append(symbol)
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                quotes.append(result)

        if failures:
            logger.warning("Yahoo quotes failed for %d/%d symbols: %s", len(failures), len(symbols), failures)
        if symbols and not quotes and failures:
            raise UpstreamError(SOURCE, f"all {len(symbols)} quote requests failed")
        return quotes

    async def get_market(self, market: str) -> list[dict]:
        """Quotes for one market type, decorated with type-specific fields."""
        market = validate_market_type(market)
        if market == "ticker":
            return await self.get_ticker()
        quotes = await self.get_quotes(SYMBOLS_BY_TYPE[market])
        return [decorate(market, q) for q in quotes]

    async def get_ticker(self) -> list[dict]:
        groups = await asyncio.gather(*[self.get_quotes(symbols) for _, symbols in TICKER_MIX])
        return [decorate(market, q) for (market, _), quotes in zip(TICKER_MIX, groups) for q in quotes]


def parse_quote(symbol: str, meta: dict) -> dict:
    price = meta.get("regularMarketPrice") or meta.get("previousClose") or 0
    previous_close = meta.get("previousClose") or meta.get("chartPreviousClose") or 0
    change = price - previous_close
    change_percent = (change / previous_close * 100) if previous_close else 0.0
    return {
        "id": symbol,
        "symbol": symbol,
        "name": meta.get("longName") or meta.get("shortName") or symbol,
        "price": price,
        "change": round(change, 4),
        "change_percent": round(change_percent, 2),
        "volume": meta.get("regularMarketVolume") or 0,
        "high": meta.get("regularMarketDayHigh") or 0,
        "low": meta.get("regularMarketDayLow") or 0,
        "previous_close": previous_close,
        "currency": meta.get("currency"),
        "exchange": meta.get("exchangeName") or "NYSE",
    }


def decorate(market: str, quote: dict) -> dict:
    quote = {**quote, "type": market}
    if market == "indices":
        quote["points"] = quote["price"]
    elif market == "commodities":
        quote["unit"] = COMMODITY_UNITS.get(quote["symbol"], "unit")
    elif market == "forex":
        pair = quote["symbol"].replace("=X", "")
        quote["base_currency"] = pair[:3]
        quote["quote_currency"] = pair[3:6]
        quote["exchange"] = "FOREX"
    return quote
