"""Tests for the third-party API clients, using httpx.MockTransport."""

import httpx
import pytest

from errors import NotFoundError, UnsupportedMarketError, UpstreamError
from services.crypto import CoinGeckoClient, transform_coin
from services.fear_greed import FearGreedClient
from services.finance import YahooFinanceClient, decorate, parse_quote
from services.polymarket import PolymarketClient, classify, transform_market
from services.upstream import get_json
from fakes import CHART, COIN_DETAIL, FEAR_GREED, POLYMARKETS, FakeUpstream, yahoo_chart


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestGetJson:
    @pytest.mark.asyncio
    async def test_returns_decoded_json(self):
        async with _client(lambda r: httpx.Response(200, json={"ok": True})) as http:
            assert await get_json(http, "https://api.test/x", source="Test") == {"ok": True}

    @pytest.mark.asyncio
    async def test_retries_retryable_status(self):
        responses = iter([
            httpx.Response(503, headers={"Retry-After": "0"}),
            httpx.Response(200, json=[1]),
        ])
        async with _client(lambda r: next(responses)) as http:
            data = await get_json(http, "https://api.test/x", source="Test", attempts=2, backoff_seconds=0)
        assert data == [1]

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        async with _client(handler) as http:
            with pytest.raises(UpstreamError, match="HTTP 429"):
                await get_json(http, "https://api.test/x", source="Test", attempts=3, backoff_seconds=0)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        async with _client(handler) as http:
            with pytest.raises(UpstreamError, match="HTTP 401"):
                await get_json(http, "https://api.test/x", source="Test", attempts=3, backoff_seconds=0)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_not_found_mapped_when_requested(self):
        async with _client(lambda r: httpx.Response(404)) as http:
            with pytest.raises(NotFoundError, match="no such coin"):
                await get_json(http, "https://api.test/x", source="Test", not_found="no such coin")

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        async with _client(lambda r: httpx.Response(200, content=b"<html>")) as http:
            with pytest.raises(UpstreamError, match="malformed JSON"):
                await get_json(http, "https://api.test/x", source="Test")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as http:
            with pytest.raises(UpstreamError) as exc_info:
                await get_json(http, "https://api.test/x", source="Test")
        assert exc_info.value.status_code == 502
        assert exc_info.value.source == "Test"


class TestCoinGecko:
    @pytest.mark.asyncio
    async def test_markets(self):
        upstream = FakeUpstream()
        async with _client(upstream) as http:
            coins = await CoinGeckoClient(http).get_markets(page=2, per_page=10)
        assert [c["id"] for c in coins] == ["bitcoin", "ethereum"]

    @pytest.mark.asyncio
    async def test_api_key_header_sent(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json=[])

        async with _client(handler) as http:
            await CoinGeckoClient(http, api_key="demo-key").get_markets()
        assert seen["x-cg-demo-api-key"] == "demo-key"

    @pytest.mark.asyncio
    async def test_unknown_coin_is_not_found(self):
        async with _client(FakeUpstream()) as http:
            with pytest.raises(NotFoundError):
                await CoinGeckoClient(http).get_coin("not-a-coin")

    @pytest.mark.asyncio
    async def test_chart_points(self):
        async with _client(FakeUpstream()) as http:
            points = await CoinGeckoClient(http).get_chart("bitcoin", days=3)
        assert len(points) == len(CHART["prices"])
        assert points[0] == {"timestamp": 1_700_000_000_000, "price": 100.0, "volume": 5.0}

    @pytest.mark.asyncio
    async def test_chart_without_prices_is_upstream_error(self):
        async with _client(lambda r: httpx.Response(200, json={"error": "bad"})) as http:
            with pytest.raises(UpstreamError):
                await CoinGeckoClient(http).get_chart("bitcoin")

    @pytest.mark.asyncio
    async def test_search_with_no_hits_skips_markets_call(self):
        upstream_calls = []

        def handler(request):
            upstream_calls.append(request.url.path)
            return httpx.Response(200, json={"coins": []})

        async with _client(handler) as http:
            assert await CoinGeckoClient(http).search("zzz") == []
        assert upstream_calls == ["/api/v3/search"]

    @pytest.mark.asyncio
    async def test_search_non_object_payload_is_upstream_error(self):
        async with _client(lambda r: httpx.Response(200, json=[])) as http:
            with pytest.raises(UpstreamError, match="unexpected payload from /search"):
                await CoinGeckoClient(http).search("btc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [[], {"coins": [{"id": "bitcoin"}]}, {"coins": ["bitcoin"]}, {"coins": "bitcoin"}],
    )
    async def test_trending_malformed_payload_is_upstream_error(self, payload):
        async with _client(lambda r: httpx.Response(200, json=payload)) as http:
            with pytest.raises(UpstreamError, match="unexpected payload from /search/trending"):
                await CoinGeckoClient(http).get_trending()

    @pytest.mark.asyncio
    async def test_trending_resolves_market_rows(self):
        async with _client(FakeUpstream()) as http:
            coins = await CoinGeckoClient(http).get_trending()
        assert coins[0]["id"] == "bitcoin"

    def test_transform_coin_flattens_market_data(self):
        coin = transform_coin(COIN_DETAIL)
        assert coin["current_price"] == 50000.0
        assert coin["market_cap_rank"] == 1
        assert coin["image"] == "https://img/btc.png"
        assert coin["price_change_percentage_24h"] == 1.5
        assert coin["total_volume"] is None
        assert coin["sparkline_in_7d"] is None


class TestYahooFinance:
    def test_parse_quote_computes_change(self):
        quote = parse_quote("AAPL", yahoo_chart("AAPL", price=110.0, previous_close=100.0)["chart"]["result"][0]["meta"])
        assert quote["price"] == 110.0
        assert quote["change"] == 10.0
        assert quote["change_percent"] == 10.0
        assert quote["name"] == "AAPL Inc"

    def test_decorate_forex_pair(self):
        quote = decorate("forex", {"symbol": "EURUSD=X", "price": 1.08, "exchange": "CCY"})
        assert quote["base_currency"] == "EUR"
        assert quote["quote_currency"] == "USD"
        assert quote["exchange"] == "FOREX"

    def test_decorate_commodity_unit(self):
        assert decorate("commodities", {"symbol": "CL=F", "price": 80.0})["unit"] == "barrel"

    @pytest.mark.asyncio
    async def test_partial_failures_are_dropped(self):
        def handler(request):
            if request.url.path.endswith("MSFT"):
                return httpx.Response(500)
            return httpx.Response(200, json=yahoo_chart(request.url.path.rsplit("/", 1)[-1]))

        async with _client(handler) as http:
            quotes = await YahooFinanceClient(http).get_quotes(["AAPL", "MSFT", "NVDA"])
        assert [q["symbol"] for q in quotes] == ["AAPL", "NVDA"]

    @pytest.mark.asyncio
    async def test_all_failures_raise(self):
        async with _client(lambda r: httpx.Response(500)) as http:
            with pytest.raises(UpstreamError, match="all 2 quote requests failed"):
                await YahooFinanceClient(http).get_quotes(["AAPL", "MSFT"])

    @pytest.mark.asyncio
    async def test_ticker_mixes_markets(self):
        async with _client(FakeUpstream()) as http:
            ticker = await YahooFinanceClient(http).get_market("ticker")
        types = [q["type"] for q in ticker]
        assert types.count("stocks") == 8
        assert types.count("indices") == 3
        assert types.count("commodities") == 3
        assert types.count("forex") == 2

    @pytest.mark.asyncio
    async def test_unknown_market_type(self):
        async with _client(FakeUpstream()) as http:
            with pytest.raises(UnsupportedMarketError):
                await YahooFinanceClient(http).get_market("bonds")


class TestFearGreed:
    @pytest.mark.asyncio
    async def test_latest_value(self):
        async with _client(FakeUpstream()) as http:
            index = await FearGreedClient(http).get_index()
        assert index["value"] == 72
        assert index["classification"] == "Greed"
        assert index["timestamp"].startswith("2023-11-14")
        assert "history" not in index

    @pytest.mark.asyncio
    async def test_history(self):
        async with _client(FakeUpstream()) as http:
            index = await FearGreedClient(http).get_index(limit=2)
        assert [p["value"] for p in index["history"]] == [65]

    @pytest.mark.asyncio
    async def test_metadata_error(self):
        payload = {**FEAR_GREED, "metadata": {"error": "maintenance"}}
        async with _client(lambda r: httpx.Response(200, json=payload)) as http:
            with pytest.raises(UpstreamError, match="maintenance"):
                await FearGreedClient(http).get_index()

    @pytest.mark.asyncio
    async def test_empty_data(self):
        async with _client(lambda r: httpx.Response(200, json={"data": []})) as http:
            with pytest.raises(UpstreamError, match="no fear & greed data"):
                await FearGreedClient(http).get_index()


class TestPolymarket:
    @pytest.mark.parametrize(
        "text, category",
        [
            ("Will Bitcoin reach $100k?", "crypto"),
            ("Will the Fed cut interest rates?", "finance"),
            ("Who will win the presidential election?", "politics"),
            ("Will the Lakers win the NBA finals?", None),
            ("Will it rain in Paris tomorrow?", None),
            ("Will whether-or-not markets resolve?", None),
        ],
    )
    def test_classify(self, text, category):
        assert classify(text) == category

    def test_transform_parses_outcome_strings(self):
        market = transform_market(POLYMARKETS[0])
        assert market["category"] == "crypto"
        assert market["volume"] == 2_500_000.0
        assert market["outcomes"] == [
            {"name": "Yes", "probability": 0.62},
            {"name": "No", "probability": 0.38},
        ]

    @pytest.mark.asyncio
    async def test_filters_and_sorts_by_volume(self):
        async with _client(FakeUpstream()) as http:
            markets = await PolymarketClient(http).get_markets()
        assert [m["id"] for m in markets] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_category_filter(self):
        async with _client(FakeUpstream()) as http:
            markets = await PolymarketClient(http).get_markets(category="finance")
        assert [m["id"] for m in markets] == ["2"]

    @pytest.mark.asyncio
    async def test_unknown_category(self):
        async with _client(FakeUpstream()) as http:
            with pytest.raises(ValueError):
                await PolymarketClient(http).get_markets(category="sports")
