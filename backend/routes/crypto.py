"""Crypto routes: CoinGecko data behind per-resource TTL caches.

GET /api/crypto                    → ranked coin list        (cache: crypto_list)
GET /api/crypto/search             → coins matching a query  (cache: crypto_search)
GET /api/crypto/trending           → trending coins          (cache: crypto_trending)
GET /api/crypto/{coin_id}          → single coin detail      (cache: crypto_detail)
GET /api/crypto/{coin_id}/chart    → price history + summary (cache: crypto_chart)

Every route accepts ``refresh=true`` to bypass the cache for one request.
"""

import logging

from fastapi import APIRouter, Depends, Path, Query

from services.cache import cache_key
from services.chart_stats import summarize_chart
from services.registry import CachedFetcher, Upstreams, get_fetcher, get_upstreams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/crypto", tags=["crypto"])

COIN_ID = Path(..., pattern=r"^[a-z0-9-]+$", max_length=100)


@router.get("")
async def crypto_list(
    page: int = Query(1, ge=1, le=100),
    per_page: int = Query(50, ge=1, le=250),
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    """Coins ranked by market cap."""
    key = cache_key("crypto-list", page=page, per_page=per_page)
    result = await fetcher.fetch(
        "crypto_list",
        key,
        lambda: upstreams.coingecko.get_markets(page=page, per_page=per_page),
        force_refresh=refresh,
    )
    return result.as_response(page=page, per_page=per_page, count=len(result.value))


@router.get("/search")
async def crypto_search(
    q: str = Query(..., min_length=1, max_length=50),
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    query = q.strip().lower()
    result = await fetcher.fetch(
        "crypto_search",
        cache_key("crypto-search", q=query),
        lambda: upstreams.coingecko.search(query),
        force_refresh=refresh,
    )
    return result.as_response(query=query, count=len(result.value))


@router.get("/trending")
async def crypto_trending(
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    result = await fetcher.fetch(
        "crypto_trending",
        cache_key("crypto-trending"),
        upstreams.coingecko.get_trending,
        force_refresh=refresh,
    )
    return result.as_response(count=len(result.value))


@router.get("/{coin_id}")
async def crypto_detail(
    coin_id: str = COIN_ID,
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    result = await fetcher.fetch(
        "crypto_detail",
        cache_key("crypto-detail", id=coin_id),
        lambda: upstreams.coingecko.get_coin(coin_id),
        force_refresh=refresh,
    )
    return result.as_response()


@router.get("/{coin_id}/chart")
async def crypto_chart(
    coin_id: str = COIN_ID,
    days: int = Query(7, ge=1, le=365),
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    """Price history with open/close/high/low and volatility for the window."""
    result = await fetcher.fetch(
        "crypto_chart",
        cache_key("crypto-chart", id=coin_id, days=days),
        lambda: upstreams.coingecko.get_chart(coin_id, days),
        force_refresh=refresh,
    )
    summary = summarize_chart(result.value)

    _summary = f"{coin_id} over {days}d: no price data"
    if summary:
        _summary = (
            f"{coin_id} over {days}d: {summary['change_percent']:+.2f}% "
            f"(high ${summary['high']:,.2f}, low ${summary['low']:,.2f})"
        )

    return result.as_response(_summary=_summary, id=coin_id, days=days, summary=summary)
