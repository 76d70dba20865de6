"""Market routes: traditional finance, sentiment and prediction markets.

GET /api/finance      → stocks, indices, commodities, forex or the ticker mix
GET /api/fear-greed   → Crypto Fear & Greed Index (neutral fallback when down)
GET /api/polymarket   → finance-related prediction markets
"""

import logging

from fastapi import APIRouter, Depends, Query

from services.cache import cache_key
from services.fear_greed import NEUTRAL_FALLBACK
from services.finance import validate_market_type
from services.polymarket import CATEGORIES
from services.registry import CachedFetcher, Upstreams, get_fetcher, get_upstreams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["market"])


# ---------------------------------------------------------------------------
# Finance: Yahoo quotes
# ---------------------------------------------------------------------------

@router.get("/finance")
async def finance(
    type: str = Query("ticker"),
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    """Quotes for one market type; ``ticker`` mixes a few of each."""
    market = validate_market_type(type)
    result = await fetcher.fetch(
        "finance",
        cache_key("finance", type=market),
        lambda: upstreams.finance.get_market(market),
        force_refresh=refresh,
    )
    return result.as_response(type=market, count=len(result.value))


# ---------------------------------------------------------------------------
# Sentiment: Fear & Greed Index
# ---------------------------------------------------------------------------

@router.get("/fear-greed")
async def fear_greed(
    days: int = Query(1, ge=1, le=30),
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    """Latest index value; ``days > 1`` adds history. Never fails on upstream errors."""
    result = await fetcher.fetch(
        "fear_greed",
        cache_key("fear-greed", days=days),
        lambda: upstreams.fear_greed.get_index(limit=days),
        force_refresh=refresh,
        fallback=NEUTRAL_FALLBACK,
    )
    index = result.value
    _summary = f"Fear & Greed Index: {index['value']} ({index['classification']})"
    return result.as_response(_summary=_summary)


# ---------------------------------------------------------------------------
# Prediction markets: Polymarket
# ---------------------------------------------------------------------------

@router.get("/polymarket")
async def polymarket(
    category: str = Query("all"),
    limit: int = Query(10, ge=1, le=50),
    refresh: bool = Query(False),
    fetcher: CachedFetcher = Depends(get_fetcher),
    upstreams: Upstreams = Depends(get_upstreams),
) -> dict:
    category = category.lower()
    if category not in CATEGORIES:
        raise ValueError(f"Unknown category '{category}'. Available: {sorted(CATEGORIES)}")

    result = await fetcher.fetch(
        "polymarket",
        cache_key("polymarket", category=category, limit=limit),
        lambda: upstreams.polymarket.get_markets(category=category, limit=limit),
        force_refresh=refresh,
    )
    markets = result.value
    body = result.as_response(category=category, count=len(markets))
    if not markets:
        body["message"] = "No active markets found"
    return body
