"""Summary statistics over a coin's price chart.

Computed per response from the cached chart points, so the cache only ever
holds the raw upstream series.
"""

import logging

import pandas as pd

logger = logging.getLogger(__name__)


def summarize_chart(points: list[dict]) -> dict | None:
    """Open/close/high/low, percent change and volatility for a price series.

    Returns None when there are fewer than two usable prices.
    """
    if not points:
        return None

    df = pd.DataFrame(points)
    if "price" not in df or "timestamp" not in df:
        return None

    df = df.dropna(subset=["price"]).sort_values("timestamp")
    if len(df) < 2:
        return None

    prices = df["price"].astype(float)
    times = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
    first = float(prices.iloc[0])
    last = float(prices.iloc[-1])

    returns = prices.pct_change().dropna()
    volatility = float(returns.std()) * 100 if len(returns) > 1 else 0.0

    return {
        "open": first,
        "close": last,
        "high": float(prices.max()),
        "low": float(prices.min()),
        "change_percent": round((last - first) / first * 100, 2) if first else 0.0,
        "volatility_percent": round(volatility, 2),
        "points": len(prices),
        "start": times.iloc[0].isoformat(),
        "end": times.iloc[-1].isoformat(),
    }
