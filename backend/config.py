"""Centralized configuration: all env vars in one place."""

import os

# Default TTLs per cached resource (seconds). Shorter for live prices,
# longer for data that barely moves.
DEFAULT_TTLS: dict[str, int] = {
    "crypto_list": 60,
    "crypto_detail": 120,
    "crypto_chart": 300,
    "crypto_search": 300,
    "crypto_trending": 300,
    "finance": 120,
    "fear_greed": 3600,
    "polymarket": 300,
}


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        self.cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
        self.git_sha: str = os.getenv("GIT_SHA", "unknown")
        self.environment: str = os.getenv("ENVIRONMENT", "local")

        # Upstream APIs
        self.coingecko_api_url: str = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
        self.coingecko_api_key: str | None = os.getenv("COINGECKO_API_KEY")
        self.yahoo_finance_url: str = os.getenv(
            "YAHOO_FINANCE_URL", "https://query1.finance.yahoo.com/v8/finance/chart"
        )
        self.fear_greed_url: str = os.getenv("FEAR_GREED_URL", "https://api.alternative.me/fng/")
        self.polymarket_api_url: str = os.getenv("POLYMARKET_API_URL", "https://gamma-api.polymarket.com")
        self.http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

        # Cache
        self.cache_capacity: int = int(os.getenv("CACHE_CAPACITY", "1000"))
        self.cache_ttls: dict[str, int] = {
            resource: int(os.getenv(f"CACHE_TTL_{resource.upper()}", str(default)))
            for resource, default in DEFAULT_TTLS.items()
        }

        # Per-client limit on requests that reach an upstream API
        self.rate_limit_requests: int = int(os.getenv("RATE_LIMIT_REQUESTS", "20"))
        self.rate_limit_window_seconds: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return list of missing optional env vars worth warning about."""
        optional = ["COINGECKO_API_KEY"]
        return [var for var in optional if not getattr(self, _attr_for(var))]


settings = Settings()


def _attr_for(env_var: str) -> str:
    """Map env var name to Settings attribute name."""
    mapping = {
        "COINGECKO_API_KEY": "coingecko_api_key",
    }
    return mapping.get(env_var, env_var.lower())
