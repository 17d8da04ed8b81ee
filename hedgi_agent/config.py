from __future__ import annotations

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-5-mini", alias="OPENAI_MODEL")
    openai_timeout_seconds: int = Field(default=20, alias="OPENAI_TIMEOUT_SECONDS")

    # "mock" serves the in-memory fixtures, "live" calls the venue APIs.
    venue_mode: str = Field(default="mock", alias="VENUE_MODE")
    kalshi_enabled: bool = Field(default=True, alias="KALSHI_ENABLED")
    polymarket_enabled: bool = Field(default=True, alias="POLYMARKET_ENABLED")

    kalshi_base_url: str = Field(default="https://api.elections.kalshi.com", alias="KALSHI_BASE_URL")
    kalshi_timeout_seconds: int = Field(default=15, alias="KALSHI_TIMEOUT_SECONDS")
    kalshi_requests_per_second: float = Field(default=5.0, alias="KALSHI_RPS")
    kalshi_max_retries: int = Field(default=3, alias="KALSHI_MAX_RETRIES")
    kalshi_backoff_seconds: float = Field(default=1.0, alias="KALSHI_BACKOFF_SECONDS")
    kalshi_backoff_cap_seconds: float = Field(default=15.0, alias="KALSHI_BACKOFF_CAP_SECONDS")
    kalshi_series_ttl_seconds: float = Field(default=30 * 60, alias="KALSHI_SERIES_TTL_SECONDS")
    kalshi_markets_ttl_seconds: float = Field(default=60, alias="KALSHI_MARKETS_TTL_SECONDS")
    kalshi_open_check_ttl_seconds: float = Field(default=30, alias="KALSHI_OPEN_CHECK_TTL_SECONDS")
    kalshi_series_delay_seconds: float = Field(default=0.5, alias="KALSHI_SERIES_DELAY_SECONDS")
    kalshi_max_series_per_category: int = Field(default=5, alias="KALSHI_MAX_SERIES_PER_CATEGORY")
    kalshi_max_series: int = Field(default=10, alias="KALSHI_MAX_SERIES")
    kalshi_events_page_limit: int = Field(default=200, alias="KALSHI_EVENTS_LIMIT")

    min_market_liquidity: float = Field(default=20000.0, alias="MIN_MARKET_LIQUIDITY")
    top_categories: int = Field(default=3, alias="TOP_CATEGORIES")

    category_base_confidence: float = Field(default=0.15, alias="CATEGORY_BASE_CONFIDENCE")
    category_coverage_weight: float = Field(default=0.75, alias="CATEGORY_COVERAGE_WEIGHT")
    category_region_boost: float = Field(default=0.05, alias="CATEGORY_REGION_BOOST")

    relevance_weight: float = Field(default=0.60, alias="RELEVANCE_WEIGHT")
    liquidity_weight: float = Field(default=0.25, alias="LIQUIDITY_WEIGHT")
    time_weight: float = Field(default=0.15, alias="TIME_WEIGHT")
    top_category_boost: float = Field(default=0.15, alias="TOP_CATEGORY_BOOST")
    strong_proxy_threshold: float = Field(default=0.70, alias="STRONG_PROXY_THRESHOLD")
    partial_proxy_threshold: float = Field(default=0.45, alias="PARTIAL_PROXY_THRESHOLD")

    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db: str = Field(default="hedgi", alias="MONGODB_DB")
    keyword_search_limit: int = Field(default=10, alias="KEYWORD_SEARCH_LIMIT")
    max_keywords: int = Field(default=10, alias="MAX_KEYWORDS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
