"""Application configuration settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (only used when the last-known-good tier is persisted)
    database_url: str = "sqlite:///./flipcheck.db"
    persist_last_known_good: bool = False

    # Source credentials. An empty value disables that adapter.
    pricecharting_api_key: str = ""
    ebay_app_id: str = ""
    ebay_cert_id: str = ""
    serpapi_api_key: str = ""

    # Source endpoints
    pricecharting_base_url: str = "https://www.pricecharting.com/api"
    ebay_finding_url: str = "https://svcs.ebay.com/services/search/FindingService/v1"
    ebay_api_base_url: str = "https://api.ebay.com"
    ebay_auth_url: str = "https://api.ebay.com/identity/v1/oauth2/token"
    ebay_marketplace_id: str = "EBAY_US"
    serpapi_base_url: str = "https://serpapi.com/search.json"

    # Environment
    environment: str = "development"

    # Outbound calls
    http_timeout_seconds: float = 10.0
    min_request_interval_seconds: float = 1.0
    retry_max_attempts: int = 3
    retry_base_delay_ms: float = 500.0
    retry_jitter_ms: float = 500.0

    # Alert when this many transient failures land inside the window
    error_spike_threshold: int = 5
    error_spike_window_seconds: float = 120.0

    # Paid sold-listings search calls allowed per calendar month
    serpapi_monthly_quota: int = 250

    # Comp volume thresholds
    default_result_limit: int = 30
    min_sufficient_comps: int = 3
    high_confidence_min_comps: int = 8

    # Cache sweep interval (seconds)
    cache_sweep_interval_seconds: float = 60.0

    # Primary tier TTL (hours), matched by key containment on the
    # normalized category name. Volatile card markets refresh fastest.
    primary_ttl_hours: dict[str, float] = {
        "cards": 3,
        "trading": 3,
        "sports": 3,
        "pokemon": 3,
        "magic": 3,
        "collectible": 12,
        "toy": 12,
        "funko": 12,
        "lego": 12,
        "electronics": 12,
        "watch": 24,
        "shoe": 24,
        "vintage": 24,
        "antique": 24,
        "jewelry": 24,
    }
    primary_ttl_default_hours: float = 12

    # Last-known-good tier TTL (days)
    last_known_good_ttl_days: dict[str, float] = {
        "cards": 1,
        "trading": 1,
        "pokemon": 1,
        "sports": 1,
        "magic": 1,
        "collectible": 7,
        "electronics": 7,
        "handbag": 7,
        "vintage": 7,
        "gaming": 14,
        "videogame": 14,
        "tool": 14,
        "antique": 14,
        "watch": 21,
        "toy": 21,
        "shoe": 28,
    }
    last_known_good_ttl_default_days: float = 7

    # Active listings sell above the clearing price; multiply by these.
    active_listing_discount: dict[str, float] = {
        "cards": 0.80,
        "trading": 0.80,
        "electronics": 0.85,
        "shoe": 0.88,
        "watch": 0.90,
    }
    active_listing_discount_default: float = 0.85

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
