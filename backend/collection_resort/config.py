"""
Configuration settings for the Collection Resort Engine.
Loads from environment variables with validation.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Collection Resort Engine"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (settings repository)
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379"

    # Shopify Admin API
    SHOPIFY_API_VERSION: str = "2025-01"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Metrics Aggregator budgets (whichever is hit first ends pagination)
    AGGREGATOR_MAX_ORDERS: int = 500
    AGGREGATOR_MAX_TIME_MS: int = 30000
    AGGREGATOR_PAGE_SIZE: int = 50

    # Catalog membership budgets. A resort lists at most
    # min(CATALOG_MAX_PRODUCTS, REORDER_MAX_MOVES) collection members.
    CATALOG_MAX_PAGES: int = 20
    CATALOG_MAX_PRODUCTS: int = 250
    CATALOG_PAGE_SIZE: int = 250

    # Report views page through a smaller slice of the catalog
    REPORT_MAX_PAGES: int = 5
    REPORT_MAX_PRODUCTS: int = 500

    # collectionReorderProducts accepts at most 250 moves per call
    REORDER_MAX_MOVES: int = 250

    # Reorder job polling
    REORDER_POLL_INTERVAL_SECONDS: float = 2.0
    REORDER_POLL_MAX_ATTEMPTS: int = 30

    # Result cache
    RESULT_CACHE_TTL_SECONDS: int = 300
    RESULT_CACHE_BUCKET_SECONDS: int = 300

    # Ranking preview
    PREVIEW_TOP_N: int = 20

    def validate_production_settings(self):
        """Validate settings that would make the engine misbehave at runtime."""
        if self.AGGREGATOR_MAX_ORDERS <= 0 or self.AGGREGATOR_MAX_TIME_MS <= 0:
            raise ValueError("Aggregator budgets must be positive.")
        if self.REORDER_POLL_MAX_ATTEMPTS <= 0:
            raise ValueError("REORDER_POLL_MAX_ATTEMPTS must be at least 1.")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    if not settings.DEBUG:
        settings.validate_production_settings()
    return settings
