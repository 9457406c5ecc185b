"""Application configuration via Pydantic Settings."""

from typing import List
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Remote store (GraphQL Admin API)
    STORE_NAME: str = ""  # e.g. "example.myshopify.com"
    STORE_ACCESS_TOKEN: str = ""
    STORE_API_VERSION: str = "2024-04"
    STORE_ADMIN_API_URL: str = ""  # Derived from STORE_NAME when empty
    STORE_WEBHOOK_SECRET: str = ""

    @model_validator(mode="after")
    def derive_admin_api_url(self) -> "Settings":
        """Build the GraphQL endpoint from the store name when not given explicitly.

        Older deployments configured the REST products.json URL; those are
        rewritten to the GraphQL endpoint of the same API version.
        """
        url = self.STORE_ADMIN_API_URL
        if not url and self.STORE_NAME:
            store = self.STORE_NAME.replace("https://", "").rstrip("/")
            self.STORE_ADMIN_API_URL = (
                f"https://{store}/admin/api/{self.STORE_API_VERSION}/graphql.json"
            )
        elif url.endswith("/products.json"):
            self.STORE_ADMIN_API_URL = url.replace("/products.json", "/graphql.json")
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Shared key for mutating routes. An empty string disables them.
    ADMIN_API_KEY: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"  # Comma-separated

    # Token bucket
    RATE_LIMIT_CAPACITY: float = 40.0
    RATE_LIMIT_REFILL_RATE: float = 2.0  # tokens per second
    RATE_LIMIT_PACING_SECONDS: float = 0.05
    RATE_LIMIT_SAFETY_MARGIN_SECONDS: float = 0.1

    # Request executor
    REQUEST_MAX_RETRIES: int = 3
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    THROTTLE_RETRY_LIMIT: int = 25

    # Bulk orchestrator
    CHANNEL_BATCH_SIZE: int = 50
    ATTRIBUTE_BATCH_SIZE: int = 25
    MUTATIONS_PER_REQUEST: int = 10
    ATTRIBUTE_GROUP_SIZE: int = 5
    INITIAL_CONCURRENCY: int = 2
    MAX_CONCURRENCY: int = 3
    BULK_RUN_TIMEOUT_SECONDS: float = 60 * 60  # 1 hour for catalog-wide runs

    # New product scheduler
    DEFAULT_SALES_CHANNELS: str = "Google & YouTube,TikTok"  # Comma-separated
    NEW_PRODUCT_INTERVAL_MINUTES: int = 10
    NEW_PRODUCT_LOOKBACK_MINUTES: int = 15

    def get_default_sales_channels(self) -> List[str]:
        """Parse DEFAULT_SALES_CHANNELS into a list of channel names.

        Returns:
            List of channel names, empty if DEFAULT_SALES_CHANNELS is not set
        """
        if not self.DEFAULT_SALES_CHANNELS:
            return []
        return [c.strip() for c in self.DEFAULT_SALES_CHANNELS.split(",") if c.strip()]

    def get_cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def store_configured(self) -> bool:
        return bool(self.STORE_ADMIN_API_URL and self.STORE_ACCESS_TOKEN)


settings = Settings()
