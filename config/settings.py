"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    # Upstream Solana RPC endpoint
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    upstream_timeout_seconds: float = 30.0
    upstream_max_concurrency: int = 10

    # Cache settings
    # Long default: the cache favours data-lake style reuse over freshness
    cache_ttl_minutes: int = 10080
    disable_ttl: bool = False
    database_url: str = "sqlite:///./rpc_cache.db"
    coalesce_upstream: bool = True

    # Rate limiting (fixed window, per client)
    max_requests_per_minute: int = 35
    rate_limit_window_seconds: int = 60

    # Batch and subscription processing
    batch_max_workers: int = 8
    subscription_poll_seconds: float = 10.0

    # Authentication
    api_key: Optional[str] = None
    shared_secret: Optional[str] = None

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
