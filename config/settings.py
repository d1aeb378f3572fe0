"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Cache engine
    cache_default_ttl_seconds: float = 300.0
    cache_cleanup_interval_seconds: float = 60.0
    cache_max_entries: Optional[int] = None  # None = unbounded

    # Default HTTP fetcher
    http_timeout_seconds: float = 30.0
    http_content_type: str = "text/html"
    http_retry_attempts: int = 1  # 1 = no retries

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
