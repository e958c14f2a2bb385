from typing import Optional
from pydantic_settings import BaseSettings


class CacheTTL:
    """Cache lifetimes in seconds."""

    SHORT = 60  # dynamic data that changes frequently
    MEDIUM = 900
    LONG = 3600
    VERY_LONG = 86400


class Settings(BaseSettings):
    github_token: Optional[str] = None
    github_installation_id: Optional[int] = None
    github_api_url: str = "https://api.github.com"
    user_agent: str = "gitpulse/1.0"
    batch_size: int = 5  # concurrent repository fetches per batch
    per_page: int = 100  # GitHub REST API max is 100 per page
    max_pages: int = 100  # Prevent runaway pagination
    rate_limit_low_water_mark: int = 100
    request_timeout_seconds: int = 30
    max_retries: int = 5
    cache_max_age: int = CacheTTL.SHORT
    compression_threshold_bytes: int = 1024
    cache_max_entries: int = 1024
    default_window_days: int = 30
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
