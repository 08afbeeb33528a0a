"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

ESPN_SCOREBOARD_URL = "https://site.api.espn.com/apis/site/v2/sports/football/nfl/scoreboard"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Fantasy data provider
    upstream_api_base_url: str = "https://fantasysports.yahooapis.com/fantasy/v2"
    upstream_access_token: str | None = None
    admin_league_key: str | None = None

    # Public NFL schedule feed
    schedule_feed_url: str = ESPN_SCOREBOARD_URL

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout: float = 60.0

    # Shared secret for scheduler-triggered endpoints
    cron_job_secret: str | None = None

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Sync paging and batching
    sync_page_size: int = 25
    sync_max_pages: int = 200
    sync_stats_request_size: int = 25
    sync_batch_size: int = 100
    injury_batch_size: int = 200
    store_page_size: int = 1000

    # Retry policy for upstream calls
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds, doubled per attempt
    retry_max_delay: float = 30.0
    requests_per_second: float = 2.0

    # Start/bench
    roster_slots_cache_ttl: int = 600

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def db_connection_string(self) -> str | None:
        """Connection string for asyncpg, or None when not configured."""
        return self.database_url or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
