"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (strategy definitions, read-only)
    database_url: str = "postgresql://localhost/strategy_monitor"

    # Redis (indicator cache + event streams)
    redis_url: str = "redis://localhost:6379/0"

    # Market-data provider
    alpha_vantage_api_key: str = ""
    alpha_vantage_base_url: str = "https://www.alphavantage.co"
    provider_timeout: float = 30.0
    provider_calls_per_minute: int = 75

    # Discovery
    discovery_interval: float = 60.0  # seconds between active-indicator scans

    # Event streams
    indicator_stream: str = "indicator-updates"
    action_stream: str = "action-required"
    evaluation_group: str = "evaluation_group"
    action_group: str = "action_group"
    dead_letter_suffix: str = ":dead-letter"

    # Consumers
    consumer_batch_size: int = 10
    consumer_block_ms: int = 5000
    consumer_retry_delay: float = 5.0
    claim_min_idle_ms: int = 60000  # pending entries idle this long are reclaimed

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
