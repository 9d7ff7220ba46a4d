"""
Configuration settings for Kaneboard.
All values are loaded from environment variables (or a local .env file).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Kaneboard"
    debug: bool = False
    environment: str = "production"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = ""
    database_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600

    # Redis
    redis_url: str = "redis://localhost:6379"
    cache_prefix: str = "kaneboard:"

    # Time
    timezone: str = "UTC"

    # Health & forecast
    health_cache_ttl_seconds: int = 120
    forecast_window_days: int = 14
    due_soon_days: int = 7

    # Dashboard
    risky_projects_limit: int = 6


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings
