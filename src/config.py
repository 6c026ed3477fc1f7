"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (worker wake-up, heartbeat, webhook redelivery dedup)
    redis_url: str = "redis://localhost:6379/0"

    # Strava (activities + push subscriptions)
    strava_client_id: str = ""
    strava_client_secret: str = ""

    # Spotify (recently played history)
    spotify_client_id: str = ""
    spotify_client_secret: str = ""

    # Encryption for stored OAuth tokens (Fernet key)
    encryption_key: str = ""

    # Cron endpoint protection - empty disables the check
    cron_secret: str = ""

    # Job processing
    job_processor_enabled: bool = False  # in-process background loop
    job_batch_size: int = 10
    cron_batch_size: int = 20
    job_retention_days: int = 30
    webhook_job_priority: int = 10

    # Token lifecycle
    token_refresh_buffer_seconds: int = 300

    # Fetch history starting this long before the activity start
    event_lead_time_minutes: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
