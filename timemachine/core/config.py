from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = "sqlite+aiosqlite:///./timemachine.db"
    log_level: str = "INFO"

    youtube_api_base: str = "https://www.googleapis.com/youtube/v3"
    youtube_api_keys: Annotated[list[str], NoDecode] = []
    request_timeout_seconds: float = 10.0
    check_timeout_seconds: float = 8.0
    check_delay_ms: int = 100
    max_request_attempts: int = 10
    http_backoff_ms: int = 500
    network_backoff_ms: int = 1000
    failure_reset_hours: int = 24

    video_cache_ttl_minutes: int = 120
    channel_cache_ttl_minutes: int = 60
    search_cache_ttl_minutes: int = 30

    videos_per_channel: int = 30
    channel_page_videos_per_month: int = 50
    viral_videos_count: int = 20
    viral_query_limit: int = 8
    viral_query_delay_ms: int = 300
    viral_video_percentage: float = 0.15
    max_homepage_videos: int = 60
    batch_size: int = 3
    api_cooldown_ms: int = 200

    recommendation_count: int = 20
    same_channel_ratio: float = 0.6
    fresh_videos_count: int = 15
    keyword_match_ratio: float = 0.5
    series_match_videos_count: int = 3

    default_reference_date: str = "2014-06-14"
    auto_advance_days: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_prefix="APP_", env_file_encoding="utf-8")

    @field_validator("youtube_api_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [key.strip() for key in value.split(",") if key.strip()]
        return value

@lru_cache

def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
