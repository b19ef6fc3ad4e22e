"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="WatchSync", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_token: str | None = Field(default=None, alias="TMDB_TOKEN")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_request_delay_seconds: float = Field(
        default=0.5, alias="TMDB_REQUEST_DELAY", ge=0, le=60
    )

    show_sync_interval_seconds: int = Field(
        default=86_400, alias="SHOW_SYNC_INTERVAL", ge=3_600
    )
    movie_sync_interval_seconds: int = Field(
        default=604_800, alias="MOVIE_SYNC_INTERVAL", ge=3_600
    )
    # The provider only keeps 14 days of change history per item.
    show_change_lookback_days: int = Field(
        default=2, alias="SHOW_CHANGE_LOOKBACK_DAYS", ge=1, le=14
    )
    movie_change_lookback_days: int = Field(
        default=10, alias="MOVIE_CHANGE_LOOKBACK_DAYS", ge=1, le=14
    )
    movie_active_window_days: int = Field(
        default=180, alias="MOVIE_ACTIVE_WINDOW_DAYS", ge=1
    )
    sync_on_startup: bool = Field(default=False, alias="SYNC_ON_STARTUP")

    response_cache_seconds: int = Field(default=300, alias="CACHE_TTL", ge=0)

    show_fallback_service_id: int = Field(
        default=9_999, alias="SHOW_FALLBACK_SERVICE_ID"
    )
    movie_fallback_service_id: int = Field(
        default=9_998, alias="MOVIE_FALLBACK_SERVICE_ID"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./watchsync.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_token", mode="before")
    @classmethod
    def _strip_blank_token(cls, value: object) -> object:
        """Treat whitespace-only tokens as missing."""

        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @model_validator(mode="after")
    def _check_lookback_windows(self) -> "Settings":
        """Movies are checked less often and need at least the show window."""

        if self.movie_change_lookback_days < self.show_change_lookback_days:
            raise ValueError(
                "MOVIE_CHANGE_LOOKBACK_DAYS must not be shorter than "
                "SHOW_CHANGE_LOOKBACK_DAYS"
            )
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
