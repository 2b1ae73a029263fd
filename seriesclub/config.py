"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ResolutionPolicy = Literal["drop", "placeholder"]


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="SeriesClub", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./seriesclub.db", alias="DATABASE_URL"
    )

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    feed_page_size: int = Field(default=5, alias="FEED_PAGE_SIZE", ge=1, le=100)
    feed_fetch_limit: int = Field(
        default=50, alias="FEED_FETCH_LIMIT", ge=1, le=1_000
    )
    feed_session_ttl_seconds: int = Field(
        default=900, alias="FEED_SESSION_TTL", ge=30
    )
    feed_max_sessions: int = Field(
        default=256, alias="FEED_MAX_SESSIONS", ge=1, le=10_000
    )
    ranking_limit: int = Field(default=20, alias="RANKING_LIMIT", ge=1, le=500)
    lookup_timeout_seconds: float = Field(
        default=5.0, alias="LOOKUP_TIMEOUT", gt=0, le=120
    )

    feed_unresolved_policy: ResolutionPolicy = Field(
        default="drop", alias="FEED_UNRESOLVED_POLICY"
    )
    ranking_unresolved_policy: ResolutionPolicy = Field(
        default="placeholder", alias="RANKING_UNRESOLVED_POLICY"
    )
    interest_unresolved_policy: ResolutionPolicy = Field(
        default="drop", alias="INTEREST_UNRESOLVED_POLICY"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "feed_unresolved_policy",
        "ranking_unresolved_policy",
        "interest_unresolved_policy",
        mode="before",
    )
    @classmethod
    def _normalise_policy(cls, value: object) -> object:
        """Accept policy names case-insensitively and with surrounding blanks."""

        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank_key(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
