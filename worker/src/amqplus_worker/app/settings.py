from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the AMQ+ quiz worker process."""

    model_config = SettingsConfigDict(
        env_prefix="AMQPLUS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    master_list_path: Path | None = Field(
        default=None,
        description="JSON file holding the global master song list.",
    )
    saved_list_base_url: str | None = Field(
        default=None,
        description="Base URL of the saved-list store; lists live at {base}/{listId}.",
    )
    user_list_base_url: str | None = Field(
        default=None,
        description="Base URL of the list-import service; lists live at {base}/{platform}/{username}.",
    )
    source_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Upper bound on loading a single song-list source.",
    )
    max_song_count: int = Field(
        default=200,
        ge=1,
        le=10_000,
        description="Upper clamp applied to resolved song counts.",
    )
    sampling_attempts: int = Field(
        default=100,
        ge=1,
        le=1_000,
        description="Seeded distribution attempts the sampler makes before keeping the best one.",
    )
    log_level: str = Field(default="INFO", max_length=16)

    @model_validator(mode="after")
    def _normalise_urls(self) -> "Settings":
        if self.saved_list_base_url:
            self.saved_list_base_url = self.saved_list_base_url.rstrip("/")
        if self.user_list_base_url:
            self.user_list_base_url = self.user_list_base_url.rstrip("/")
        self.log_level = self.log_level.upper()
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
