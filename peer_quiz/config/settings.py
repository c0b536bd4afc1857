"""Runtime settings read from ``PEER_QUIZ_*`` environment variables or a ``.env`` file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from peer_quiz.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PEER_QUIZ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # Storage
    data_dir: Path = Path("data")
    uploads_dir: Path = Path("uploads")
    max_upload_mb: int = 50

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
