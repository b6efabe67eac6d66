from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(RuntimeError):
    """Raised when an operation needs a setting that is not configured."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHELVY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = Path.home() / ".shelvy"
    database_path: Optional[Path] = None

    google_books_api_key: Optional[str] = None
    isbndb_api_key: Optional[str] = None
    resend_api_key: Optional[str] = None
    mail_sender: str = "Shelvy <noreply@shelvybooks.com>"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expires_minutes: int = 60 * 24 * 7

    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    app_url: str = "https://shelvy-books.lovable.app"
    amazon_associate_tag: str = "shelvybooks-20"

    http_timeout: float = 8.0
    backfill_delay: float = 0.2
    admin_backfill_delay: float = 0.15
    isbndb_delay: float = 0.35
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.database_path or self.data_dir / "shelvy.db"

    @property
    def covers_dir(self) -> Path:
        return self.data_dir / "covers"

    @property
    def avatars_dir(self) -> Path:
        return self.data_dir / "avatars"

    def ensure_dirs(self) -> None:
        for directory in (self.data_dir, self.covers_dir, self.avatars_dir):
            directory.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        force=True,
    )
