from __future__ import annotations

from pathlib import Path

import pytest

import enrichment
from config import get_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point every test at a throwaway data directory with no API keys or delays."""
    monkeypatch.setenv("SHELVY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SHELVY_BACKFILL_DELAY", "0")
    monkeypatch.setenv("SHELVY_ADMIN_BACKFILL_DELAY", "0")
    monkeypatch.setenv("SHELVY_ISBNDB_DELAY", "0")
    monkeypatch.setenv("SHELVY_JWT_SECRET", "test-secret")
    for name in (
        "SHELVY_GOOGLE_BOOKS_API_KEY",
        "SHELVY_ISBNDB_API_KEY",
        "SHELVY_RESEND_API_KEY",
        "SHELVY_DATABASE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    enrichment.clear_cache()
    yield get_settings()
    get_settings.cache_clear()
    enrichment.clear_cache()
