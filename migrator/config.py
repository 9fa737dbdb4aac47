# migrator/config.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env staat naast pyproject.toml (project root)
PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = PROJECT_ROOT / ".env"
load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    # ---- Stores ----
    SOURCE_DATABASE_URL: Optional[str] = None
    DESTINATION_DATABASE_URL: Optional[str] = None

    # ---- Text shortening (OpenAI-compatible endpoint) ----
    OPENAI_API_KEY: Optional[str] = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    OPENAI_BASE_URL: Optional[str] = None
    TITLE_SHORTEN_MODEL: str = "gpt-4.1-mini"

    # ---- Paging / batching ----
    MIGRATION_READ_COUNT: int = 1000
    MIGRATION_BATCH_COUNT: int = 512

    # ---- Title & slug policy ----
    TITLE_MAX_LENGTH: int = 60
    SLUG_MAX_LENGTH: int = 80

    # ---- Enrichment ----
    RECORD_ENRICHMENT_TIMEOUT_S: float = 60.0
    VIDEO_PROBE_TIMEOUT_S: float = 20.0
    ENRICHMENT_CACHE_PATH: str = "metadata.json"

    # ---- Reference data ----
    LEGACY_BRANDS_PATH: str = "brands.json"
    LEGACY_CATEGORIES_PATH: str = "categories.json"
    EDITORIAL_RULES_PATH: str = str(PROJECT_ROOT / "configs" / "editorial_rules.yml")
    NAME_MATCH_MIN_SCORE: float = 0.6
    AUTO_CREATE_MISSING_IDENTITIES: bool = False

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()


def require_database_urls(cfg: Optional[Settings] = None) -> tuple[str, str]:
    """
    Beide stores zijn verplicht voor een migratierun; faal vroeg met een duidelijke melding.
    """
    cfg = cfg or settings
    missing = [
        name
        for name, value in (
            ("SOURCE_DATABASE_URL", cfg.SOURCE_DATABASE_URL),
            ("DESTINATION_DATABASE_URL", cfg.DESTINATION_DATABASE_URL),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(
            f"{', '.join(missing)} ontbreekt. Controleer .env "
            f"(geprobeerd te laden vanaf: {ENV_FILE})."
        )
    return str(cfg.SOURCE_DATABASE_URL), str(cfg.DESTINATION_DATABASE_URL)


def require_openai() -> None:
    """
    Een lokale OpenAI-compatibele server heeft geen key nodig; de hosted API wel.
    """
    if not settings.OPENAI_API_KEY and not settings.OPENAI_BASE_URL:
        raise RuntimeError(
            "OPENAI_API_KEY ontbreekt (of zet OPENAI_BASE_URL voor een lokaal model). "
            f"Controleer .env (geprobeerd te laden vanaf: {ENV_FILE})."
        )
