"""
Application configuration and settings
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Laboratory core settings, read from LIMS_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="LIMS_")

    # Identity
    invoice_number_prefix: str = "INV"
    invoice_number_width: int = 4

    # Actor recorded when a caller does not supply one
    system_user: str = "System"

    # Dashboard
    recent_activity_limit: int = 10
    recent_window_days: int = 7

    # Persistence
    data_dir: Path = Path("./lims-data")

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
