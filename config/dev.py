from __future__ import annotations

from pathlib import Path
from pydantic_settings import SettingsConfigDict

from config.base import AppSettings

ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = ROOT / "env" / ".env.dev"


class DevSettings(AppSettings):
    DATABASE_URL: str | None = None
    APP_ENV: str = "dev"
    DEBUG: bool = True
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
    )
