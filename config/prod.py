from __future__ import annotations

from pathlib import Path
from pydantic_settings import SettingsConfigDict

from config.base import AppSettings

ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = ROOT / "env" / ".env.production"


class ProdSettings(AppSettings):
    DATABASE_URL: str | None = None
    APP_ENV: str = "production"
    DEBUG: bool = False

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
    )

    @property
    def requires_explicit_secrets(self) -> bool:
        return True
