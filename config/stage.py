from __future__ import annotations

from pathlib import Path
from pydantic_settings import SettingsConfigDict

from config.base import AppSettings
from config.database import get_database_url

ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = ROOT / "env" / ".env.staging"


class StageSettings(AppSettings):
    """
    Staging reads the credential store location from DB_* variables
    injected by the deployment, and requires real signing secrets.
    """
    APP_ENV: str = "stage"
    DEBUG: bool = False

    DB_DRIVER: str = "postgresql+asyncpg"
    DB_HOST: str | None = None
    DB_PORT: int = 5432
    DB_USER: str | None = None
    DB_PASSWORD: str | None = None
    DB_NAME: str = "guardian_auth"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
    )

    @property
    def DATABASE_URL(self) -> str:
        return get_database_url(
            self.DB_DRIVER,
            self.DB_HOST,
            self.DB_PORT,
            self.DB_USER,
            self.DB_PASSWORD,
            self.DB_NAME,
        )

    @property
    def requires_explicit_secrets(self) -> bool:
        return True
