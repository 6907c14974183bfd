from __future__ import annotations

from pydantic_settings import SettingsConfigDict

from config.base import AppSettings


class TestSettings(AppSettings):
    DATABASE_URL: str | None = "sqlite+aiosqlite:///:memory:"
    APP_ENV: str = "test"
    DEBUG: bool = True
    BCRYPT_ROUNDS: int = 4
    LOG_LEVEL: str = "WARNING"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_file=None)
