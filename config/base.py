from __future__ import annotations

import json

from pydantic_settings import BaseSettings

# Admin portal and mobile web dev servers
DEFAULT_CORS_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
)


class AppSettings(BaseSettings):
    """Settings shared by every environment."""

    APP_ENV: str = "local"
    DEBUG: bool = False

    # Signing keys. SECRET_KEY signs access and pending-2FA tokens,
    # REFRESH_SECRET_KEY signs refresh tokens. BACKUP_CODE_KEY keys the
    # backup-code hashes and is independent of JWT key rotation.
    SECRET_KEY: str | None = None
    REFRESH_SECRET_KEY: str | None = None
    BACKUP_CODE_KEY: str | None = None
    JWT_ALGORITHM: str = "HS256"

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    PENDING_2FA_EXPIRE_MINUTES: int = 10
    MAX_REFRESH_TOKENS: int = 5

    BCRYPT_ROUNDS: int = 12
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 30

    TOTP_ISSUER: str = "GUARDIAN 3PL Platform"
    TOTP_VALID_WINDOW: int = 2
    BACKUP_CODE_COUNT: int = 10

    # Local convenience; deployed databases are migrated with Alembic
    CREATE_TABLES_ON_STARTUP: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    # JSON array or comma-separated list; empty means the local dev origins
    CORS_ORIGINS: str = ""

    # Development fallbacks, overridden per environment
    DEV_SECRET_KEY: str = "dev-secret-key-change-in-production-abc123xyz"
    DEV_REFRESH_SECRET_KEY: str = "dev-refresh-secret-change-in-production-xyz789"
    DEV_BACKUP_CODE_KEY: str = "dev-backup-code-key-change-in-production-q4w8"

    @property
    def requires_explicit_secrets(self) -> bool:
        return False

    def access_secret(self) -> str:
        if self.SECRET_KEY:
            return self.SECRET_KEY
        if self.requires_explicit_secrets:
            raise RuntimeError("SECRET_KEY must be set in this environment")
        return self.DEV_SECRET_KEY

    def refresh_secret(self) -> str:
        if self.REFRESH_SECRET_KEY:
            return self.REFRESH_SECRET_KEY
        if self.requires_explicit_secrets:
            raise RuntimeError("REFRESH_SECRET_KEY must be set in this environment")
        return self.DEV_REFRESH_SECRET_KEY

    def backup_code_secret(self) -> str:
        if self.BACKUP_CODE_KEY:
            return self.BACKUP_CODE_KEY
        if self.requires_explicit_secrets:
            raise RuntimeError("BACKUP_CODE_KEY must be set in this environment")
        return self.DEV_BACKUP_CODE_KEY

    def check_secrets(self) -> None:
        """
        Raises:
            RuntimeError: A key this environment must set explicitly is missing
        """
        self.access_secret()
        self.refresh_secret()
        self.backup_code_secret()

    def cors_origins(self) -> list[str]:
        raw = self.CORS_ORIGINS.strip()
        if not raw:
            return list(DEFAULT_CORS_ORIGINS)
        if raw.startswith("["):
            try:
                origins = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValueError("CORS_ORIGINS is not a valid JSON array") from exc
            return [str(o) for o in origins]
        return [o.strip() for o in raw.split(",") if o.strip()]
