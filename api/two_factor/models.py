# api/two_factor/models.py
"""
Pydantic models for two-factor authentication endpoints.
"""
from datetime import datetime

from pydantic import BaseModel, Field


class TwoFactorStatus(BaseModel):
    enabled: bool
    last_used_at: datetime | None = None
    backup_codes_remaining: int = 0
    can_setup: bool


class TwoFactorSetupResponse(BaseModel):
    """Shown once while enrolling an authenticator app."""
    secret: str
    qr_image: str
    manual_key: str
    provisioning_uri: str


class TwoFactorCodeRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=32)


class BackupCodesResponse(BaseModel):
    """Plaintext backup codes, returned exactly once."""
    backup_codes: list[str]


class TwoFactorVerifyRequest(BaseModel):
    user_id: int
    token: str = Field(..., min_length=1, max_length=32)


class TwoFactorVerifyResponse(BaseModel):
    verified: bool
    used_backup_code: bool = False
    remaining_backup_codes: int | None = None


class TwoFactorDisableRequest(BaseModel):
    password: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1, max_length=32)


class PasswordConfirmRequest(BaseModel):
    password: str = Field(..., min_length=1)
