# api/auth/models.py
"""
Pydantic models for authentication endpoints.
"""
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, ConfigDict

from core.permissions import Role


class LoginRequest(BaseModel):
    """Login credentials."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class TwoFactorLoginRequest(BaseModel):
    """Second login step: TOTP or backup code plus the pending token."""
    user_id: int
    token: str = Field(..., min_length=1, max_length=32)
    pending_token: str = Field(..., min_length=1)


class TokenRefresh(BaseModel):
    """Request to refresh access token."""
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordChange(BaseModel):
    """Request to change password."""
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)


class RoleUpdate(BaseModel):
    """Admin role change. Overrides replace any previous overrides."""
    role: Role
    permissions: dict[str, dict[str, bool]] | None = None


class Token(BaseModel):
    """JWT token pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    refresh_expires_at: datetime


class UserResponse(BaseModel):
    """User summary returned to clients. Never contains secrets."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    display_name: str
    role: str
    tenant_id: int | None = None
    client_business_id: int | None = None
    permissions: dict[str, dict[str, bool]]
    email_verified: bool
    two_factor_enabled: bool
    is_active: bool
    last_login_at: datetime | None = None


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int


class LoginResponse(BaseModel):
    """
    Either a completed login (tokens + user) or a 2FA challenge
    (pending_token + user_id).
    """
    requires_two_factor: bool
    tokens: Token | None = None
    user: UserResponse | None = None
    user_id: int | None = None
    pending_token: str | None = None
    pending_expires_at: datetime | None = None


class TwoFactorLoginResponse(BaseModel):
    tokens: Token
    user: UserResponse
    used_backup_code: bool = False
    remaining_backup_codes: int | None = None


class TokenResponse(BaseModel):
    tokens: Token


class PrincipalResponse(BaseModel):
    id: int
    email: str
    role: str
    tenant_id: int | None = None
    client_business_id: int | None = None
    permissions: dict[str, dict[str, bool]]
    email_verified: bool


class SessionVerifyResponse(BaseModel):
    valid: bool = True
    principal: PrincipalResponse


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    issued_at: datetime
    expires_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int


class RevokedResponse(BaseModel):
    revoked: int
