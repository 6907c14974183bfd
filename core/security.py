# core/security.py
"""
Password hashing and JWT token management.

Components receive their configuration through the constructor. Nothing in
this module reads settings or the wall clock directly, so each component can
be built in isolation (tests build them with a low bcrypt cost and a fake clock).
"""
import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import bcrypt
from jose import JWTError, jwt

from config import AppSettings
from core.errors import (
    TokenExpired,
    TokenMalformed,
    TokenRevokedOrNotFound,
    ValidationError,
)

Clock = Callable[[], datetime]

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
PENDING_TOKEN_TYPE = "pending_2fa"
PENDING_PURPOSE = "2fa_required"

BCRYPT_MAX_BYTES = 72


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthConfig:
    """Immutable auth configuration handed to every component."""
    access_secret: str
    refresh_secret: str
    backup_code_key: str
    algorithm: str = "HS256"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    pending_token_ttl: timedelta = timedelta(minutes=10)
    max_refresh_tokens: int = 5
    bcrypt_rounds: int = 12
    max_failed_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)
    totp_issuer: str = "GUARDIAN 3PL Platform"
    totp_valid_window: int = 2
    backup_code_count: int = 10
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "AuthConfig":
        return cls(
            access_secret=settings.access_secret(),
            refresh_secret=settings.refresh_secret(),
            backup_code_key=settings.backup_code_secret(),
            algorithm=settings.JWT_ALGORITHM,
            access_token_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_token_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            pending_token_ttl=timedelta(minutes=settings.PENDING_2FA_EXPIRE_MINUTES),
            max_refresh_tokens=settings.MAX_REFRESH_TOKENS,
            bcrypt_rounds=settings.BCRYPT_ROUNDS,
            max_failed_attempts=settings.MAX_FAILED_LOGIN_ATTEMPTS,
            lockout_duration=timedelta(minutes=settings.LOCKOUT_MINUTES),
            totp_issuer=settings.TOTP_ISSUER,
            totp_valid_window=settings.TOTP_VALID_WINDOW,
            backup_code_count=settings.BACKUP_CODE_COUNT,
            debug=settings.DEBUG,
        )


# ---------- Passwords ----------

class PasswordVerifier:
    """bcrypt hashing with a configurable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash_sync(self, plain_password: str) -> str:
        encoded = plain_password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise ValidationError("Password must be at most 72 bytes long")
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    def verify_sync(self, plain_password: str, hashed_password: str) -> bool:
        encoded = plain_password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(
                encoded,
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            # Unreadable stored hash
            return False

    async def hash(self, plain_password: str) -> str:
        """Hash a password for storage, off the event loop."""
        return await asyncio.to_thread(self.hash_sync, plain_password)

    async def verify(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash, off the event loop."""
        return await asyncio.to_thread(self.verify_sync, plain_password, hashed_password)


# ---------- Tokens ----------

@dataclass(frozen=True)
class AccessClaims:
    """Decoded access-token snapshot taken at issuance time."""
    user_id: int
    email: str
    role: str
    tenant_id: int | None
    client_business_id: int | None
    permissions: dict[str, dict[str, bool]]
    email_verified: bool
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class RefreshClaims:
    user_id: int
    token_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class PendingTwoFactorClaims:
    user_id: int
    issued_at: datetime
    expires_at: datetime


def _timestamp(value: datetime) -> int:
    return int(value.timestamp())


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def new_token_id() -> str:
    return uuid.uuid4().hex


class TokenIssuer:
    """
    Signs and verifies access, refresh and pending-2FA tokens.

    Access and pending-2FA tokens share the access secret; refresh tokens use
    their own secret so one can never be replayed as the other. Expiry is
    checked against the injected clock rather than the library's wall clock.
    """

    def __init__(self, config: AuthConfig, clock: Clock = utc_clock) -> None:
        self.config = config
        self.clock = clock

    def _encode(self, claims: dict[str, Any], secret: str) -> str:
        return jwt.encode(claims, secret, algorithm=self.config.algorithm)

    def _decode(self, token: str, secret: str) -> dict[str, Any]:
        return jwt.decode(
            token,
            secret,
            algorithms=[self.config.algorithm],
            options={"verify_exp": False, "verify_aud": False},
        )

    def _is_expired(self, payload: dict[str, Any], now: datetime) -> bool:
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            return True
        return now.timestamp() >= exp

    # --- access ---

    def create_access_token(self, user, now: datetime | None = None) -> tuple[str, datetime]:
        """
        Create an access token carrying the user's role/tenant/permission snapshot.

        Returns:
            (encoded token, expiry)
        """
        now = now or self.clock()
        expires_at = now + self.config.access_token_ttl
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "tenant_id": user.tenant_id,
            "client_business_id": user.client_business_id,
            "permissions": user.permissions,
            "email_verified": bool(user.email_verified),
            "iat": _timestamp(now),
            "exp": _timestamp(expires_at),
            "jti": new_token_id(),
            "type": ACCESS_TOKEN_TYPE,
        }
        return self._encode(claims, self.config.access_secret), expires_at

    def decode_access_token(self, token: str) -> AccessClaims:
        """
        Raises:
            TokenExpired: Signature valid but past expiry
            TokenMalformed: Anything else wrong with the token
        """
        try:
            payload = self._decode(token, self.config.access_secret)
        except JWTError as exc:
            raise TokenMalformed() from exc

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenMalformed()
        if self._is_expired(payload, self.clock()):
            raise TokenExpired()

        try:
            return AccessClaims(
                user_id=int(payload["sub"]),
                email=payload["email"],
                role=payload["role"],
                tenant_id=payload.get("tenant_id"),
                client_business_id=payload.get("client_business_id"),
                permissions=payload.get("permissions") or {},
                email_verified=bool(payload.get("email_verified")),
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
                token_id=payload.get("jti", ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenMalformed() from exc

    # --- refresh ---

    def create_refresh_token(self, user_id: int, now: datetime | None = None) -> tuple[str, RefreshClaims]:
        now = now or self.clock()
        claims = RefreshClaims(
            user_id=user_id,
            token_id=new_token_id(),
            issued_at=now,
            expires_at=now + self.config.refresh_token_ttl,
        )
        encoded = self._encode(
            {
                "sub": str(user_id),
                "jti": claims.token_id,
                "iat": _timestamp(claims.issued_at),
                "exp": _timestamp(claims.expires_at),
                "type": REFRESH_TOKEN_TYPE,
            },
            self.config.refresh_secret,
        )
        return encoded, claims

    def decode_refresh_token(self, token: str) -> RefreshClaims:
        """
        Every failure (bad signature, expiry, wrong type) raises the same
        TokenRevokedOrNotFound so callers learn nothing about the cause.
        """
        try:
            payload = self._decode(token, self.config.refresh_secret)
            if payload.get("type") != REFRESH_TOKEN_TYPE:
                raise TokenRevokedOrNotFound()
            if self._is_expired(payload, self.clock()):
                raise TokenRevokedOrNotFound()
            return RefreshClaims(
                user_id=int(payload["sub"]),
                token_id=str(payload["jti"]),
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
            )
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            raise TokenRevokedOrNotFound() from exc

    # --- pending 2FA ---

    def create_pending_token(self, user_id: int, now: datetime | None = None) -> tuple[str, datetime]:
        now = now or self.clock()
        expires_at = now + self.config.pending_token_ttl
        encoded = self._encode(
            {
                "sub": str(user_id),
                "purpose": PENDING_PURPOSE,
                "iat": _timestamp(now),
                "exp": _timestamp(expires_at),
                "type": PENDING_TOKEN_TYPE,
            },
            self.config.access_secret,
        )
        return encoded, expires_at

    def decode_pending_token(self, token: str) -> PendingTwoFactorClaims:
        message = "Invalid or expired temporary session"
        try:
            payload = self._decode(token, self.config.access_secret)
            if payload.get("type") != PENDING_TOKEN_TYPE or payload.get("purpose") != PENDING_PURPOSE:
                raise TokenMalformed(message)
            if self._is_expired(payload, self.clock()):
                raise TokenMalformed(message)
            return PendingTwoFactorClaims(
                user_id=int(payload["sub"]),
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
            )
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            raise TokenMalformed(message) from exc


# ---------- Lockout policy ----------

class LoginPolicy:
    """Account lockout thresholds."""

    def __init__(self, max_failed_attempts: int = 5, lockout_duration: timedelta = timedelta(minutes=30)) -> None:
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = lockout_duration

    def should_lock(self, failed_attempts: int) -> bool:
        return failed_attempts >= self.max_failed_attempts

    def lock_expiry(self, now: datetime) -> datetime:
        return now + self.lockout_duration

    @staticmethod
    def minutes_remaining(locked_until: datetime, now: datetime) -> int:
        """Whole minutes left on a lock, rounded up, never below 1."""
        seconds = (locked_until - now).total_seconds()
        return max(1, -(-int(seconds) // 60))
