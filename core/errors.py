# core/errors.py
"""
Authentication and authorization error taxonomy.

Each error carries an HTTP status code and a stable error code. Messages are
fixed and deliberately non-leaking: an unknown email, an inactive account and
a wrong password all read the same.
"""
from typing import Any


INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class AuthError(Exception):
    """Base class for errors rendered as the error envelope."""

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed or semantically invalid request (400)."""
    status_code = 400
    error_code = "validation_error"
    default_message = "Invalid request"


class InvalidPassword(ValidationError):
    """Password confirmation for a sensitive change did not match (400)."""
    error_code = "invalid_password"
    default_message = "Invalid password"


class InvalidCredentials(AuthError):
    """Unknown email or wrong password (401)."""
    status_code = 401
    error_code = "invalid_credentials"
    default_message = INVALID_CREDENTIALS_MESSAGE


class AccountInactive(InvalidCredentials):
    """Deactivated account. Worded exactly like InvalidCredentials."""


class AccountLocked(AuthError):
    """Too many failed logins (401)."""
    status_code = 401
    error_code = "account_locked"

    def __init__(self, minutes_remaining: int, message: str | None = None) -> None:
        self.minutes_remaining = minutes_remaining
        super().__init__(
            message or f"Account is locked. Try again in {minutes_remaining} minutes.",
            details={"minutes_remaining": minutes_remaining},
        )


class TenantSuspended(AuthError):
    """The user's storage company or client business is not active (403)."""
    status_code = 403
    error_code = "tenant_suspended"
    default_message = "Storage company account is inactive. Please contact GUARDIAN support."


class InvalidTwoFactorCode(AuthError):
    """Neither the TOTP code nor a backup code matched (400)."""
    status_code = 400
    error_code = "invalid_two_factor_code"
    default_message = "Invalid 2FA code or backup code"


class AuthenticationRequired(AuthError):
    """No credentials were presented (401)."""
    status_code = 401
    error_code = "authentication_required"
    default_message = "Authentication required"


class TokenExpired(AuthError):
    """Access token expired; the client should try the refresh flow (401)."""
    status_code = 401
    error_code = "token_expired"
    default_message = "Access token expired"


class TokenMalformed(AuthError):
    """Bad signature, wrong type or unreadable payload (401)."""
    status_code = 401
    error_code = "invalid_token"
    default_message = "Invalid token"


class TokenRevokedOrNotFound(AuthError):
    """Token is signed correctly but no longer honoured (401)."""
    status_code = 401
    error_code = "token_revoked"
    default_message = "Invalid or expired refresh token"


class InsufficientPermission(AuthError):
    """Authenticated but not allowed (403)."""
    status_code = 403
    error_code = "forbidden"
    default_message = "Insufficient permissions"


class EmailNotVerified(InsufficientPermission):
    """Endpoint requires a verified email address (403)."""
    error_code = "email_not_verified"
    default_message = "Email verification required"


class NotFound(AuthError):
    """Requested resource does not exist (404)."""
    status_code = 404
    error_code = "not_found"
    default_message = "Resource not found"


class Conflict(AuthError):
    """Resource state conflicts with the request (409)."""
    status_code = 409
    error_code = "conflict"
    default_message = "Conflict"


__all__ = [
    "INVALID_CREDENTIALS_MESSAGE",
    "AuthError",
    "ValidationError",
    "InvalidPassword",
    "InvalidCredentials",
    "AccountInactive",
    "AccountLocked",
    "TenantSuspended",
    "InvalidTwoFactorCode",
    "AuthenticationRequired",
    "TokenExpired",
    "TokenMalformed",
    "TokenRevokedOrNotFound",
    "InsufficientPermission",
    "EmailNotVerified",
    "NotFound",
    "Conflict",
]
