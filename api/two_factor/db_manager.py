# api/two_factor/db_manager.py
"""
Two-factor lifecycle: setup, enable, login verification, disable, backup
code regeneration and admin reset.

A user is in one of three states:
- no secret, disabled
- secret generated, disabled (setup pending)
- secret stored, enabled, with a set of unused backup codes
"""
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from core import credential_store
from core.components import AuthComponents
from core.errors import (
    InvalidPassword,
    InvalidTwoFactorCode,
    ValidationError,
)
from core.logging import get_logger
from core.notifications import SecurityEvent
from db_models.user import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class TwoFactorSetup:
    secret: str
    provisioning_uri: str
    qr_image: str

    @property
    def manual_key(self) -> str:
        """Secret grouped in blocks of four for manual entry."""
        return " ".join(self.secret[i:i + 4] for i in range(0, len(self.secret), 4))


@dataclass(frozen=True)
class TwoFactorVerification:
    verified: bool
    used_backup_code: bool = False
    remaining_backup_codes: int | None = None


async def get_status(db: AsyncSession, user: User) -> dict:
    remaining = await credential_store.count_backup_codes(db, user.id) if user.two_factor_enabled else 0
    return {
        "enabled": user.two_factor_enabled,
        "last_used_at": user.two_factor_last_used_at,
        "backup_codes_remaining": remaining,
        "can_setup": not user.two_factor_enabled,
    }


async def generate_setup(db: AsyncSession, auth: AuthComponents, user: User) -> TwoFactorSetup:
    """
    Create a new secret and store it on the user, still disabled.

    Raises:
        ValidationError: 2FA is already enabled
    """
    if user.two_factor_enabled:
        raise ValidationError("2FA is already enabled. Disable it first to regenerate.")

    secret = auth.totp.generate_secret()
    uri = auth.totp.provisioning_uri(secret, user.email)
    qr_image = auth.totp.qr_data_url(uri)

    await credential_store.store_pending_secret(db, user.id, secret)
    logger.info("two_factor_setup_generated", user_id=user.id)
    return TwoFactorSetup(secret=secret, provisioning_uri=uri, qr_image=qr_image)


async def verify_setup(db: AsyncSession, auth: AuthComponents, user: User, token: str) -> list[str]:
    """
    Confirm the pending secret and enable 2FA.

    Returns the plaintext backup codes; only their hashes are stored.
    All of the user's refresh tokens are revoked.

    Raises:
        ValidationError: No pending secret, or 2FA already enabled
        InvalidTwoFactorCode: The code does not match the pending secret
    """
    if user.two_factor_enabled:
        raise ValidationError("2FA is already enabled")
    if not user.two_factor_secret:
        raise ValidationError("No 2FA setup found. Generate setup first.")

    if not auth.totp.verify_code(user.two_factor_secret, token, auth.now()):
        logger.info("two_factor_setup_rejected", user_id=user.id)
        raise InvalidTwoFactorCode("Invalid verification code. Please try again.")

    codes = auth.totp.generate_backup_codes()
    hashes = [auth.totp.hash_backup_code(user.id, c) for c in codes]
    await credential_store.enable_two_factor(db, user.id, hashes)

    logger.info("two_factor_enabled", user_id=user.id, backup_codes=len(codes))
    await auth.notifier.security_alert(user.id, SecurityEvent.TWO_FACTOR_ENABLED)
    return codes


async def verify_login(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    code: str,
) -> TwoFactorVerification:
    """
    Check a login code: TOTP first, then the backup-code set.

    A matching backup code is deleted in the same statement that finds it.
    Nothing is written when both paths fail.
    """
    if not user.two_factor_enabled or not user.two_factor_secret:
        return TwoFactorVerification(verified=False)

    now = auth.now()
    if auth.totp.verify_code(user.two_factor_secret, code, now):
        await credential_store.touch_two_factor(db, user.id, now)
        return TwoFactorVerification(verified=True)

    code_hash = auth.totp.hash_backup_code(user.id, code)
    if await credential_store.consume_backup_code(db, user.id, code_hash):
        await credential_store.touch_two_factor(db, user.id, now)
        remaining = await credential_store.count_backup_codes(db, user.id)
        logger.info("backup_code_used", user_id=user.id, remaining_backup_codes=remaining)
        await auth.notifier.security_alert(
            user.id, SecurityEvent.BACKUP_CODE_USED, remaining_backup_codes=remaining
        )
        return TwoFactorVerification(
            verified=True,
            used_backup_code=True,
            remaining_backup_codes=remaining,
        )

    return TwoFactorVerification(verified=False)


async def verify_for_user(
    db: AsyncSession,
    auth: AuthComponents,
    user_id: int,
    code: str,
) -> TwoFactorVerification:
    """
    Public verification by user id.

    Unknown, inactive and 2FA-less users fail exactly like a wrong code.

    Raises:
        InvalidTwoFactorCode: Verification failed for any reason
    """
    user = await credential_store.get_user(db, user_id)
    if user is None or not user.is_active:
        raise InvalidTwoFactorCode()

    result = await verify_login(db, auth, user, code)
    if not result.verified:
        logger.info("two_factor_rejected", user_id=user_id)
        raise InvalidTwoFactorCode()

    if result.remaining_backup_codes is None:
        result = TwoFactorVerification(
            verified=True,
            used_backup_code=False,
            remaining_backup_codes=await credential_store.count_backup_codes(db, user.id),
        )
    return result


async def _confirm_password(auth: AuthComponents, user: User, password: str) -> None:
    if not await auth.passwords.verify(password, user.password_hash):
        raise InvalidPassword()


async def disable(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    password: str,
    token: str,
) -> None:
    """
    Turn 2FA off after checking both the password and a current TOTP code.
    Secret, backup codes and every session are cleared.

    Raises:
        InvalidPassword: Password confirmation failed
        ValidationError: 2FA is not enabled
        InvalidTwoFactorCode: TOTP code rejected
    """
    await _confirm_password(auth, user, password)
    if not user.two_factor_enabled:
        raise ValidationError("2FA is not enabled")
    if not auth.totp.verify_code(user.two_factor_secret, token, auth.now()):
        raise InvalidTwoFactorCode("Invalid 2FA code")

    await credential_store.clear_two_factor(db, user.id)
    logger.info("two_factor_disabled", user_id=user.id)
    await auth.notifier.security_alert(user.id, SecurityEvent.TWO_FACTOR_DISABLED)


async def regenerate_backup_codes(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    password: str,
) -> list[str]:
    """
    Replace the whole backup-code set. Requires the password, not a TOTP code.

    Raises:
        InvalidPassword: Password confirmation failed
        ValidationError: 2FA is not enabled
    """
    await _confirm_password(auth, user, password)
    if not user.two_factor_enabled:
        raise ValidationError("2FA must be enabled to regenerate backup codes")

    codes = auth.totp.generate_backup_codes()
    await credential_store.replace_backup_codes(
        db, user.id, [auth.totp.hash_backup_code(user.id, c) for c in codes]
    )
    logger.info("backup_codes_regenerated", user_id=user.id, backup_codes=len(codes))
    await auth.notifier.security_alert(user.id, SecurityEvent.BACKUP_CODES_REGENERATED)
    return codes


async def reset_two_factor(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    *,
    reset_by: int,
) -> None:
    """Admin reset: clears the user's 2FA state and sessions unconditionally."""
    await credential_store.clear_two_factor(db, user.id)
    logger.info("two_factor_reset", user_id=user.id, reset_by=reset_by)
    await auth.notifier.security_alert(user.id, SecurityEvent.TWO_FACTOR_RESET, reset_by=reset_by)