# api/auth/db_manager.py
"""
Login state machine, session lifecycle and account administration.

    AwaitingCredentials -> PasswordVerified -> Completed
                                            -> AwaitingTwoFactor -> Completed

Every rejection raises an AuthError; the only state written on a rejected
login is the failed-attempt counter (and the lock, once it trips).
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from core import credential_store
from core.components import AuthComponents
from core.credential_store import ClientContext
from core.deps import Principal, TenantFilter
from core.errors import (
    AccountInactive,
    AccountLocked,
    InsufficientPermission,
    InvalidCredentials,
    InvalidPassword,
    InvalidTwoFactorCode,
    NotFound,
    TenantSuspended,
    TokenMalformed,
    TokenRevokedOrNotFound,
    ValidationError,
)
from core.logging import get_logger
from core.notifications import SecurityEvent
from core.permissions import CLIENT_OPERATIONS, Role, clean_overrides
from db_models.user import User
from api.two_factor import db_manager as two_factor_manager

logger = get_logger(__name__)


class LoginStep(str, Enum):
    COMPLETED = "completed"
    AWAITING_TWO_FACTOR = "awaiting_two_factor"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    step: LoginStep
    user: User
    tokens: TokenPair | None = None
    pending_token: str | None = None
    pending_expires_at: datetime | None = None
    used_backup_code: bool = False
    remaining_backup_codes: int | None = None

    @property
    def requires_two_factor(self) -> bool:
        return self.step == LoginStep.AWAITING_TWO_FACTOR


# ---------- Helpers ----------

async def _ensure_organisation_active(db: AsyncSession, user: User) -> None:
    """
    Raises:
        TenantSuspended: Storage company or client business is inactive
    """
    if user.is_platform_admin():
        return
    tenant = await credential_store.get_tenant(db, user.tenant_id) if user.tenant_id else None
    if tenant is None or not tenant.is_operational():
        raise TenantSuspended()
    if user.client_business_id is not None:
        business = await credential_store.get_client_business(db, user.client_business_id)
        if business is None or not business.is_active:
            raise TenantSuspended(
                "Client business account is inactive. Please contact your storage company."
            )


async def issue_session(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    client: ClientContext | None = None,
) -> TokenPair:
    """Sign a token pair and add the refresh token to the allow-list."""
    now = auth.now()
    access_token, expires_at = auth.tokens.create_access_token(user, now)
    refresh_token, claims = auth.tokens.create_refresh_token(user.id, now)
    await credential_store.add_refresh_token(
        db, claims, client, max_tokens=auth.config.max_refresh_tokens
    )
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        refresh_expires_at=claims.expires_at,
    )


async def _complete_login(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    client: ClientContext | None,
) -> TokenPair:
    tokens = await issue_session(db, auth, user, client)
    await credential_store.record_login(
        db, user.id, auth.now(), client.ip_address if client else None
    )
    return tokens


# ---------- Login ----------

async def login(
    db: AsyncSession,
    auth: AuthComponents,
    email: str,
    password: str,
    client: ClientContext | None = None,
) -> LoginResult:
    """
    Password step of the login state machine.

    Raises:
        InvalidCredentials: Unknown email or wrong password
        AccountInactive: Deactivated account, worded like InvalidCredentials
        AccountLocked: Lock active, or this failure tripped it
        TenantSuspended: Storage company or client business inactive
    """
    user = await credential_store.get_user_by_email(db, email)
    if user is None:
        logger.info("login_failed", reason="unknown_email")
        raise InvalidCredentials()
    if not user.is_active:
        logger.info("login_failed", user_id=user.id, reason="inactive")
        raise AccountInactive()

    now = auth.now()
    if user.is_locked(now):
        minutes = auth.policy.minutes_remaining(user.locked_until, now)
        logger.info("login_rejected_locked", user_id=user.id, minutes_remaining=minutes)
        raise AccountLocked(minutes)

    if user.locked_until is not None:
        # Lock has run out: start counting from zero again
        await credential_store.clear_failed_logins(db, user.id)

    if not await auth.passwords.verify(password, user.password_hash):
        attempts = await credential_store.register_failed_login(db, user.id, now)
        if auth.policy.should_lock(attempts):
            locked_until = auth.policy.lock_expiry(now)
            await credential_store.lock_account(db, user.id, locked_until)
            minutes = auth.policy.minutes_remaining(locked_until, now)
            logger.warning("account_locked", user_id=user.id, failed_attempts=attempts)
            await auth.notifier.security_alert(
                user.id, SecurityEvent.ACCOUNT_LOCKED, failed_attempts=attempts
            )
            raise AccountLocked(
                minutes,
                f"Account locked due to too many failed login attempts. Try again in {minutes} minutes.",
            )
        logger.info("login_failed", user_id=user.id, reason="bad_password", failed_attempts=attempts)
        raise InvalidCredentials()

    if user.failed_login_attempts or user.locked_until is not None:
        await credential_store.clear_failed_logins(db, user.id)

    await _ensure_organisation_active(db, user)

    if user.two_factor_enabled:
        pending_token, pending_expires_at = auth.tokens.create_pending_token(user.id, now)
        logger.info("two_factor_challenge_issued", user_id=user.id)
        return LoginResult(
            step=LoginStep.AWAITING_TWO_FACTOR,
            user=user,
            pending_token=pending_token,
            pending_expires_at=pending_expires_at,
        )

    tokens = await _complete_login(db, auth, user, client)
    logger.info("login_succeeded", user_id=user.id, role=user.role, two_factor=False)
    return LoginResult(step=LoginStep.COMPLETED, user=user, tokens=tokens)


async def complete_two_factor_login(
    db: AsyncSession,
    auth: AuthComponents,
    user_id: int,
    code: str,
    pending_token: str,
    client: ClientContext | None = None,
) -> LoginResult:
    """
    Second step: exchange a pending token and a TOTP/backup code for tokens.
    The pending token stays usable until its own expiry if the code is wrong.

    Raises:
        TokenMalformed: Pending token invalid, expired, or for another user
        InvalidCredentials: User no longer exists
        AccountInactive: User deactivated after the password step
        InvalidTwoFactorCode: Neither TOTP nor a backup code matched
    """
    claims = auth.tokens.decode_pending_token(pending_token)
    if claims.user_id != user_id:
        raise TokenMalformed("Invalid or expired temporary session")

    user = await credential_store.get_user(db, user_id)
    if user is None:
        raise InvalidCredentials()
    if not user.is_active:
        raise AccountInactive()

    await _ensure_organisation_active(db, user)

    result = await two_factor_manager.verify_login(db, auth, user, code)
    if not result.verified:
        logger.info("login_failed", user_id=user.id, reason="bad_two_factor_code")
        raise InvalidTwoFactorCode()

    remaining = result.remaining_backup_codes
    if remaining is None:
        remaining = await credential_store.count_backup_codes(db, user.id)

    tokens = await _complete_login(db, auth, user, client)
    logger.info(
        "login_succeeded",
        user_id=user.id,
        role=user.role,
        two_factor=True,
        used_backup_code=result.used_backup_code,
    )
    return LoginResult(
        step=LoginStep.COMPLETED,
        user=user,
        tokens=tokens,
        used_backup_code=result.used_backup_code,
        remaining_backup_codes=remaining,
    )


# ---------- Refresh & logout ----------

async def refresh_session(
    db: AsyncSession,
    auth: AuthComponents,
    refresh_token: str,
    client: ClientContext | None = None,
) -> TokenPair:
    """
    Rotate a refresh token: the old allow-list entry is deleted and a new
    pair is issued. A token that was already rotated or revoked fails.

    Raises:
        TokenRevokedOrNotFound: Any problem with the token or its owner
        TenantSuspended: Storage company or client business inactive
    """
    claims = auth.tokens.decode_refresh_token(refresh_token)

    user = await credential_store.get_user(db, claims.user_id)
    if user is None or not user.is_active:
        logger.info("refresh_token_rejected", reason="user_unavailable")
        raise TokenRevokedOrNotFound()

    await _ensure_organisation_active(db, user)

    if not await credential_store.consume_refresh_token(db, user.id, claims.token_id, auth.now()):
        logger.info("refresh_token_rejected", user_id=user.id, reason="not_in_allow_list")
        raise TokenRevokedOrNotFound()

    tokens = await issue_session(db, auth, user, client)
    logger.info("refresh_token_rotated", user_id=user.id)
    return tokens


async def logout(db: AsyncSession, auth: AuthComponents, user_id: int, refresh_token: str) -> int:
    """
    Revoke one of the caller's refresh tokens. Unknown or foreign tokens
    revoke nothing; logout never fails because of the token.
    """
    try:
        claims = auth.tokens.decode_refresh_token(refresh_token)
    except TokenRevokedOrNotFound:
        return 0
    if claims.user_id != user_id:
        return 0
    revoked = await credential_store.revoke_refresh_token(db, user_id, claims.token_id)
    logger.info("sessions_revoked", user_id=user_id, count=int(revoked))
    return int(revoked)


async def logout_all(db: AsyncSession, user_id: int) -> int:
    count = await credential_store.revoke_all_refresh_tokens(db, user_id)
    logger.info("sessions_revoked", user_id=user_id, count=count, scope="all")
    return count


async def list_sessions(db: AsyncSession, auth: AuthComponents, user_id: int):
    return await credential_store.list_active_sessions(db, user_id, auth.now())


async def revoke_session(db: AsyncSession, user_id: int, session_id: int) -> None:
    """
    Raises:
        NotFound: No such session for this user
    """
    if not await credential_store.revoke_session(db, user_id, session_id):
        raise NotFound("Session not found")
    logger.info("sessions_revoked", user_id=user_id, count=1, session_id=session_id)


# ---------- Password ----------

async def change_password(
    db: AsyncSession,
    auth: AuthComponents,
    user: User,
    current_password: str,
    new_password: str,
) -> None:
    """
    Rehash, stamp password_changed_at and revoke every session.

    Raises:
        InvalidPassword: Current password wrong
        ValidationError: New password unusable
    """
    if not await auth.passwords.verify(current_password, user.password_hash):
        raise InvalidPassword("Current password is incorrect")
    if new_password == current_password:
        raise ValidationError("New password must be different from the current password")

    password_hash = await auth.passwords.hash(new_password)
    await credential_store.set_password(db, user.id, password_hash, auth.now())
    logger.info("password_changed", user_id=user.id)
    await auth.notifier.security_alert(user.id, SecurityEvent.PASSWORD_CHANGED)


# ---------- Administration ----------

def _ensure_can_manage(
    actor: Principal,
    target: User,
    new_role: Role | None = None,
    permissions: dict[str, dict[str, bool]] | None = None,
) -> None:
    """
    Platform admins manage anyone. Everyone else is confined to their own
    tenant, client admins further to their own client business, to client
    roles and to client-operations overrides. Only platform admins may grant
    the platform-admin role.

    Raises:
        InsufficientPermission: Target or requested role outside the actor's scope
    """
    if actor.is_platform_admin():
        return

    if target.is_platform_admin() or target.tenant_id != actor.tenant_id:
        raise InsufficientPermission("Access denied")
    if new_role == Role.PLATFORM_ADMIN:
        raise InsufficientPermission("Only platform admins can grant this role")

    if Role(actor.role).is_client_role:
        if target.client_business_id != actor.client_business_id:
            raise InsufficientPermission("Access denied")
        if new_role is not None and not new_role.is_client_role:
            raise InsufficientPermission("Client admins can only assign client roles")
        outside = sorted(c for c in clean_overrides(permissions) if c != CLIENT_OPERATIONS)
        if outside:
            raise InsufficientPermission(
                f"Client admins can only grant {CLIENT_OPERATIONS} permissions (got: {', '.join(outside)})"
            )


async def _get_target(db: AsyncSession, user_id: int) -> User:
    user = await credential_store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def list_users(db: AsyncSession, tenant_filter: TenantFilter | None) -> list[User]:
    return await credential_store.list_users(db, tenant_filter)


async def update_role(
    db: AsyncSession,
    auth: AuthComponents,
    actor: Principal,
    user_id: int,
    role: Role,
    permissions: dict[str, dict[str, bool]] | None = None,
) -> User:
    """
    Change a user's role and reset their overrides; all sessions are revoked.
    The change reaches access tokens already issued only when they expire.

    Raises:
        NotFound, InsufficientPermission, ValidationError
    """
    if user_id == actor.id:
        raise ValidationError("You cannot change your own role")
    target = await _get_target(db, user_id)
    _ensure_can_manage(actor, target, role, permissions)

    previous_role = target.role
    user = await credential_store.update_role(db, target, role, permissions)
    logger.info(
        "role_changed",
        user_id=user.id,
        changed_by=actor.id,
        previous_role=previous_role,
        role=user.role,
    )
    await auth.notifier.security_alert(
        user.id, SecurityEvent.ROLE_CHANGED, previous_role=previous_role, role=user.role
    )
    return user


async def reset_two_factor(db: AsyncSession, auth: AuthComponents, actor: Principal, user_id: int) -> None:
    target = await _get_target(db, user_id)
    _ensure_can_manage(actor, target)
    await two_factor_manager.reset_two_factor(db, auth, target, reset_by=actor.id)


async def deactivate(db: AsyncSession, auth: AuthComponents, actor: Principal, user_id: int) -> None:
    """
    Soft-delete a user. Deactivation is terminal for this service.

    Raises:
        ValidationError: Actor tried to deactivate themselves
    """
    if user_id == actor.id:
        raise ValidationError("You cannot deactivate your own account")
    target = await _get_target(db, user_id)
    _ensure_can_manage(actor, target)

    await credential_store.deactivate_user(db, target.id)
    logger.info("account_deactivated", user_id=target.id, deactivated_by=actor.id)
    await auth.notifier.security_alert(
        target.id, SecurityEvent.ACCOUNT_DEACTIVATED, deactivated_by=actor.id
    )
