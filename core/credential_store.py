# core/credential_store.py
"""
Credential store operations.

Every function takes the request's AsyncSession first, the same way the
feature db_managers do. Writes that other requests may race on are issued as
single UPDATE/DELETE statements (see core.queries) and committed before
returning.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core import queries
from core.errors import Conflict, ValidationError
from core.permissions import Role, clean_overrides
from core.security import RefreshClaims
from db_models.user import User, UserLinkError, validate_user_links
from db_models.tenant import Tenant
from db_models.client_business import ClientBusiness
from db_models.refresh_token import RefreshToken
from db_models.backup_code import BackupCode


@dataclass(frozen=True)
class ClientContext:
    """Where a refresh token was issued to."""
    user_agent: str | None = None
    ip_address: str | None = None


# ---------- Lookups ----------

async def get_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(queries.select_user_by_id(user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Look a user up by email, case-insensitively. Inactive users are returned too."""
    result = await db.execute(queries.select_user_by_email(email))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession, tenant_filter=None) -> list[User]:
    """Users visible through ``tenant_filter`` (None means unrestricted)."""
    stmt = queries.select_users()
    if tenant_filter is not None:
        stmt = tenant_filter.apply(stmt, User)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_tenant(db: AsyncSession, tenant_id: int) -> Tenant | None:
    result = await db.execute(queries.select_tenant_by_id(tenant_id))
    return result.scalar_one_or_none()


async def get_client_business(db: AsyncSession, client_business_id: int) -> ClientBusiness | None:
    result = await db.execute(queries.select_client_business_by_id(client_business_id))
    return result.scalar_one_or_none()


# ---------- User creation ----------

async def create_user(
    db: AsyncSession,
    *,
    email: str,
    password_hash: str,
    display_name: str,
    role: Role | str,
    tenant_id: int | None = None,
    client_business_id: int | None = None,
    email_verified: bool = False,
    permission_overrides: Mapping[str, Mapping[str, bool]] | None = None,
) -> User:
    """
    Insert a new active user with 2FA disabled.

    Raises:
        ValidationError: Role and tenant/client links don't fit together
        Conflict: Email already registered
    """
    role = Role(role)
    try:
        validate_user_links(role, tenant_id, client_business_id)
        overrides = clean_overrides(permission_overrides)
    except (UserLinkError, ValueError) as exc:
        raise ValidationError(str(exc)) from exc

    user = User(
        email=email.strip().lower(),
        password_hash=password_hash,
        display_name=display_name,
        role=role.value,
        tenant_id=tenant_id,
        client_business_id=client_business_id,
        email_verified=email_verified,
        permission_overrides=overrides,
        two_factor_enabled=False,
        failed_login_attempts=0,
        is_active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict("Email already registered") from exc
    await db.refresh(user)
    return user


# ---------- Lockout counters ----------

async def register_failed_login(db: AsyncSession, user_id: int, now: datetime) -> int:
    """Increment the failure counter in one statement and return its new value."""
    result = await db.execute(queries.increment_failed_attempts(user_id, now))
    attempts = result.scalar_one()
    await db.commit()
    return attempts


async def lock_account(db: AsyncSession, user_id: int, locked_until: datetime) -> None:
    await db.execute(queries.set_locked_until(user_id, locked_until))
    await db.commit()


async def clear_failed_logins(db: AsyncSession, user_id: int) -> None:
    await db.execute(queries.reset_failed_attempts(user_id))
    await db.commit()


async def record_login(db: AsyncSession, user_id: int, now: datetime, ip_address: str | None) -> None:
    await db.execute(queries.record_login(user_id, now, ip_address))
    await db.commit()


# ---------- Refresh-token allow-list ----------

async def add_refresh_token(
    db: AsyncSession,
    claims: RefreshClaims,
    client: ClientContext | None = None,
    *,
    max_tokens: int = 5,
) -> RefreshToken:
    """Record a newly issued refresh token, then evict the oldest beyond ``max_tokens``."""
    client = client or ClientContext()
    record = RefreshToken(
        user_id=claims.user_id,
        token_id=claims.token_id,
        issued_at=claims.issued_at,
        expires_at=claims.expires_at,
        user_agent=client.user_agent[:512] if client.user_agent else None,
        ip_address=client.ip_address,
    )
    db.add(record)
    await db.flush()
    await db.execute(queries.prune_refresh_tokens(claims.user_id, max_tokens))
    await db.commit()
    return record


async def consume_refresh_token(db: AsyncSession, user_id: int, token_id: str, now: datetime) -> bool:
    """
    Remove an unexpired allow-list entry.

    Returns True only for the one caller whose DELETE actually removed the
    row, so a replayed token loses even when two refreshes race.
    """
    result = await db.execute(queries.delete_live_refresh_token(user_id, token_id, now))
    removed = result.first() is not None
    await db.commit()
    return removed


async def revoke_refresh_token(db: AsyncSession, user_id: int, token_id: str) -> bool:
    result = await db.execute(queries.delete_refresh_token(user_id, token_id))
    removed = result.first() is not None
    await db.commit()
    return removed


async def revoke_session(db: AsyncSession, user_id: int, session_id: int) -> bool:
    """Revoke one of the user's own sessions by its record id."""
    result = await db.execute(queries.delete_refresh_token_by_id(user_id, session_id))
    removed = result.first() is not None
    await db.commit()
    return removed


async def revoke_all_refresh_tokens(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(queries.delete_all_refresh_tokens(user_id))
    await db.commit()
    return result.rowcount or 0


async def list_active_sessions(db: AsyncSession, user_id: int, now: datetime) -> list[RefreshToken]:
    result = await db.execute(queries.select_active_refresh_tokens(user_id, now))
    return list(result.scalars().all())


async def list_refresh_tokens(db: AsyncSession, user_id: int) -> list[RefreshToken]:
    """All stored records, expired ones included, oldest first."""
    result = await db.execute(queries.select_refresh_tokens(user_id))
    return list(result.scalars().all())


# ---------- Two-factor state ----------

async def count_backup_codes(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(queries.count_backup_codes(user_id))
    return result.scalar_one()


async def consume_backup_code(db: AsyncSession, user_id: int, code_hash: str) -> bool:
    """Delete a matching backup code. At most one concurrent caller can win it."""
    result = await db.execute(queries.delete_backup_code(user_id, code_hash))
    removed = result.first() is not None
    await db.commit()
    return removed


async def replace_backup_codes(db: AsyncSession, user_id: int, code_hashes: list[str]) -> None:
    """Swap the whole backup-code set in one transaction."""
    await db.execute(queries.delete_all_backup_codes(user_id))
    db.add_all([BackupCode(user_id=user_id, code_hash=h) for h in code_hashes])
    await db.commit()


async def store_pending_secret(db: AsyncSession, user_id: int, secret: str) -> None:
    """Keep a freshly generated TOTP secret on the user, still disabled."""
    await db.execute(
        queries.update_user_fields(user_id, two_factor_secret=secret, two_factor_enabled=False)
    )
    await db.commit()


async def enable_two_factor(db: AsyncSession, user_id: int, code_hashes: list[str]) -> None:
    """Turn 2FA on, install the backup codes and drop every session together."""
    await db.execute(queries.update_user_fields(user_id, two_factor_enabled=True))
    await db.execute(queries.delete_all_backup_codes(user_id))
    db.add_all([BackupCode(user_id=user_id, code_hash=h) for h in code_hashes])
    await db.execute(queries.delete_all_refresh_tokens(user_id))
    await db.commit()


async def clear_two_factor(db: AsyncSession, user_id: int) -> None:
    """Clear secret, backup codes and flag together and drop every session."""
    await db.execute(
        queries.update_user_fields(
            user_id,
            two_factor_enabled=False,
            two_factor_secret=None,
            two_factor_last_used_at=None,
        )
    )
    await db.execute(queries.delete_all_backup_codes(user_id))
    await db.execute(queries.delete_all_refresh_tokens(user_id))
    await db.commit()


async def touch_two_factor(db: AsyncSession, user_id: int, now: datetime) -> None:
    await db.execute(queries.update_user_fields(user_id, two_factor_last_used_at=now))
    await db.commit()


# ---------- Account changes ----------

async def set_password(db: AsyncSession, user_id: int, password_hash: str, now: datetime) -> None:
    """Store a new hash, stamp password_changed_at and drop every session."""
    await db.execute(
        queries.update_user_fields(user_id, password_hash=password_hash, password_changed_at=now)
    )
    await db.execute(queries.delete_all_refresh_tokens(user_id))
    await db.commit()


async def update_role(
    db: AsyncSession,
    user: User,
    role: Role | str,
    overrides: Mapping[str, Mapping[str, bool]] | None = None,
) -> User:
    """
    Change a user's role. Overrides are reset to the supplied set (or none)
    and every session is dropped.

    Raises:
        ValidationError: The new role doesn't fit the user's tenant/client links
    """
    role = Role(role)
    try:
        validate_user_links(role, user.tenant_id, user.client_business_id)
        cleaned = clean_overrides(overrides)
    except (UserLinkError, ValueError) as exc:
        raise ValidationError(str(exc)) from exc

    await db.execute(
        queries.update_user_fields(user.id, role=role.value, permission_overrides=cleaned)
    )
    await db.execute(queries.delete_all_refresh_tokens(user.id))
    await db.commit()
    await db.refresh(user)
    return user


async def deactivate_user(db: AsyncSession, user_id: int) -> None:
    await db.execute(queries.update_user_fields(user_id, is_active=False))
    await db.execute(queries.delete_all_refresh_tokens(user_id))
    await db.commit()
