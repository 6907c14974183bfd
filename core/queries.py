# core/queries.py
"""
SQLAlchemy statement builders for the credential store.

Mutations are single statements (increment, conditional delete) so that
concurrent requests for the same user cannot lose each other's writes.
"""
from datetime import datetime

from sqlalchemy import select, update, delete, func

from db_models.user import User
from db_models.tenant import Tenant
from db_models.client_business import ClientBusiness
from db_models.refresh_token import RefreshToken
from db_models.backup_code import BackupCode


# ---------- Users ----------

def select_user_by_id(user_id: int):
    """Select a user by ID."""
    return select(User).where(User.id == user_id)


def select_user_by_email(email: str):
    """Select a user by (lower-cased) email, active or not."""
    return select(User).where(User.email == email.strip().lower())


def increment_failed_attempts(user_id: int, now: datetime):
    """Atomically bump the failed-login counter and return the new value."""
    return (
        update(User)
        .where(User.id == user_id)
        .values(
            failed_login_attempts=User.failed_login_attempts + 1,
            last_failed_login_at=now,
        )
        .returning(User.failed_login_attempts)
    )


def set_locked_until(user_id: int, locked_until: datetime | None):
    return update(User).where(User.id == user_id).values(locked_until=locked_until)


def reset_failed_attempts(user_id: int):
    return (
        update(User)
        .where(User.id == user_id)
        .values(failed_login_attempts=0, locked_until=None)
    )


def record_login(user_id: int, now: datetime, ip_address: str | None):
    return (
        update(User)
        .where(User.id == user_id)
        .values(last_login_at=now, last_login_ip=ip_address)
    )


def update_user_fields(user_id: int, **values):
    return update(User).where(User.id == user_id).values(**values)


def select_users():
    """All users, newest first. Callers narrow it with a tenant filter."""
    return select(User).order_by(User.created_at.desc(), User.id.desc())


# ---------- Tenants ----------

def select_tenant_by_id(tenant_id: int):
    return select(Tenant).where(Tenant.id == tenant_id)


def select_client_business_by_id(client_business_id: int):
    return select(ClientBusiness).where(ClientBusiness.id == client_business_id)


# ---------- Refresh tokens ----------

def select_active_refresh_tokens(user_id: int, now: datetime):
    """Unexpired refresh-token records, newest first."""
    return (
        select(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.expires_at > now)
        .order_by(RefreshToken.issued_at.desc(), RefreshToken.id.desc())
    )


def select_refresh_tokens(user_id: int):
    """All refresh-token records in issuance order (oldest first)."""
    return (
        select(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .order_by(RefreshToken.issued_at.asc(), RefreshToken.id.asc())
    )


def prune_refresh_tokens(user_id: int, keep: int):
    """Delete all but the ``keep`` most recently issued records."""
    newest = (
        select(RefreshToken.id)
        .where(RefreshToken.user_id == user_id)
        .order_by(RefreshToken.issued_at.desc(), RefreshToken.id.desc())
        .limit(keep)
        .scalar_subquery()
    )
    return (
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.id.not_in(newest))
        .execution_options(synchronize_session=False)
    )


def delete_live_refresh_token(user_id: int, token_id: str, now: datetime):
    """Remove the record only if it still exists and is unexpired."""
    return (
        delete(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.token_id == token_id,
            RefreshToken.expires_at > now,
        )
        .returning(RefreshToken.id)
        .execution_options(synchronize_session=False)
    )


def delete_refresh_token(user_id: int, token_id: str):
    return (
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.token_id == token_id)
        .returning(RefreshToken.id)
        .execution_options(synchronize_session=False)
    )


def delete_refresh_token_by_id(user_id: int, record_id: int):
    return (
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.id == record_id)
        .returning(RefreshToken.id)
        .execution_options(synchronize_session=False)
    )


def delete_all_refresh_tokens(user_id: int):
    return (
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .execution_options(synchronize_session=False)
    )


# ---------- Backup codes ----------

def delete_backup_code(user_id: int, code_hash: str):
    """Remove one backup code if present, returning its id."""
    return (
        delete(BackupCode)
        .where(BackupCode.user_id == user_id, BackupCode.code_hash == code_hash)
        .returning(BackupCode.id)
        .execution_options(synchronize_session=False)
    )


def delete_all_backup_codes(user_id: int):
    return (
        delete(BackupCode)
        .where(BackupCode.user_id == user_id)
        .execution_options(synchronize_session=False)
    )


def count_backup_codes(user_id: int):
    return select(func.count(BackupCode.id)).where(BackupCode.user_id == user_id)
