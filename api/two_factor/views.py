# api/two_factor/views.py
"""
Two-factor authentication endpoints.
"""
from fastapi import APIRouter, Depends

from api.common import Envelope, ok
from core.deps import Components, CurrentUser, DbSession, require_email_verified
from .models import (
    BackupCodesResponse,
    PasswordConfirmRequest,
    TwoFactorCodeRequest,
    TwoFactorDisableRequest,
    TwoFactorSetupResponse,
    TwoFactorStatus,
    TwoFactorVerifyRequest,
    TwoFactorVerifyResponse,
)
from . import db_manager

router = APIRouter(prefix="/auth/2fa", tags=["two-factor"])


@router.get("/status", response_model=Envelope[TwoFactorStatus], summary="Current 2FA status")
async def two_factor_status(current_user: CurrentUser, db: DbSession):
    status = await db_manager.get_status(db, current_user)
    return ok(TwoFactorStatus(**status))


@router.get(
    "/setup",
    response_model=Envelope[TwoFactorSetupResponse],
    summary="Generate a TOTP secret and QR code",
    dependencies=[Depends(require_email_verified)],
)
async def two_factor_setup(current_user: CurrentUser, db: DbSession, auth: Components):
    """
    Generate a new secret for the caller. 2FA stays disabled until the code
    from the authenticator app is confirmed via /verify-setup.
    """
    setup = await db_manager.generate_setup(db, auth, current_user)
    return ok(
        TwoFactorSetupResponse(
            secret=setup.secret,
            qr_image=setup.qr_image,
            manual_key=setup.manual_key,
            provisioning_uri=setup.provisioning_uri,
        ),
        message="Scan the QR code with your authenticator app",
    )


@router.post(
    "/verify-setup",
    response_model=Envelope[BackupCodesResponse],
    summary="Confirm setup and enable 2FA",
)
async def two_factor_verify_setup(
    body: TwoFactorCodeRequest,
    current_user: CurrentUser,
    db: DbSession,
    auth: Components,
):
    """
    Enable 2FA and return the backup codes. They are shown only once.
    Every existing session of the caller is revoked.
    """
    codes = await db_manager.verify_setup(db, auth, current_user, body.token)
    return ok(
        BackupCodesResponse(backup_codes=codes),
        message="2FA has been enabled. Save these backup codes in a secure place.",
    )


@router.post(
    "/verify",
    response_model=Envelope[TwoFactorVerifyResponse],
    summary="Verify a TOTP or backup code",
)
async def two_factor_verify(body: TwoFactorVerifyRequest, db: DbSession, auth: Components):
    """Public: used mid-login before any access token exists."""
    result = await db_manager.verify_for_user(db, auth, body.user_id, body.token)
    return ok(
        TwoFactorVerifyResponse(
            verified=result.verified,
            used_backup_code=result.used_backup_code,
            remaining_backup_codes=result.remaining_backup_codes,
        ),
        message="2FA verification successful",
    )


@router.post("/disable", response_model=Envelope[None], summary="Disable 2FA")
async def two_factor_disable(
    body: TwoFactorDisableRequest,
    current_user: CurrentUser,
    db: DbSession,
    auth: Components,
):
    await db_manager.disable(db, auth, current_user, body.password, body.token)
    return ok(message="2FA has been disabled. Please log in again on all devices.")


@router.post(
    "/regenerate-backup-codes",
    response_model=Envelope[BackupCodesResponse],
    summary="Replace all backup codes",
)
async def two_factor_regenerate_backup_codes(
    body: PasswordConfirmRequest,
    current_user: CurrentUser,
    db: DbSession,
    auth: Components,
):
    codes = await db_manager.regenerate_backup_codes(db, auth, current_user, body.password)
    return ok(
        BackupCodesResponse(backup_codes=codes),
        message="Backup codes regenerated. Previous codes no longer work.",
    )
