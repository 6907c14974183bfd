# api/auth/views.py
"""
Authentication, session and user management endpoints.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from api.common import Envelope, ok
from core.credential_store import ClientContext
from core.deps import (
    Components,
    CurrentPrincipal,
    CurrentUser,
    DbSession,
    Principal,
    TenantScope,
)
from core.errors import InsufficientPermission
from core.permissions import ADMINISTRATION, CLIENT_OPERATIONS
from .models import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    PasswordChange,
    PrincipalResponse,
    RevokedResponse,
    RoleUpdate,
    SessionListResponse,
    SessionResponse,
    SessionVerifyResponse,
    Token,
    TokenRefresh,
    TokenResponse,
    TwoFactorLoginRequest,
    TwoFactorLoginResponse,
    UserListResponse,
    UserResponse,
)
from . import db_manager


router = APIRouter(prefix="/auth", tags=["authentication"])


def _client_context(request: Request) -> ClientContext:
    return ClientContext(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _token(pair: db_manager.TokenPair) -> Token:
    return Token(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_at=pair.expires_at,
        refresh_expires_at=pair.refresh_expires_at,
    )


async def require_user_manager(principal: CurrentPrincipal) -> Principal:
    """Tenant-side or client-side user management permission."""
    if principal.can(ADMINISTRATION, "manage_users") or principal.can(CLIENT_OPERATIONS, "manage_users"):
        return principal
    raise InsufficientPermission(f"Permission '{ADMINISTRATION}.manage_users' required")


UserManager = Annotated[Principal, Depends(require_user_manager)]


# --- Login ---

@router.post("/login", response_model=Envelope[LoginResponse], summary="Login with email and password")
async def login(body: LoginRequest, request: Request, db: DbSession, auth: Components):
    """
    Returns a token pair, or a pending token when the account has 2FA
    enabled. The pending token must be exchanged at /auth/login/2fa.
    """
    result = await db_manager.login(db, auth, body.email, body.password, _client_context(request))

    if result.requires_two_factor:
        return ok(
            LoginResponse(
                requires_two_factor=True,
                user_id=result.user.id,
                pending_token=result.pending_token,
                pending_expires_at=result.pending_expires_at,
            ),
            message="Password verified. Please enter your 6-digit authentication code.",
        )

    return ok(
        LoginResponse(
            requires_two_factor=False,
            tokens=_token(result.tokens),
            user=UserResponse.model_validate(result.user),
        ),
        message="Login successful",
    )


@router.post(
    "/login/2fa",
    response_model=Envelope[TwoFactorLoginResponse],
    summary="Complete login with a 2FA code",
)
async def login_two_factor(body: TwoFactorLoginRequest, request: Request, db: DbSession, auth: Components):
    result = await db_manager.complete_two_factor_login(
        db,
        auth,
        body.user_id,
        body.token,
        body.pending_token,
        _client_context(request),
    )
    return ok(
        TwoFactorLoginResponse(
            tokens=_token(result.tokens),
            user=UserResponse.model_validate(result.user),
            used_backup_code=result.used_backup_code,
            remaining_backup_codes=result.remaining_backup_codes,
        ),
        message="Login successful",
    )


# --- Tokens & sessions ---

@router.post("/token/refresh", response_model=Envelope[TokenResponse], summary="Rotate refresh token")
async def refresh_token(body: TokenRefresh, request: Request, db: DbSession, auth: Components):
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    pair = await db_manager.refresh_session(db, auth, body.refresh_token, _client_context(request))
    return ok(TokenResponse(tokens=_token(pair)))


@router.post("/logout", response_model=Envelope[RevokedResponse], summary="Revoke one refresh token")
async def logout(body: LogoutRequest, principal: CurrentPrincipal, db: DbSession, auth: Components):
    revoked = await db_manager.logout(db, auth, principal.id, body.refresh_token)
    return ok(RevokedResponse(revoked=revoked), message="Logged out successfully")


@router.post("/logout-all", response_model=Envelope[RevokedResponse], summary="Revoke every refresh token")
async def logout_all(principal: CurrentPrincipal, db: DbSession):
    revoked = await db_manager.logout_all(db, principal.id)
    return ok(RevokedResponse(revoked=revoked), message="Logged out from all devices")


@router.get("/session/verify", response_model=Envelope[SessionVerifyResponse], summary="Check token liveness")
async def verify_session(principal: CurrentPrincipal):
    return ok(SessionVerifyResponse(principal=PrincipalResponse(**principal.to_dict())))


@router.get("/sessions", response_model=Envelope[SessionListResponse], summary="List active sessions")
async def list_sessions(principal: CurrentPrincipal, db: DbSession, auth: Components):
    sessions = await db_manager.list_sessions(db, auth, principal.id)
    return ok(
        SessionListResponse(
            sessions=[SessionResponse.model_validate(s) for s in sessions],
            total=len(sessions),
        )
    )


@router.delete("/sessions/{session_id}", response_model=Envelope[None], summary="Revoke one session")
async def revoke_session(session_id: int, principal: CurrentPrincipal, db: DbSession):
    await db_manager.revoke_session(db, principal.id, session_id)
    return ok(message="Session revoked")


# --- Profile & password ---

@router.get("/profile", response_model=Envelope[UserResponse], summary="Current user profile")
async def profile(current_user: CurrentUser):
    return ok(UserResponse.model_validate(current_user))


@router.post("/change-password", response_model=Envelope[None], summary="Change password")
async def change_password(body: PasswordChange, current_user: CurrentUser, db: DbSession, auth: Components):
    """Changing the password logs the user out on every device."""
    await db_manager.change_password(db, auth, current_user, body.current_password, body.new_password)
    return ok(message="Password changed successfully. Please log in again.")


# --- Admin endpoints for user management ---

@router.get(
    "/users",
    response_model=Envelope[UserListResponse],
    summary="List users in the caller's scope",
    dependencies=[Depends(require_user_manager)],
)
async def list_users(scope: TenantScope, db: DbSession):
    users = await db_manager.list_users(db, scope)
    return ok(
        UserListResponse(
            users=[UserResponse.model_validate(u) for u in users],
            total=len(users),
        )
    )


@router.put(
    "/users/{user_id}/role",
    response_model=Envelope[UserResponse],
    summary="Change a user's role",
)
async def update_user_role(user_id: int, body: RoleUpdate, actor: UserManager, db: DbSession, auth: Components):
    """
    Permission overrides are reset to the supplied set and all of the user's
    sessions are revoked.
    """
    user = await db_manager.update_role(db, auth, actor, user_id, body.role, body.permissions)
    return ok(UserResponse.model_validate(user), message="User role updated")


@router.post(
    "/users/{user_id}/2fa/reset",
    response_model=Envelope[None],
    summary="Reset a user's 2FA",
)
async def reset_user_two_factor(user_id: int, actor: UserManager, db: DbSession, auth: Components):
    await db_manager.reset_two_factor(db, auth, actor, user_id)
    return ok(message="2FA has been reset")


@router.post(
    "/users/{user_id}/deactivate",
    response_model=Envelope[None],
    status_code=status.HTTP_200_OK,
    summary="Deactivate a user",
)
async def deactivate_user(user_id: int, actor: UserManager, db: DbSession, auth: Components):
    """Users are never hard-deleted."""
    await db_manager.deactivate(db, auth, actor, user_id)
    return ok(message="User deactivated")
