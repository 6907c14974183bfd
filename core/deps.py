# core/deps.py
"""
FastAPI dependencies for authentication and authorization.

Request pipeline (each step short-circuits with a typed AuthError):
1. bearer token present
2. access token signature and expiry
3. user still exists and is active
4. password not changed after the token was issued
5. tenant still operational (everyone but platform admins)

The resulting Principal carries the role/permission snapshot from the token.
Guards (role, permission, tenant isolation, verified email) stack on top.
"""
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db import get_session
from db_models.user import User
from core import credential_store
from core.components import AuthComponents, build_components_from_settings
from core.errors import (
    AuthError,
    AuthenticationRequired,
    EmailNotVerified,
    InsufficientPermission,
    TenantSuspended,
    TokenRevokedOrNotFound,
)
from core.logging import get_logger
from core.permissions import Role, PermissionMap, has_permission
from core.security import AccessClaims

logger = get_logger(__name__)

# OAuth2 scheme for token extraction from Authorization header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


@lru_cache
def get_auth_components() -> AuthComponents:
    """Process-wide auth components, built from settings on first use."""
    return build_components_from_settings(settings)


Components = Annotated[AuthComponents, Depends(get_auth_components)]
DbSession = Annotated[AsyncSession, Depends(get_session)]


@dataclass(frozen=True)
class Principal:
    """Normalized identity attached to an authenticated request."""
    id: int
    email: str
    role: str
    tenant_id: int | None
    client_business_id: int | None
    permissions: PermissionMap = field(default_factory=dict)
    email_verified: bool = False

    def is_platform_admin(self) -> bool:
        return self.role == Role.PLATFORM_ADMIN.value

    def can(self, category: str, action: str) -> bool:
        return has_permission(self.role, self.permissions, category, action)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "tenant_id": self.tenant_id,
            "client_business_id": self.client_business_id,
            "permissions": self.permissions,
            "email_verified": self.email_verified,
        }


@dataclass(frozen=True)
class Authenticated:
    """Principal plus the freshly loaded user record behind it."""
    principal: Principal
    user: User


def _principal_from(claims: AccessClaims, user: User) -> Principal:
    return Principal(
        id=claims.user_id,
        email=claims.email,
        role=claims.role,
        tenant_id=claims.tenant_id,
        client_business_id=claims.client_business_id,
        permissions=claims.permissions,
        email_verified=bool(user.email_verified),
    )


async def authenticate_token(
    db: AsyncSession,
    auth: AuthComponents,
    token: str | None,
) -> Authenticated:
    """
    Run the full verification pipeline for a bearer token.

    Raises:
        AuthenticationRequired: No token
        TokenExpired: Token signature valid but expired
        TokenMalformed: Bad signature or payload
        TokenRevokedOrNotFound: User gone, inactive, or password changed since issuance
        TenantSuspended: The user's storage company is not active
    """
    if not token:
        raise AuthenticationRequired()

    claims = auth.tokens.decode_access_token(token)

    user = await credential_store.get_user(db, claims.user_id)
    if user is None or not user.is_active:
        raise TokenRevokedOrNotFound("User not found or account deactivated")

    # iat has whole-second resolution
    if user.password_changed_at is not None:
        if int(user.password_changed_at.timestamp()) > int(claims.issued_at.timestamp()):
            raise TokenRevokedOrNotFound("Password was changed. Please log in again.")

    if not user.is_platform_admin():
        tenant = None
        if user.tenant_id is not None:
            tenant = await credential_store.get_tenant(db, user.tenant_id)
        if tenant is None or not tenant.is_operational():
            raise TenantSuspended()

    return Authenticated(principal=_principal_from(claims, user), user=user)


async def get_authenticated(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    db: DbSession,
    auth: Components,
) -> Authenticated:
    result = await authenticate_token(db, auth, token)
    request.state.principal = result.principal
    return result


async def get_current_principal(
    authenticated: Annotated[Authenticated, Depends(get_authenticated)],
) -> Principal:
    return authenticated.principal


async def get_current_user(
    authenticated: Annotated[Authenticated, Depends(get_authenticated)],
) -> User:
    return authenticated.user


async def get_optional_principal(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    db: DbSession,
    auth: Components,
) -> Principal | None:
    """
    Same pipeline as get_authenticated, but never rejects.
    Useful for endpoints that work with or without authentication.
    """
    if not token:
        return None
    try:
        result = await authenticate_token(db, auth, token)
    except AuthError as exc:
        logger.debug("optional_auth_ignored", reason=exc.error_code)
        return None
    request.state.principal = result.principal
    return result.principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalPrincipal = Annotated[Principal | None, Depends(get_optional_principal)]


# ---------- Guards ----------

def require_role(*roles: Role | str):
    """Dependency factory: caller's role must be one of ``roles``."""
    allowed = frozenset(Role(r).value for r in roles)

    async def dependency(principal: CurrentPrincipal) -> Principal:
        if principal.role not in allowed:
            raise InsufficientPermission()
        return principal

    return dependency


def require_permission(category: str, action: str):
    """
    Dependency factory: caller must hold ``category.action``.
    Tenant admins pass any category except client operations.
    """

    async def dependency(principal: CurrentPrincipal) -> Principal:
        if not principal.can(category, action):
            raise InsufficientPermission(f"Permission '{category}.{action}' required")
        return principal

    return dependency


async def require_email_verified(principal: CurrentPrincipal) -> Principal:
    if not principal.email_verified:
        raise EmailNotVerified()
    return principal


@dataclass(frozen=True)
class TenantFilter:
    """Mandatory scope for data queries made on behalf of a tenant user."""
    tenant_id: int
    client_business_id: int | None = None

    def apply(self, stmt, model):
        stmt = stmt.where(model.tenant_id == self.tenant_id)
        if self.client_business_id is not None and hasattr(model, "client_business_id"):
            stmt = stmt.where(model.client_business_id == self.client_business_id)
        return stmt


async def enforce_tenant_isolation(
    request: Request,
    principal: CurrentPrincipal,
) -> TenantFilter | None:
    """
    Build the tenant filter for the caller. Platform admins get None
    (unrestricted); client users are additionally pinned to their business.
    """
    if principal.is_platform_admin():
        tenant_filter = None
    else:
        client_business_id = None
        if Role(principal.role).is_client_role:
            client_business_id = principal.client_business_id
        tenant_filter = TenantFilter(
            tenant_id=principal.tenant_id,
            client_business_id=client_business_id,
        )
    request.state.tenant_filter = tenant_filter
    return tenant_filter


TenantScope = Annotated[TenantFilter | None, Depends(enforce_tenant_isolation)]
