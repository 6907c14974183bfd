# db_models/user.py
"""
User credential and identity record for the GUARDIAN 3PL platform.

One row per login identity. Tenant users (tenant-admin, tenant-manager,
tenant-staff) belong to a storage company; client users (client-admin,
client-user, client-viewer) additionally belong to one client business.
Platform admins are GUARDIAN staff and have no tenant.

Secrets (password hash, TOTP secret) never leave the credential store layer.
"""
from datetime import datetime

from sqlalchemy import String, Boolean, Integer, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from db_base import Base, UTCDateTime, utcnow
from core.permissions import Role, PermissionMap, effective_permissions


class UserLinkError(ValueError):
    """Raised when role and tenant/client links are inconsistent."""
    pass


def validate_user_links(
    role: Role | str,
    tenant_id: int | None,
    client_business_id: int | None,
) -> None:
    """
    Enforce the role/tenant linkage invariant at write time.

    Raises:
        UserLinkError: If the links don't fit the role
    """
    role = Role(role)
    if role != Role.PLATFORM_ADMIN and tenant_id is None:
        raise UserLinkError(f"Role {role.value} requires a tenant")
    if role.is_client_role and client_business_id is None:
        raise UserLinkError("Client users must have a client business")
    if not role.is_client_role and client_business_id is not None:
        raise UserLinkError("Only client users may be linked to a client business")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Login credentials
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    password_changed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Profile
    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Role and tenant scope
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[int | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )
    client_business_id: Mapped[int | None] = mapped_column(
        ForeignKey("client_businesses.id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )
    # Only the deviations from the role defaults are stored
    permission_overrides: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    # Two-factor authentication
    two_factor_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    two_factor_secret: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    two_factor_last_used_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Lockout tracking
    failed_login_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    last_failed_login_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Account status (soft delete)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        onupdate=utcnow,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    last_login_ip: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    @property
    def permissions(self) -> PermissionMap:
        """Effective permissions: role defaults plus stored overrides."""
        return effective_permissions(self.role, self.permission_overrides)

    def is_platform_admin(self) -> bool:
        return self.role == Role.PLATFORM_ADMIN.value

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now
