# db_models/tenant.py
"""
Storage company (tenant) record.

Only the fields the auth core reads are modelled here; onboarding and billing
live in the company service.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from db_base import Base, UTCDateTime, utcnow


class TenantStatus(str, Enum):
    PENDING = "pending"
    EMAIL_VERIFIED = "email-verified"
    SETUP_COMPLETED = "setup-completed"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    registration_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TenantStatus.PENDING.value,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

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

    def is_operational(self) -> bool:
        """Users of a tenant may only sign in while it is active."""
        return self.is_active and self.registration_status == TenantStatus.ACTIVE.value
