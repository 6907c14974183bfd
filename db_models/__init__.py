# Import every model so they are registered on Base.metadata
from .tenant import Tenant, TenantStatus
from .client_business import ClientBusiness
from .user import User
from .refresh_token import RefreshToken
from .backup_code import BackupCode

__all__ = [
    "Tenant",
    "TenantStatus",
    "ClientBusiness",
    "User",
    "RefreshToken",
    "BackupCode",
]
