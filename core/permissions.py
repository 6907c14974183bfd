# core/permissions.py
"""
Roles and capability permissions for the GUARDIAN 3PL platform.

Permissions are a two-level mapping ``category -> action -> bool``.
Every user's effective permissions are computed as:

    schema baseline  <-  role defaults  <-  per-user overrides

The baseline and role tables are immutable; overrides are stored on the user
record and never mutate the defaults.

Roles:
- PLATFORM_ADMIN: GUARDIAN operator, not bound to any tenant
- TENANT_ADMIN: Storage company administrator, passes every non-client check
- TENANT_MANAGER / TENANT_STAFF: Storage company employees
- CLIENT_ADMIN / CLIENT_USER / CLIENT_VIEWER: Users of a client business
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping

PermissionMap = dict[str, dict[str, bool]]


class Role(str, Enum):
    """User roles for authorization."""
    PLATFORM_ADMIN = "platform-admin"
    TENANT_ADMIN = "tenant-admin"
    TENANT_MANAGER = "tenant-manager"
    TENANT_STAFF = "tenant-staff"
    CLIENT_ADMIN = "client-admin"
    CLIENT_USER = "client-user"
    CLIENT_VIEWER = "client-viewer"

    @property
    def is_client_role(self) -> bool:
        return self in CLIENT_ROLES

    @property
    def is_tenant_role(self) -> bool:
        return self in TENANT_ROLES

    @classmethod
    def values(cls) -> list[str]:
        return [r.value for r in cls]


TENANT_ROLES = frozenset({Role.TENANT_ADMIN, Role.TENANT_MANAGER, Role.TENANT_STAFF})
CLIENT_ROLES = frozenset({Role.CLIENT_ADMIN, Role.CLIENT_USER, Role.CLIENT_VIEWER})

STORAGE_OPERATIONS = "storage_operations"
CLIENT_OPERATIONS = "client_operations"
ADMINISTRATION = "administration"
SYSTEM_ACCESS = "system_access"


def _freeze(table: Mapping[str, Mapping[str, bool]]) -> Mapping[str, Mapping[str, bool]]:
    return MappingProxyType({k: MappingProxyType(dict(v)) for k, v in table.items()})


# Values every user starts from before role defaults are applied
BASELINE_PERMISSIONS = _freeze({
    STORAGE_OPERATIONS: {
        "view_all_clients": False,
        "manage_clients": False,
        "view_inventory": True,
        "manage_inventory": False,
        "process_receiving": False,
        "process_shipping": False,
        "manage_billing": False,
    },
    CLIENT_OPERATIONS: {
        "view_own_inventory": True,
        "submit_orders": False,
        "view_reports": True,
        "export_data": False,
        "view_billing": False,
        "manage_users": False,
    },
    ADMINISTRATION: {
        "manage_users": False,
        "view_all_data": False,
        "modify_settings": False,
        "access_reports": False,
        "manage_integrations": False,
    },
    SYSTEM_ACCESS: {
        "mobile_app": True,
        "web_portal": True,
        "api_access": False,
        "bulk_operations": False,
    },
})


def _all_granted() -> dict[str, dict[str, bool]]:
    return {
        category: {action: True for action in actions}
        for category, actions in BASELINE_PERMISSIONS.items()
    }


ROLE_DEFAULTS: Mapping[Role, Mapping[str, Mapping[str, bool]]] = MappingProxyType({
    Role.PLATFORM_ADMIN: _freeze(_all_granted()),
    Role.TENANT_ADMIN: _freeze({
        STORAGE_OPERATIONS: {
            "view_all_clients": True,
            "manage_clients": True,
            "view_inventory": True,
            "manage_inventory": True,
            "process_receiving": True,
            "process_shipping": True,
            "manage_billing": True,
        },
        ADMINISTRATION: {
            "manage_users": True,
            "view_all_data": True,
            "modify_settings": True,
            "access_reports": True,
            "manage_integrations": True,
        },
    }),
    Role.TENANT_MANAGER: _freeze({
        STORAGE_OPERATIONS: {
            "view_all_clients": True,
            "manage_clients": False,
            "view_inventory": True,
            "manage_inventory": True,
            "process_receiving": True,
            "process_shipping": True,
            "manage_billing": False,
        },
        ADMINISTRATION: {
            "access_reports": True,
        },
    }),
    Role.TENANT_STAFF: _freeze({
        STORAGE_OPERATIONS: {
            "view_inventory": True,
            "process_receiving": True,
            "process_shipping": True,
        },
    }),
    Role.CLIENT_ADMIN: _freeze({
        CLIENT_OPERATIONS: {
            "view_own_inventory": True,
            "submit_orders": True,
            "view_reports": True,
            "export_data": True,
            "view_billing": True,
            "manage_users": True,
        },
    }),
    Role.CLIENT_USER: _freeze({
        CLIENT_OPERATIONS: {
            "view_own_inventory": True,
            "submit_orders": True,
            "view_reports": True,
        },
    }),
    Role.CLIENT_VIEWER: _freeze({
        CLIENT_OPERATIONS: {
            "view_own_inventory": True,
            "view_reports": True,
        },
    }),
})


def default_permissions(role: Role | str) -> PermissionMap:
    """Return a fresh, mutable copy of the role's default permission set."""
    role = Role(role)
    merged: PermissionMap = {k: dict(v) for k, v in BASELINE_PERMISSIONS.items()}
    for category, actions in ROLE_DEFAULTS[role].items():
        merged.setdefault(category, {}).update(actions)
    return merged


def clean_overrides(overrides: Mapping[str, Mapping[str, bool]] | None) -> PermissionMap:
    """
    Keep only overrides that name a known category/action pair.

    Raises:
        ValueError: If an override value is not a boolean
    """
    cleaned: PermissionMap = {}
    for category, actions in (overrides or {}).items():
        known = BASELINE_PERMISSIONS.get(category)
        if known is None:
            continue
        for action, value in actions.items():
            if action not in known:
                continue
            if not isinstance(value, bool):
                raise ValueError(f"Permission '{category}.{action}' must be a boolean")
            cleaned.setdefault(category, {})[action] = value
    return cleaned


def effective_permissions(
    role: Role | str,
    overrides: Mapping[str, Mapping[str, bool]] | None = None,
) -> PermissionMap:
    """Role defaults with the user's overrides layered on top."""
    merged = default_permissions(role)
    for category, actions in clean_overrides(overrides).items():
        merged[category].update(actions)
    return merged


def has_permission(
    role: Role | str,
    permissions: Mapping[str, Mapping[str, bool]] | None,
    category: str,
    action: str,
) -> bool:
    """
    Check a capability against a permission snapshot.

    Tenant admins implicitly hold every capability outside client operations.
    """
    if Role(role) == Role.TENANT_ADMIN and category != CLIENT_OPERATIONS:
        return True
    granted = (permissions or {}).get(category) or {}
    return granted.get(action) is True
