import pytest

from core.permissions import (
    ADMINISTRATION,
    BASELINE_PERMISSIONS,
    CLIENT_OPERATIONS,
    ROLE_DEFAULTS,
    STORAGE_OPERATIONS,
    SYSTEM_ACCESS,
    Role,
    clean_overrides,
    default_permissions,
    effective_permissions,
    has_permission,
)
from db_models.user import UserLinkError, validate_user_links


def test_every_role_has_defaults_over_the_full_schema():
    for role in Role:
        perms = default_permissions(role)
        assert set(perms) == set(BASELINE_PERMISSIONS)
        for category, actions in BASELINE_PERMISSIONS.items():
            assert set(perms[category]) == set(actions)


def test_platform_admin_gets_everything():
    perms = default_permissions(Role.PLATFORM_ADMIN)
    assert all(all(actions.values()) for actions in perms.values())


def test_role_defaults_differ_by_role():
    manager = default_permissions(Role.TENANT_MANAGER)
    staff = default_permissions(Role.TENANT_STAFF)
    assert manager[STORAGE_OPERATIONS]["manage_inventory"] is True
    assert staff[STORAGE_OPERATIONS]["manage_inventory"] is False

    viewer = default_permissions(Role.CLIENT_VIEWER)
    assert viewer[CLIENT_OPERATIONS]["view_own_inventory"] is True
    assert viewer[CLIENT_OPERATIONS]["submit_orders"] is False


def test_default_tables_are_immutable():
    with pytest.raises(TypeError):
        ROLE_DEFAULTS[Role.TENANT_STAFF][STORAGE_OPERATIONS]["manage_billing"] = True
    with pytest.raises(TypeError):
        BASELINE_PERMISSIONS[SYSTEM_ACCESS]["api_access"] = True


def test_default_permissions_returns_a_fresh_copy():
    perms = default_permissions(Role.TENANT_STAFF)
    perms[STORAGE_OPERATIONS]["manage_billing"] = True
    assert default_permissions(Role.TENANT_STAFF)[STORAGE_OPERATIONS]["manage_billing"] is False


def test_overrides_layer_on_top_of_role_defaults():
    perms = effective_permissions(
        Role.TENANT_STAFF,
        {STORAGE_OPERATIONS: {"manage_inventory": True}, SYSTEM_ACCESS: {"mobile_app": False}},
    )
    assert perms[STORAGE_OPERATIONS]["manage_inventory"] is True
    assert perms[SYSTEM_ACCESS]["mobile_app"] is False
    # untouched defaults survive
    assert perms[STORAGE_OPERATIONS]["process_receiving"] is True


def test_clean_overrides_drops_unknown_entries():
    cleaned = clean_overrides({
        "made_up_category": {"anything": True},
        STORAGE_OPERATIONS: {"fly": True, "manage_billing": True},
    })
    assert cleaned == {STORAGE_OPERATIONS: {"manage_billing": True}}


def test_clean_overrides_rejects_non_boolean_values():
    with pytest.raises(ValueError):
        clean_overrides({STORAGE_OPERATIONS: {"manage_billing": "yes"}})


def test_tenant_admin_passes_every_non_client_category():
    assert has_permission(Role.TENANT_ADMIN, {}, STORAGE_OPERATIONS, "manage_billing")
    assert has_permission(Role.TENANT_ADMIN, {}, ADMINISTRATION, "manage_integrations")
    assert has_permission(Role.TENANT_ADMIN, {}, SYSTEM_ACCESS, "api_access")
    assert not has_permission(Role.TENANT_ADMIN, {}, CLIENT_OPERATIONS, "submit_orders")


def test_has_permission_requires_explicit_true():
    perms = {STORAGE_OPERATIONS: {"view_inventory": True, "manage_inventory": False}}
    assert has_permission(Role.TENANT_STAFF, perms, STORAGE_OPERATIONS, "view_inventory")
    assert not has_permission(Role.TENANT_STAFF, perms, STORAGE_OPERATIONS, "manage_inventory")
    assert not has_permission(Role.TENANT_STAFF, perms, ADMINISTRATION, "manage_users")
    assert not has_permission(Role.TENANT_STAFF, None, STORAGE_OPERATIONS, "view_inventory")


def test_role_classification():
    assert Role.CLIENT_USER.is_client_role
    assert not Role.CLIENT_USER.is_tenant_role
    assert Role.TENANT_MANAGER.is_tenant_role
    assert not Role.PLATFORM_ADMIN.is_client_role
    assert "platform-admin" in Role.values()


@pytest.mark.parametrize(
    "role,tenant_id,client_business_id",
    [
        (Role.PLATFORM_ADMIN, None, None),
        (Role.TENANT_ADMIN, 1, None),
        (Role.CLIENT_USER, 1, 7),
    ],
)
def test_valid_user_links(role, tenant_id, client_business_id):
    validate_user_links(role, tenant_id, client_business_id)


@pytest.mark.parametrize(
    "role,tenant_id,client_business_id",
    [
        (Role.TENANT_STAFF, None, None),
        (Role.CLIENT_VIEWER, 1, None),
        (Role.TENANT_MANAGER, 1, 7),
    ],
)
def test_invalid_user_links(role, tenant_id, client_business_id):
    with pytest.raises(UserLinkError):
        validate_user_links(role, tenant_id, client_business_id)
