"""Tests for the role/permission model."""
import pytest

from app.opsdesk.permissions import (
    ALL_PERMISSIONS,
    ASSISTANT_PERMISSIONS,
    DEFAULT_POLICY,
    Permission,
    Role,
    RolePolicy,
    accessible_components,
    can_access_component,
    can_access_route,
    can_view_all_customers,
    can_view_conversation,
    can_view_financial_data,
    has_permission,
)


def test_admin_is_strict_superset_of_assistant():
    admin = DEFAULT_POLICY.permissions_for(Role.ADMIN)
    assistant = DEFAULT_POLICY.permissions_for(Role.ASSISTANT)
    assert assistant < admin
    assert admin == ALL_PERMISSIONS


def test_assistant_permissions():
    assert DEFAULT_POLICY.permissions_for("assistant") == ASSISTANT_PERMISSIONS
    assert has_permission(Role.ASSISTANT, Permission.EDIT_CUSTOMERS)
    assert has_permission(Role.ASSISTANT, Permission.UPDATE_ORDER_STATUS)
    assert not has_permission(Role.ASSISTANT, Permission.DELETE_CUSTOMERS)
    assert not has_permission(Role.ASSISTANT, Permission.VIEW_FINANCIAL_DATA)
    assert not can_view_financial_data(Role.ASSISTANT)
    assert can_view_financial_data(Role.ADMIN)
    assert not can_view_all_customers("assistant")


def test_unknown_role_or_permission_is_false():
    assert has_permission("owner", Permission.VIEW_REVENUE) is False
    assert has_permission(None, Permission.VIEW_REVENUE) is False
    assert has_permission(Role.ADMIN, "launch_rockets") is False
    assert has_permission(Role.ADMIN, 42) is False
    assert can_access_route("owner", "/customers") is False
    assert accessible_components("owner", "sidebar") == frozenset()


@pytest.mark.parametrize(
    "path,allowed",
    [
        ("/customers", True),
        ("/orders/12", True),
        ("/", True),
        ("/admin", False),
        ("/admin/users", False),
        ("/analytics", False),
        ("/financial/report", False),
        ("/team", False),
        ("/settings/billing", False),
        ("/system-config", False),
        ("/teamwork", True),
        ("/administrator-guide", True),
    ],
)
def test_assistant_routes(path, allowed):
    assert can_access_route(Role.ASSISTANT, path) is allowed


def test_admin_opens_every_route():
    for path in ("/admin", "/financial", "/system-config/x", "/customers"):
        assert can_access_route(Role.ADMIN, path)


def test_components_and_wildcard():
    assert can_access_component(Role.ADMIN, "pages", "anything-at-all")
    assert can_access_component(Role.ASSISTANT, "sidebar", "orders")
    assert not can_access_component(Role.ASSISTANT, "sidebar", "financial")
    assert "basic-metrics" in accessible_components(Role.ASSISTANT, "dashboard")
    assert accessible_components(Role.ASSISTANT, "nowhere") == frozenset()


def test_conversation_visibility():
    assert can_view_conversation(Role.ADMIN, 1, 99)
    assert can_view_conversation(Role.ASSISTANT, 7, 7)
    assert not can_view_conversation(Role.ASSISTANT, 7, 8)
    assert not can_view_conversation(Role.ASSISTANT, 7, None)


def test_policy_rejects_ungranted_permission():
    with pytest.raises(ValueError, match="not granted"):
        RolePolicy(grants={Role.ADMIN: ALL_PERMISSIONS - {Permission.MANAGE_TEAM}})


def test_policy_rejects_unknown_permission():
    with pytest.raises(ValueError, match="unknown"):
        RolePolicy(grants={Role.ADMIN: ALL_PERMISSIONS | {"launch_rockets"}})


def test_policy_is_immutable():
    with pytest.raises(Exception):
        DEFAULT_POLICY.grants["assistant"] = ALL_PERMISSIONS  # type: ignore[index]
    with pytest.raises(Exception):
        DEFAULT_POLICY.grants = {}  # type: ignore[misc]


def test_injected_policy_is_used():
    generous = RolePolicy(
        grants={Role.ADMIN: ALL_PERMISSIONS, Role.ASSISTANT: ALL_PERMISSIONS},
        restricted_routes={Role.ADMIN: (), Role.ASSISTANT: ()},
    )
    assert has_permission(Role.ASSISTANT, Permission.VIEW_FINANCIAL_DATA, policy=generous)
    assert can_access_route(Role.ASSISTANT, "/admin", policy=generous)
    assert not has_permission(Role.ASSISTANT, Permission.VIEW_FINANCIAL_DATA)
