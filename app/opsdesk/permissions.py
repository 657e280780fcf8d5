"""
Role/permission model.

The role table is configuration: an immutable `RolePolicy` value built once and
handed to whoever needs it (the Flask app keeps it in
``app.extensions["role_policy"]``). Every lookup here is pure and never raises;
an unknown role or permission simply answers False / empty.
"""
from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from app.opsdesk.constants import ROLE_ADMIN, ROLE_ASSISTANT


class Role(str, enum.Enum):
    ADMIN = ROLE_ADMIN
    ASSISTANT = ROLE_ASSISTANT


ROLE_LABELS = {
    Role.ADMIN: "Admin/Owner",
    Role.ASSISTANT: "Assistant",
}


class Permission:
    # Financial & business data
    VIEW_FINANCIAL_DATA = "view_financial_data"
    VIEW_REVENUE = "view_revenue"
    VIEW_PROFITS = "view_profits"
    VIEW_COSTS = "view_costs"
    VIEW_PRICING = "view_pricing"

    # Customers
    VIEW_ALL_CUSTOMERS = "view_all_customers"
    VIEW_CUSTOMER_CONTACT = "view_customer_contact"
    EDIT_CUSTOMERS = "edit_customers"
    DELETE_CUSTOMERS = "delete_customers"

    # Orders
    VIEW_ALL_ORDERS = "view_all_orders"
    VIEW_ORDER_STATUS = "view_order_status"
    UPDATE_ORDER_STATUS = "update_order_status"
    VIEW_ORDER_HISTORY = "view_order_history"

    # Messaging
    VIEW_ALL_WHATSAPP = "view_all_whatsapp"
    VIEW_ASSIGNED_WHATSAPP = "view_assigned_whatsapp"
    SEND_WHATSAPP = "send_whatsapp"

    # Analytics
    VIEW_BUSINESS_ANALYTICS = "view_business_analytics"
    VIEW_TEAM_PERFORMANCE = "view_team_performance"
    VIEW_BASIC_METRICS = "view_basic_metrics"

    # System
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"
    MANAGE_USERS = "manage_users"
    MANAGE_TEAM = "manage_team"

    # Notifications
    RECEIVE_FINANCIAL_ALERTS = "receive_financial_alerts"
    RECEIVE_TEAM_ALERTS = "receive_team_alerts"
    RECEIVE_CUSTOMER_ALERTS = "receive_customer_alerts"


ALL_PERMISSIONS: frozenset[str] = frozenset(
    v for k, v in vars(Permission).items() if k.isupper() and isinstance(v, str)
)

COMPONENT_AREAS = ("dashboard", "sidebar", "pages")
WILDCARD = "all"


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _role_key(role: object) -> str | None:
    if isinstance(role, Role):
        return role.value
    if isinstance(role, str):
        return role.strip().lower() or None
    return None


def _freeze(mapping: Mapping[str, Iterable[str]]) -> Mapping[str, frozenset[str]]:
    return MappingProxyType({_role_key(k) or "": frozenset(v) for k, v in mapping.items()})


@dataclass(frozen=True)
class RolePolicy:
    """
    Immutable role table.

    grants:            role -> permissions granted
    components:        role -> area -> component names ("all" = everything)
    restricted_routes: role -> path prefixes the role may not open
                       (a role absent from this mapping may open nothing)
    """

    grants: Mapping[str, frozenset[str]]
    components: Mapping[str, Mapping[str, frozenset[str]]] = field(default_factory=dict)
    restricted_routes: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    permissions: frozenset[str] = ALL_PERMISSIONS

    def __post_init__(self) -> None:
        grants = _freeze(self.grants)
        universe = frozenset(self.permissions)

        granted: set[str] = set()
        for role, perms in grants.items():
            unknown = perms - universe
            if unknown:
                raise ValueError(f"Role {role!r} grants unknown permissions: {sorted(unknown)}")
            granted |= perms
        ungranted = universe - granted
        if ungranted:
            # No default-allow: every permission must be placed deliberately.
            raise ValueError(f"Permissions not granted to any role: {sorted(ungranted)}")

        components = MappingProxyType(
            {(_role_key(r) or ""): _freeze(areas) for r, areas in self.components.items()}
        )
        routes = MappingProxyType(
            {(_role_key(r) or ""): tuple(p.rstrip("/") or "/" for p in prefixes) for r, prefixes in self.restricted_routes.items()}
        )
        object.__setattr__(self, "grants", grants)
        object.__setattr__(self, "components", components)
        object.__setattr__(self, "restricted_routes", routes)
        object.__setattr__(self, "permissions", universe)

    def has_permission(self, role: object, permission: object) -> bool:
        key = _role_key(role)
        if key is None or not isinstance(permission, str):
            return False
        return permission in self.grants.get(key, frozenset())

    def permissions_for(self, role: object) -> frozenset[str]:
        return self.grants.get(_role_key(role) or "", frozenset())

    def can_access_route(self, role: object, route_path: object) -> bool:
        key = _role_key(role)
        if key is None or key not in self.grants or not isinstance(route_path, str):
            return False
        if key not in self.restricted_routes:
            return False
        path = "/" + route_path.strip().lstrip("/")
        for prefix in self.restricted_routes[key]:
            if path == prefix or path.startswith(prefix + "/"):
                return False
        return True

    def accessible_components(self, role: object, area: str) -> frozenset[str]:
        areas = self.components.get(_role_key(role) or "")
        if not areas:
            return frozenset()
        return areas.get(area, frozenset())

    def can_access_component(self, role: object, area: str, name: str) -> bool:
        names = self.accessible_components(role, area)
        return WILDCARD in names or name in names


ASSISTANT_PERMISSIONS = frozenset(
    {
        Permission.VIEW_CUSTOMER_CONTACT,
        Permission.EDIT_CUSTOMERS,  # edit, never delete
        Permission.VIEW_ORDER_STATUS,
        Permission.UPDATE_ORDER_STATUS,
        Permission.VIEW_ASSIGNED_WHATSAPP,
        Permission.SEND_WHATSAPP,
        Permission.VIEW_BASIC_METRICS,
        Permission.RECEIVE_CUSTOMER_ALERTS,
    }
)

DEFAULT_POLICY = RolePolicy(
    grants={
        Role.ADMIN: ALL_PERMISSIONS,
        Role.ASSISTANT: ASSISTANT_PERMISSIONS,
    },
    components={
        Role.ADMIN: {
            "dashboard": {"revenue", "customers", "orders", "analytics", "team"},
            "sidebar": {"customers", "orders", "whatsapp", "analytics", "team", "settings", "financial"},
            "pages": {WILDCARD},
        },
        Role.ASSISTANT: {
            "dashboard": {"customers", "orders", "basic-metrics"},
            "sidebar": {"customers", "orders", "whatsapp"},
            "pages": {"customers", "orders", "whatsapp", "profile"},
        },
    },
    restricted_routes={
        Role.ADMIN: (),
        Role.ASSISTANT: ("/admin", "/analytics", "/financial", "/team", "/settings", "/system-config"),
    },
)


def has_permission(role: object, permission: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, permission)


def can_access_route(role: object, route_path: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.can_access_route(role, route_path)


def accessible_components(role: object, area: str, *, policy: RolePolicy = DEFAULT_POLICY) -> frozenset[str]:
    return policy.accessible_components(role, area)


def can_access_component(role: object, area: str, name: str, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.can_access_component(role, area, name)


def can_view_financial_data(role: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, Permission.VIEW_FINANCIAL_DATA)


def can_view_all_customers(role: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, Permission.VIEW_ALL_CUSTOMERS)


def can_manage_system(role: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, Permission.MANAGE_SYSTEM_SETTINGS)


def can_view_all_whatsapp(role: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, Permission.VIEW_ALL_WHATSAPP)


def can_view_business_analytics(role: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, Permission.VIEW_BUSINESS_ANALYTICS)


def can_manage_team(role: object, *, policy: RolePolicy = DEFAULT_POLICY) -> bool:
    return policy.has_permission(role, Permission.MANAGE_TEAM)


def can_view_conversation(
    role: object,
    actor_id: int | None,
    conversation_assigned_to: int | None,
    *,
    policy: RolePolicy = DEFAULT_POLICY,
) -> bool:
    """Message channels: everything with view_all_whatsapp, otherwise only your own."""
    if policy.has_permission(role, Permission.VIEW_ALL_WHATSAPP):
        return True
    if not policy.has_permission(role, Permission.VIEW_ASSIGNED_WHATSAPP):
        return False
    return actor_id is not None and conversation_assigned_to == actor_id
