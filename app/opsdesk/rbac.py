from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g

from app.opsdesk.errors import PermissionDenied
from app.opsdesk.models import User
from app.opsdesk.permissions import DEFAULT_POLICY, Actor, RolePolicy


class NotAuthenticated(PermissionDenied):
    code = "not_authenticated"
    http_status = 401


def current_policy() -> RolePolicy:
    return current_app.extensions.get("role_policy", DEFAULT_POLICY)


def current_user() -> User:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise NotAuthenticated("Login required.")
    return user


def current_actor() -> Actor:
    return current_user().as_actor()


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return current_policy().has_permission(user.role, permission_key)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise PermissionDenied(f"Missing permission: {permission_key}")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
