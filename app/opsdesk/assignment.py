"""
Assignment resolver: who may act on which Customer/Order/Invoice.

A record's owner is the plain user id in ``record.assigned_to_user_id``. Loading
the user behind that id is never done here.

Rules, first match wins:
  1. admin may view/edit/delete anything
  2. assistant may view/edit only records assigned to them
  3. assistant may delete nothing
  4. anyone may claim an unassigned record (claiming your own is a no-op)

`claim` and `reassign` are the only functions that write to a record.
"""
from __future__ import annotations

import enum
import logging
from typing import Any, Protocol

from app.opsdesk.errors import PermissionDenied
from app.opsdesk.permissions import Actor, Role

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"
    CLAIM = "claim"


class Assignable(Protocol):
    id: Any
    assigned_to_user_id: int | None


def assignee_of(record: Assignable) -> int | None:
    value = getattr(record, "assigned_to_user_id", None)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"assigned_to_user_id must be an int user id, got {type(value).__name__}")
    return value


def _entity_label(record: object) -> str:
    return f"{type(record).__name__} {getattr(record, 'id', None)}"


def can_act_on(actor: Actor, record: Assignable, action: Action | str) -> bool:
    try:
        action = Action(action)
    except ValueError:
        return False
    owner = assignee_of(record)

    if action == Action.CLAIM:
        return owner is None or owner == actor.user_id
    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.ASSISTANT:
        if action == Action.DELETE:
            return False
        return owner is not None and owner == actor.user_id
    return False


def require(actor: Actor, record: Assignable, action: Action | str) -> None:
    """Raise PermissionDenied unless `actor` may perform `action` on `record`."""
    if can_act_on(actor, record, action):
        return
    label = _entity_label(record)
    try:
        action = Action(action)
    except ValueError:
        raise PermissionDenied(f"Unknown action {action!r} on {label}.")
    logger.warning("Denied %s on %s for user_id=%s role=%s", action.value, label, actor.user_id, actor.role.value)
    if action == Action.DELETE and actor.role != Role.ADMIN:
        raise PermissionDenied(f"Only an admin may delete {label}.")
    raise PermissionDenied(f"{label} is not assigned to you.")


def claim(actor: Actor, record: Assignable) -> bool:
    """
    Take ownership of an unassigned record.

    Returns True when the record changed, False when it was already the actor's.
    """
    owner = assignee_of(record)
    if owner == actor.user_id:
        return False
    if owner is not None:
        logger.warning("Claim refused on %s for user_id=%s (owned by %s)", _entity_label(record), actor.user_id, owner)
        raise PermissionDenied(f"{_entity_label(record)} is already assigned to another user.")
    record.assigned_to_user_id = actor.user_id
    logger.info("user_id=%s claimed %s", actor.user_id, _entity_label(record))
    return True


def reassign(actor: Actor, record: Assignable, user_id: int | None) -> bool:
    """Admin-only: point the record at `user_id` (None unassigns). Returns True when changed."""
    if actor.role != Role.ADMIN:
        raise PermissionDenied("Only an admin may reassign records.")
    if user_id is not None and (isinstance(user_id, bool) or not isinstance(user_id, int)):
        raise TypeError("user_id must be an int or None")
    if assignee_of(record) == user_id:
        return False
    record.assigned_to_user_id = user_id
    logger.info("user_id=%s reassigned %s to %s", actor.user_id, _entity_label(record), user_id)
    return True
