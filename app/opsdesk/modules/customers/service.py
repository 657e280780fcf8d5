"""
Customer records.

Ownership rules:
- created by an admin -> unassigned (admins hand them out with `assign_customer`)
- created by an assistant -> assigned to that assistant
- edits go through the assignment resolver
- deletion (soft or hard) is admin-only; assistants never remove customers
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.opsdesk import assignment
from app.opsdesk.assignment import Action
from app.opsdesk.audit import record_event
from app.opsdesk.constants import CUSTOMER_STATUSES
from app.opsdesk.errors import FieldError, NotFound, PermissionDenied, ValidationError
from app.opsdesk.models import User
from app.opsdesk.modules.customers.models import Customer
from app.opsdesk.permissions import DEFAULT_POLICY, Permission, Role, RolePolicy
from app.opsdesk.store import RecordStore, require_assignee

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

EDITABLE_FIELDS = ("name", "email", "phone", "company", "address", "notes", "status")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def validate_customer_payload(payload: dict[str, Any], *, partial: bool = False) -> list[FieldError]:
    errs: list[FieldError] = []
    if not partial or "name" in payload:
        if not _clean(payload.get("name")):
            errs.append(FieldError("name", "Customer name is required."))
    email = _clean(payload.get("email"))
    if email and not _EMAIL_RE.match(email):
        errs.append(FieldError("email", "Email address is not valid."))
    status = _clean(payload.get("status"))
    if (status or "status" in payload) and status not in CUSTOMER_STATUSES:
        errs.append(FieldError("status", f"Status must be one of: {', '.join(sorted(CUSTOMER_STATUSES))}."))
    return errs


def customers(s: Session) -> RecordStore[Customer]:
    return RecordStore(s, Customer)


def get_customer(s: Session, customer_id: int, *, user: User, include_deleted: bool = False) -> Customer:
    c = customers(s).require(customer_id)
    if c.is_deleted and not include_deleted:
        raise NotFound(f"Customer {customer_id} not found.")
    assignment.require(user.as_actor(), c, Action.VIEW)
    return c


def list_customers(
    s: Session,
    *,
    user: User,
    status: str | None = None,
    unassigned: bool = False,
    policy: RolePolicy = DEFAULT_POLICY,
) -> list[Customer]:
    """
    Admins (view_all_customers) see everything; assistants see their own.
    `unassigned=True` lists the claimable pool and is open to both roles.
    """
    filters: dict[str, Any] = {"is_deleted": False}
    if status:
        filters["status"] = status
    if unassigned:
        filters["assigned_to_user_id"] = None
    elif not policy.has_permission(user.role, Permission.VIEW_ALL_CUSTOMERS):
        filters["assigned_to_user_id"] = user.id
    return customers(s).list(order_by=Customer.name, **filters)


def create_customer(s: Session, payload: dict[str, Any], *, user: User, policy: RolePolicy = DEFAULT_POLICY) -> Customer:
    actor = user.as_actor()
    if not policy.has_permission(actor.role, Permission.EDIT_CUSTOMERS):
        raise PermissionDenied("You are not allowed to create customers.")
    errs = validate_customer_payload(payload)
    if errs:
        raise ValidationError(errs)

    now = datetime.utcnow()
    c = Customer(
        name=_clean(payload.get("name")),
        email=(_clean(payload.get("email")) or "").lower() or None,
        phone=_clean(payload.get("phone")),
        company=_clean(payload.get("company")),
        address=_clean(payload.get("address")),
        notes=_clean(payload.get("notes")),
        status=_clean(payload.get("status")) or "active",
        assigned_to_user_id=user.id if actor.role == Role.ASSISTANT else None,
        created_by_user_id=user.id,
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )
    customers(s).create(c)
    record_event(
        s,
        actor=user,
        action="customer.create",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"name": c.name, "assigned_to_user_id": c.assigned_to_user_id},
    )
    return c


def update_customer(
    s: Session,
    c: Customer,
    payload: dict[str, Any],
    *,
    user: User,
    reason: str | None = None,
    policy: RolePolicy = DEFAULT_POLICY,
) -> Customer:
    actor = user.as_actor()
    if not policy.has_permission(actor.role, Permission.EDIT_CUSTOMERS):
        raise PermissionDenied("You are not allowed to edit customers.")
    assignment.require(actor, c, Action.EDIT)
    errs = validate_customer_payload(payload, partial=True)
    if errs:
        raise ValidationError(errs)

    before = {k: getattr(c, k) for k in EDITABLE_FIELDS}
    for k in EDITABLE_FIELDS:
        if k not in payload:
            continue
        value = _clean(payload.get(k))
        if k == "email" and value:
            value = value.lower()
        setattr(c, k, value)
    after = {k: getattr(c, k) for k in EDITABLE_FIELDS}
    fields_changed = [k for k in EDITABLE_FIELDS if before[k] != after[k]]
    if not fields_changed:
        return c

    c.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="customer.update",
        entity_type="Customer",
        entity_id=str(c.id),
        reason=reason,
        metadata={"before": before, "after": after, "fields_changed": fields_changed},
    )
    return c


def soft_delete_customer(s: Session, c: Customer, *, user: User, reason: str | None = None) -> Customer:
    assignment.require(user.as_actor(), c, Action.DELETE)
    if c.is_deleted:
        return c
    c.is_deleted = True
    c.deleted_at = datetime.utcnow()
    c.updated_at = c.deleted_at
    record_event(s, actor=user, action="customer.soft_delete", entity_type="Customer", entity_id=str(c.id), reason=reason)
    return c


def delete_customer(s: Session, c: Customer, *, user: User, reason: str | None = None) -> None:
    """Hard delete. Orders and invoices keep their plain customer_id / snapshot."""
    assignment.require(user.as_actor(), c, Action.DELETE)
    record_event(
        s,
        actor=user,
        action="customer.delete",
        entity_type="Customer",
        entity_id=str(c.id),
        reason=reason,
        metadata={"name": c.name},
    )
    s.delete(c)


def _require_live(c: Customer) -> None:
    if c.is_deleted:
        raise NotFound(f"Customer {c.id} not found.")


def claim_customer(s: Session, c: Customer, *, user: User) -> Customer:
    _require_live(c)
    if assignment.claim(user.as_actor(), c):
        c.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="customer.claim", entity_type="Customer", entity_id=str(c.id))
    return c


def assign_customer(s: Session, c: Customer, assignee_id: int | None, *, user: User, reason: str | None = None) -> Customer:
    previous = c.assigned_to_user_id
    if user.as_actor().role != Role.ADMIN:
        raise PermissionDenied("Only an admin may reassign customers.")
    _require_live(c)
    require_assignee(s, assignee_id)
    if assignment.reassign(user.as_actor(), c, assignee_id):
        c.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="customer.assign",
            entity_type="Customer",
            entity_id=str(c.id),
            reason=reason,
            metadata={"from": previous, "to": assignee_id},
        )
    return c
