"""
Order lifecycle service layer.

Two independent state machines live on an order:

  status:          pending -> confirmed -> in_progress -> completed
                   (cancelled from any non-terminal state)
  payment_status:  pending -> partial -> paid -> refunded
                   (pending -> paid allowed; refunded only from paid)

Fulfilment and payment are tracked separately; neither ever moves the other.

The `evaluate_*` functions are the engine: pure, given an Order and an Actor they
either apply the whole change or raise and leave the order untouched. The
functions taking a Session wrap them with persistence and the audit trail.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.opsdesk import assignment
from app.opsdesk.assignment import Action
from app.opsdesk.audit import record_event
from app.opsdesk.constants import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_FLOW,
    ORDER_STATUSES,
    ORDER_TERMINAL_STATUSES,
    PAYMENT_STATUS_REFUNDED,
    PAYMENT_STATUSES,
)
from app.opsdesk.errors import (
    FieldError,
    InvalidState,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    OpsError,
    PermissionDenied,
    ValidationError,
)
from app.opsdesk.models import User
from app.opsdesk.modules.customers.models import Customer
from app.opsdesk.modules.orders.models import Order, OrderItem, recompute_order_total
from app.opsdesk.permissions import DEFAULT_POLICY, Actor, Permission, Role, RolePolicy
from app.opsdesk.store import RecordStore, require_assignee
from app.opsdesk.utils import parse_int, to_decimal

logger = logging.getLogger(__name__)

# Keys a client may send that are never trusted.
CLIENT_TOTAL_KEYS = ("order_total", "orderTotal", "total_amount", "totalAmount")

PAYMENT_TRANSITIONS = {
    "pending": {"partial", "paid"},
    "partial": {"paid"},
    "paid": {PAYMENT_STATUS_REFUNDED},
    PAYMENT_STATUS_REFUNDED: set(),
}

# Admin-only corrections (recorded a payment by mistake, etc.).
PAYMENT_ADMIN_CORRECTIONS = {
    "partial": {"pending"},
    "paid": {"pending", "partial"},
}


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemValues:
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_price


def _parse_quantity(value: Any) -> int | None:
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else None
    return parse_int(value)


def validate_item(fields: dict[str, Any], *, prefix: str = "item") -> tuple[ItemValues | None, list[FieldError]]:
    """Validate one line item. line_total in the input is ignored."""
    errs: list[FieldError] = []

    name = str(fields.get("product_name") or "").strip()
    if not name:
        errs.append(FieldError(f"{prefix}.product_name", "Product name is required."))

    qty = _parse_quantity(fields.get("quantity"))
    if qty is None or qty <= 0:
        errs.append(FieldError(f"{prefix}.quantity", "Quantity must be a whole number greater than 0."))

    price = to_decimal(fields.get("unit_price"))
    if price is None:
        errs.append(FieldError(f"{prefix}.unit_price", "Unit price is required."))
    elif price < 0:
        errs.append(FieldError(f"{prefix}.unit_price", "Unit price must be 0 or greater."))
    elif price.as_tuple().exponent < -2:  # type: ignore[operator]
        errs.append(FieldError(f"{prefix}.unit_price", "Unit price may have at most 2 decimal places."))

    if errs:
        return None, errs
    return ItemValues(product_name=name, quantity=qty, unit_price=price.quantize(Decimal("0.01"))), []  # type: ignore[arg-type,union-attr]


def validate_items(raw_items: Any) -> list[ItemValues]:
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError(FieldError("items", "Items must be a list."))
    values: list[ItemValues] = []
    errs: list[FieldError] = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            errs.append(FieldError(f"items[{idx}]", "Item must be an object."))
            continue
        v, item_errs = validate_item(raw, prefix=f"items[{idx}]")
        errs.extend(item_errs)
        if v is not None:
            values.append(v)
    if errs:
        raise ValidationError(errs)
    return values


def _build_item(v: ItemValues) -> OrderItem:
    return OrderItem(product_name=v.product_name, quantity=v.quantity, unit_price=v.unit_price, line_total=v.line_total)


def _discard_client_totals(payload: dict[str, Any]) -> None:
    sent = {k: payload[k] for k in CLIENT_TOTAL_KEYS if k in payload}
    if sent:
        logger.debug("Discarding client-supplied totals %s; order_total is recomputed from items", sent)


def new_order(
    *,
    customer_id: int,
    items: list[ItemValues],
    created_by: Actor,
    assigned_to_user_id: int | None,
    notes: str | None = None,
) -> Order:
    """Build a pending/pending order. At least one item is required."""
    if not items:
        raise InvariantViolation("An order needs at least one item.")
    now = datetime.utcnow()
    order = Order(
        customer_id=customer_id,
        status="pending",
        payment_status="pending",
        notes=notes,
        assigned_to_user_id=assigned_to_user_id,
        created_by_user_id=created_by.user_id,
        created_at=now,
        updated_at=now,
    )
    for v in items:
        order.items.append(_build_item(v))
    recompute_order_total(order)
    return order


# ---------------------------------------------------------------------------
# Status state machine
# ---------------------------------------------------------------------------


def _rank(status: str) -> int:
    return ORDER_STATUS_FLOW.index(status)


def _status_move_error(order: Order, new_status: str, actor: Actor) -> OpsError | None:
    current = order.status
    if new_status not in ORDER_STATUSES:
        return ValidationError(FieldError("status", f"Invalid status: {new_status}"))
    if current not in ORDER_STATUSES:
        return InvalidTransition(f"Current status '{current}' is invalid")
    if new_status == current:
        return InvalidTransition(f"Order is already '{current}'")

    if new_status == ORDER_STATUS_CANCELLED:
        if current in ORDER_TERMINAL_STATUSES:
            return InvalidTransition(f"Cannot transition from '{current}' to '{new_status}'")
        backward = False
    elif current == ORDER_STATUS_CANCELLED:
        if new_status in ORDER_TERMINAL_STATUSES:
            return InvalidTransition(f"Cannot transition from '{current}' to '{new_status}'")
        backward = True  # re-opening
    else:
        backward = _rank(new_status) < _rank(current)

    if backward and actor.role != Role.ADMIN:
        return PermissionDenied(f"Only an admin may move an order back from '{current}' to '{new_status}'")

    if new_status in ORDER_TERMINAL_STATUSES and not order.items:
        return InvariantViolation(f"An order without items cannot be {new_status}")
    return None


def _require_status_gate(order: Order, actor: Actor, policy: RolePolicy) -> None:
    if not policy.has_permission(actor.role, Permission.UPDATE_ORDER_STATUS):
        raise PermissionDenied("You are not allowed to update order status.")
    assignment.require(actor, order, Action.EDIT)


def allowed_transitions(order: Order, actor: Actor, *, policy: RolePolicy = DEFAULT_POLICY) -> list[str]:
    """Statuses this actor may move the order to right now (for rendering buttons)."""
    if not policy.has_permission(actor.role, Permission.UPDATE_ORDER_STATUS):
        return []
    if not assignment.can_act_on(actor, order, Action.EDIT):
        return []
    ordered = list(ORDER_STATUS_FLOW) + [ORDER_STATUS_CANCELLED]
    return [st for st in ordered if _status_move_error(order, st, actor) is None]


def evaluate_transition(order: Order, new_status: str, actor: Actor, *, policy: RolePolicy = DEFAULT_POLICY) -> Order:
    _require_status_gate(order, actor, policy)
    err = _status_move_error(order, new_status, actor)
    if err is not None:
        raise err
    order.status = new_status
    order.updated_at = datetime.utcnow()
    return order


# ---------------------------------------------------------------------------
# Payment state machine
# ---------------------------------------------------------------------------


def _payment_move_error(order: Order, new_status: str, actor: Actor) -> OpsError | None:
    current = order.payment_status
    if new_status not in PAYMENT_STATUSES:
        return ValidationError(FieldError("payment_status", f"Invalid payment status: {new_status}"))
    if current not in PAYMENT_TRANSITIONS:
        return InvalidTransition(f"Current payment status '{current}' is invalid")
    if new_status == current:
        return InvalidTransition(f"Payment status is already '{current}'")
    if new_status in PAYMENT_TRANSITIONS[current]:
        return None
    if new_status in PAYMENT_ADMIN_CORRECTIONS.get(current, set()):
        if actor.role == Role.ADMIN:
            return None
        return PermissionDenied(f"Only an admin may move payment back from '{current}' to '{new_status}'")
    return InvalidTransition(f"Cannot transition payment from '{current}' to '{new_status}'")


def evaluate_payment_transition(
    order: Order,
    new_payment_status: str,
    actor: Actor,
    *,
    policy: RolePolicy = DEFAULT_POLICY,
) -> Order:
    _require_status_gate(order, actor, policy)
    err = _payment_move_error(order, new_payment_status, actor)
    if err is not None:
        raise err
    order.payment_status = new_payment_status
    order.updated_at = datetime.utcnow()
    return order


# ---------------------------------------------------------------------------
# Item mutations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemMutation:
    kind: str  # "add" | "update" | "remove"
    index: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def add(cls, fields: dict[str, Any]) -> "ItemMutation":
        return cls("add", None, dict(fields))

    @classmethod
    def update(cls, index: int, fields: dict[str, Any]) -> "ItemMutation":
        return cls("update", index, dict(fields))

    @classmethod
    def remove(cls, index: int) -> "ItemMutation":
        return cls("remove", index)


ITEM_MUTATION_KINDS = ("add", "update", "remove")


def _item_at(order: Order, index: int | None) -> OrderItem:
    if index is None or isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(order.items):
        raise NotFound(f"Order {order.id} has no item at index {index}.")
    return order.items[index]


def evaluate_item_mutation(order: Order, op: ItemMutation, actor: Actor) -> Order:
    assignment.require(actor, order, Action.EDIT)
    if op.kind not in ITEM_MUTATION_KINDS:
        raise ValidationError(FieldError("op", f"Unknown item operation: {op.kind}"))
    if order.status in ORDER_TERMINAL_STATUSES:
        raise InvalidState(f"Items of a {order.status} order cannot be changed.")

    if op.kind == "add":
        v, errs = validate_item(op.fields)
        if errs:
            raise ValidationError(errs)
        order.items.append(_build_item(v))  # type: ignore[arg-type]

    elif op.kind == "update":
        item = _item_at(order, op.index)
        merged = {
            "product_name": item.product_name,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
        }
        merged.update({k: op.fields[k] for k in ("product_name", "quantity", "unit_price") if k in op.fields})
        v, errs = validate_item(merged, prefix=f"items[{op.index}]")
        if errs:
            raise ValidationError(errs)
        item.product_name = v.product_name  # type: ignore[union-attr]
        item.quantity = v.quantity  # type: ignore[union-attr]
        item.unit_price = v.unit_price  # type: ignore[union-attr]

    else:
        _item_at(order, op.index)
        if len(order.items) <= 1:
            raise InvariantViolation("Cannot remove the last item of an open order.")
        order.items.pop(op.index)  # type: ignore[arg-type]

    recompute_order_total(order)
    order.updated_at = datetime.utcnow()
    return order


def mutation_from_payload(payload: dict[str, Any]) -> ItemMutation:
    kind = str(payload.get("op") or "").strip().lower()
    if kind not in ITEM_MUTATION_KINDS:
        raise ValidationError(FieldError("op", f"op must be one of: {', '.join(ITEM_MUTATION_KINDS)}."))
    index = None
    if kind != "add":
        index = parse_int(payload.get("index"))
        if index is None:
            raise ValidationError(FieldError("index", "index is required for update/remove."))
    fields = payload.get("item") or {}
    if not isinstance(fields, dict):
        raise ValidationError(FieldError("item", "item must be an object."))
    return ItemMutation(kind, index, dict(fields))


# ---------------------------------------------------------------------------
# Persistence + audit
# ---------------------------------------------------------------------------


def orders(s: Session) -> RecordStore[Order]:
    return RecordStore(s, Order)


def get_order(s: Session, order_id: int, *, user: User, for_update: bool = False) -> Order:
    order = orders(s).require(order_id, for_update=for_update)
    assignment.require(user.as_actor(), order, Action.VIEW)
    return order


def list_orders(
    s: Session,
    *,
    user: User,
    status: str | None = None,
    customer_id: int | None = None,
    policy: RolePolicy = DEFAULT_POLICY,
) -> list[Order]:
    filters: dict[str, Any] = {}
    if status:
        filters["status"] = status
    if customer_id is not None:
        filters["customer_id"] = customer_id
    if not policy.has_permission(user.role, Permission.VIEW_ALL_ORDERS):
        filters["assigned_to_user_id"] = user.id
    return orders(s).list(order_by=Order.created_at.desc(), **filters)


def create_order(s: Session, payload: dict[str, Any], *, user: User) -> Order:
    actor = user.as_actor()
    customer_id = parse_int(payload.get("customer_id"))
    if customer_id is None:
        raise ValidationError(FieldError("customer_id", "Customer is required."))
    customer = RecordStore(s, Customer).require(customer_id)
    if customer.is_deleted:
        raise NotFound(f"Customer {customer_id} not found.")
    assignment.require(actor, customer, Action.EDIT)

    _discard_client_totals(payload)
    items = validate_items(payload.get("items") or [])
    assigned_to = user.id if actor.role == Role.ASSISTANT else customer.assigned_to_user_id

    order = new_order(
        customer_id=customer.id,
        items=items,
        created_by=actor,
        assigned_to_user_id=assigned_to,
        notes=(str(payload.get("notes") or "").strip() or None),
    )
    orders(s).create(order)
    record_event(
        s,
        actor=user,
        action="order.create",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={
            "customer_id": order.customer_id,
            "items": len(order.items),
            "order_total": str(order.order_total),
            "assigned_to_user_id": order.assigned_to_user_id,
        },
    )
    logger.info("Order %s created by user_id=%s total=%s", order.id, user.id, order.order_total)
    return order


def change_order_status(
    s: Session,
    order: Order,
    new_status: str,
    *,
    user: User,
    reason: str | None = None,
    policy: RolePolicy = DEFAULT_POLICY,
) -> Order:
    old_status = order.status
    evaluate_transition(order, new_status, user.as_actor(), policy=policy)
    record_event(
        s,
        actor=user,
        action="order.status_change",
        entity_type="Order",
        entity_id=str(order.id),
        reason=reason,
        metadata={"from": old_status, "to": new_status},
    )
    logger.info("Order %s status %s -> %s by user_id=%s", order.id, old_status, new_status, user.id)
    return order


def change_payment_status(
    s: Session,
    order: Order,
    new_payment_status: str,
    *,
    user: User,
    reason: str | None = None,
    policy: RolePolicy = DEFAULT_POLICY,
) -> Order:
    old = order.payment_status
    evaluate_payment_transition(order, new_payment_status, user.as_actor(), policy=policy)
    record_event(
        s,
        actor=user,
        action="order.payment_status_change",
        entity_type="Order",
        entity_id=str(order.id),
        reason=reason,
        metadata={"from": old, "to": new_payment_status},
    )
    logger.info("Order %s payment %s -> %s by user_id=%s", order.id, old, new_payment_status, user.id)
    return order


def mutate_order_items(s: Session, order: Order, op: ItemMutation, *, user: User) -> Order:
    before_total = order.order_total
    evaluate_item_mutation(order, op, user.as_actor())
    record_event(
        s,
        actor=user,
        action=f"order.item_{op.kind}",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={
            "index": op.index,
            "fields": {k: v for k, v in op.fields.items() if k in ("product_name", "quantity", "unit_price")},
            "order_total": {"from": str(before_total), "to": str(order.order_total)},
        },
    )
    return order


def delete_order(s: Session, order: Order, *, user: User, reason: str | None = None) -> None:
    assignment.require(user.as_actor(), order, Action.DELETE)
    record_event(
        s,
        actor=user,
        action="order.delete",
        entity_type="Order",
        entity_id=str(order.id),
        reason=reason,
        metadata={"customer_id": order.customer_id, "order_total": str(order.order_total), "status": order.status},
    )
    s.delete(order)


def claim_order(s: Session, order: Order, *, user: User) -> Order:
    if assignment.claim(user.as_actor(), order):
        order.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="order.claim", entity_type="Order", entity_id=str(order.id))
    return order


def assign_order(s: Session, order: Order, assignee_id: int | None, *, user: User, reason: str | None = None) -> Order:
    previous = order.assigned_to_user_id
    if user.as_actor().role != Role.ADMIN:
        raise PermissionDenied("Only an admin may reassign orders.")
    require_assignee(s, assignee_id)
    if assignment.reassign(user.as_actor(), order, assignee_id):
        order.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="order.assign",
            entity_type="Order",
            entity_id=str(order.id),
            reason=reason,
            metadata={"from": previous, "to": assignee_id},
        )
    return order
