from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from app.opsdesk.db import db_session
from app.opsdesk.errors import FieldError, ValidationError
from app.opsdesk.modules.orders.service import (
    allowed_transitions,
    assign_order,
    change_order_status,
    change_payment_status,
    claim_order,
    create_order,
    delete_order,
    get_order,
    list_orders,
    mutate_order_items,
    mutation_from_payload,
    orders,
)
from app.opsdesk.permissions import Permission
from app.opsdesk.rbac import current_policy, current_user, require_login, require_permission
from app.opsdesk.utils import parse_int

bp = Blueprint("orders", __name__)


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _order_body(order) -> dict[str, Any]:
    body = order.to_dict()
    body["allowed_transitions"] = allowed_transitions(order, current_user().as_actor(), policy=current_policy())
    return body


@bp.get("/orders")
@require_permission(Permission.VIEW_ORDER_STATUS)
def orders_list():
    s = db_session()
    customer_raw = (request.args.get("customer_id") or "").strip()
    customer_id = parse_int(customer_raw) if customer_raw else None
    if customer_raw and customer_id is None:
        raise ValidationError(FieldError("customer_id", "customer_id must be a number."))
    rows = list_orders(
        s,
        user=current_user(),
        status=(request.args.get("status") or "").strip() or None,
        customer_id=customer_id,
        policy=current_policy(),
    )
    return {"ok": True, "orders": [o.to_dict() for o in rows]}


@bp.post("/orders")
@require_login
def orders_create():
    s = db_session()
    order = create_order(s, _payload(), user=current_user())
    s.commit()
    return {"ok": True, "order": _order_body(order)}, 201


@bp.get("/orders/<int:order_id>")
@require_login
def orders_get(order_id: int):
    s = db_session()
    order = get_order(s, order_id, user=current_user())
    return {"ok": True, "order": _order_body(order)}


@bp.post("/orders/<int:order_id>/status")
@require_permission(Permission.UPDATE_ORDER_STATUS)
def orders_status(order_id: int):
    s = db_session()
    payload = _payload()
    new_status = str(payload.get("status") or "").strip()
    if not new_status:
        raise ValidationError(FieldError("status", "Status is required."))
    order = orders(s).require(order_id, for_update=True)
    change_order_status(s, order, new_status, user=current_user(), reason=payload.get("reason"), policy=current_policy())
    s.commit()
    return {"ok": True, "order": _order_body(order)}


@bp.post("/orders/<int:order_id>/payment")
@require_permission(Permission.UPDATE_ORDER_STATUS)
def orders_payment(order_id: int):
    s = db_session()
    payload = _payload()
    new_status = str(payload.get("payment_status") or "").strip()
    if not new_status:
        raise ValidationError(FieldError("payment_status", "Payment status is required."))
    order = orders(s).require(order_id, for_update=True)
    change_payment_status(s, order, new_status, user=current_user(), reason=payload.get("reason"), policy=current_policy())
    s.commit()
    return {"ok": True, "order": _order_body(order)}


@bp.post("/orders/<int:order_id>/items")
@require_login
def orders_items(order_id: int):
    s = db_session()
    op = mutation_from_payload(_payload())
    order = orders(s).require(order_id, for_update=True)
    mutate_order_items(s, order, op, user=current_user())
    s.commit()
    return {"ok": True, "order": _order_body(order)}


@bp.delete("/orders/<int:order_id>")
@require_login
def orders_delete(order_id: int):
    s = db_session()
    order = orders(s).require(order_id, for_update=True)
    delete_order(s, order, user=current_user(), reason=(request.args.get("reason") or "").strip() or None)
    s.commit()
    return {"ok": True, "deleted": order_id}


@bp.post("/orders/<int:order_id>/claim")
@require_login
def orders_claim(order_id: int):
    s = db_session()
    order = orders(s).require(order_id, for_update=True)
    claim_order(s, order, user=current_user())
    s.commit()
    return {"ok": True, "order": _order_body(order)}


@bp.post("/orders/<int:order_id>/assign")
@require_login
def orders_assign(order_id: int):
    s = db_session()
    payload = _payload()
    raw = payload.get("user_id")
    assignee = parse_int(raw)
    if raw not in (None, "") and assignee is None:
        raise ValidationError(FieldError("user_id", "user_id must be a number or null."))
    order = orders(s).require(order_id, for_update=True)
    assign_order(s, order, assignee, user=current_user(), reason=payload.get("reason"))
    s.commit()
    return {"ok": True, "order": _order_body(order)}
