from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from app.opsdesk.db import db_session
from app.opsdesk.errors import FieldError, ValidationError
from app.opsdesk.modules.customers.service import (
    assign_customer,
    claim_customer,
    create_customer,
    customers,
    delete_customer,
    get_customer,
    list_customers,
    soft_delete_customer,
    update_customer,
)
from app.opsdesk.permissions import Permission
from app.opsdesk.rbac import current_policy, current_user, require_login, require_permission
from app.opsdesk.utils import parse_int

bp = Blueprint("customers", __name__)


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.get("/customers")
@require_permission(Permission.VIEW_CUSTOMER_CONTACT)
def customers_list():
    s = db_session()
    rows = list_customers(
        s,
        user=current_user(),
        status=(request.args.get("status") or "").strip() or None,
        unassigned=(request.args.get("unassigned") or "").strip().lower() in ("1", "true", "yes"),
        policy=current_policy(),
    )
    return {"ok": True, "customers": [c.to_dict() for c in rows]}


@bp.post("/customers")
@require_permission(Permission.EDIT_CUSTOMERS)
def customers_create():
    s = db_session()
    c = create_customer(s, _payload(), user=current_user(), policy=current_policy())
    s.commit()
    return {"ok": True, "customer": c.to_dict()}, 201


@bp.get("/customers/<int:customer_id>")
@require_login
def customers_get(customer_id: int):
    s = db_session()
    c = get_customer(s, customer_id, user=current_user())
    return {"ok": True, "customer": c.to_dict()}


@bp.patch("/customers/<int:customer_id>")
@require_permission(Permission.EDIT_CUSTOMERS)
def customers_update(customer_id: int):
    s = db_session()
    payload = _payload()
    c = get_customer(s, customer_id, user=current_user())
    update_customer(s, c, payload, user=current_user(), reason=payload.get("reason"), policy=current_policy())
    s.commit()
    return {"ok": True, "customer": c.to_dict()}


@bp.delete("/customers/<int:customer_id>")
@require_login
def customers_delete(customer_id: int):
    s = db_session()
    user = current_user()
    c = customers(s).require(customer_id)
    reason = (request.args.get("reason") or "").strip() or None
    if (request.args.get("hard") or "").strip() in ("1", "true"):
        delete_customer(s, c, user=user, reason=reason)
        s.commit()
        return {"ok": True, "deleted": customer_id}
    soft_delete_customer(s, c, user=user, reason=reason)
    s.commit()
    return {"ok": True, "customer": c.to_dict()}


@bp.post("/customers/<int:customer_id>/claim")
@require_login
def customers_claim(customer_id: int):
    s = db_session()
    c = customers(s).require(customer_id, for_update=True)
    claim_customer(s, c, user=current_user())
    s.commit()
    return {"ok": True, "customer": c.to_dict()}


@bp.post("/customers/<int:customer_id>/assign")
@require_login
def customers_assign(customer_id: int):
    s = db_session()
    payload = _payload()
    raw = payload.get("user_id")
    assignee = parse_int(raw)
    if raw not in (None, "") and assignee is None:
        raise ValidationError(FieldError("user_id", "user_id must be a number or null."))
    c = customers(s).require(customer_id, for_update=True)
    assign_customer(s, c, assignee, user=current_user(), reason=payload.get("reason"))
    s.commit()
    return {"ok": True, "customer": c.to_dict()}
