from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, request

from app.opsdesk.db import db_session
from app.opsdesk.errors import FieldError, ValidationError
from app.opsdesk.modules.invoices.service import (
    change_invoice_status,
    create_invoice,
    create_invoice_from_order,
    delete_invoice,
    get_invoice,
    invoices,
    list_invoices,
    options_from_payload,
    serialize_invoice,
    update_invoice_items,
)
from app.opsdesk.modules.orders.service import orders
from app.opsdesk.permissions import Permission
from app.opsdesk.rbac import current_policy, current_user, require_login, require_permission
from app.opsdesk.utils import parse_int

bp = Blueprint("invoices", __name__)


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _numbering() -> dict[str, Any]:
    return {
        "prefix": current_app.config.get("INVOICE_NUMBER_PREFIX", "INV"),
        "max_attempts": int(current_app.config.get("INVOICE_NUMBER_MAX_ATTEMPTS", 5)),
    }


@bp.get("/invoices")
@require_permission(Permission.VIEW_ORDER_STATUS)
def invoices_list():
    s = db_session()
    order_raw = (request.args.get("order_id") or "").strip()
    order_id = parse_int(order_raw) if order_raw else None
    if order_raw and order_id is None:
        raise ValidationError(FieldError("order_id", "order_id must be a number."))
    rows = list_invoices(
        s,
        user=current_user(),
        status=(request.args.get("status") or "").strip() or None,
        order_id=order_id,
        policy=current_policy(),
    )
    return {"ok": True, "invoices": [serialize_invoice(i) for i in rows]}


@bp.post("/invoices")
@require_login
def invoices_create():
    s = db_session()
    inv = create_invoice(s, _payload(), user=current_user(), **_numbering())
    s.commit()
    return {"ok": True, "invoice": serialize_invoice(inv)}, 201


@bp.post("/invoices/from-order/<int:order_id>")
@require_login
def invoices_from_order(order_id: int):
    s = db_session()
    options = options_from_payload(_payload())
    order = orders(s).require(order_id, for_update=True)
    inv = create_invoice_from_order(s, order, options, user=current_user(), **_numbering())
    s.commit()
    return {"ok": True, "invoice": serialize_invoice(inv)}, 201


@bp.get("/invoices/<int:invoice_id>")
@require_login
def invoices_get(invoice_id: int):
    s = db_session()
    inv = get_invoice(s, invoice_id, user=current_user())
    return {"ok": True, "invoice": serialize_invoice(inv)}


@bp.post("/invoices/<int:invoice_id>/status")
@require_login
def invoices_status(invoice_id: int):
    s = db_session()
    payload = _payload()
    new_status = str(payload.get("status") or "").strip()
    if not new_status:
        raise ValidationError(FieldError("status", "Status is required."))
    inv = invoices(s).require(invoice_id, for_update=True)
    change_invoice_status(s, inv, new_status, user=current_user(), reason=payload.get("reason"))
    s.commit()
    return {"ok": True, "invoice": serialize_invoice(inv)}


@bp.put("/invoices/<int:invoice_id>/items")
@require_login
def invoices_items(invoice_id: int):
    s = db_session()
    inv = invoices(s).require(invoice_id, for_update=True)
    update_invoice_items(s, inv, _payload(), user=current_user())
    s.commit()
    return {"ok": True, "invoice": serialize_invoice(inv)}


@bp.delete("/invoices/<int:invoice_id>")
@require_login
def invoices_delete(invoice_id: int):
    s = db_session()
    inv = invoices(s).require(invoice_id, for_update=True)
    delete_invoice(s, inv, user=current_user(), reason=(request.args.get("reason") or "").strip() or None)
    s.commit()
    return {"ok": True, "deleted": invoice_id}
