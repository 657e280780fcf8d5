from __future__ import annotations

from flask import Blueprint

from app.opsdesk.db import db_session
from app.opsdesk.modules.customers.service import list_customers
from app.opsdesk.modules.invoices.service import list_invoices
from app.opsdesk.modules.orders.service import list_orders
from app.opsdesk.modules.stats.service import compute_customer_stats, compute_invoice_stats, compute_order_stats
from app.opsdesk.permissions import Permission
from app.opsdesk.rbac import current_policy, current_user, require_permission, user_has_permission

bp = Blueprint("stats", __name__)


def _include_financials() -> bool:
    return user_has_permission(current_user(), Permission.VIEW_FINANCIAL_DATA)


@bp.get("/stats/orders")
@require_permission(Permission.VIEW_BASIC_METRICS)
def stats_orders():
    rows = list_orders(db_session(), user=current_user(), policy=current_policy())
    return {"ok": True, "stats": compute_order_stats(rows).to_dict(include_financials=_include_financials())}


@bp.get("/stats/invoices")
@require_permission(Permission.VIEW_BASIC_METRICS)
def stats_invoices():
    rows = list_invoices(db_session(), user=current_user(), policy=current_policy())
    return {"ok": True, "stats": compute_invoice_stats(rows).to_dict(include_financials=_include_financials())}


@bp.get("/stats/customers")
@require_permission(Permission.VIEW_BASIC_METRICS)
def stats_customers():
    rows = list_customers(db_session(), user=current_user(), policy=current_policy())
    return {"ok": True, "stats": compute_customer_stats(rows).to_dict(include_financials=_include_financials())}
