"""
Dashboard counters.

Everything is recomputed from a snapshot of records on every call; nothing is
cached or maintained incrementally.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from app.opsdesk.constants import INVOICE_STATUSES, ORDER_STATUS_CANCELLED, ORDER_STATUS_FLOW
from app.opsdesk.errors import FieldError, ValidationError
from app.opsdesk.modules.customers.models import Customer
from app.opsdesk.modules.invoices.models import Invoice
from app.opsdesk.modules.invoices.service import is_overdue
from app.opsdesk.modules.orders.models import Order
from app.opsdesk.utils import percentage, round_money

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class OrderStats:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    total_value: Decimal = ZERO
    paid_orders: int = 0
    pending_payments: int = 0
    average_order_value: Decimal = ZERO
    paid_percentage: int = 0
    success_rate: int = 0

    FINANCIAL_FIELDS = ("total_value", "average_order_value")

    def to_dict(self, *, include_financials: bool = True) -> dict[str, Any]:
        return _to_dict(self, "orders", include_financials)


@dataclass(frozen=True)
class InvoiceStats:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    overdue: int = 0
    total_invoiced: Decimal = ZERO
    total_paid: Decimal = ZERO
    outstanding: Decimal = ZERO

    FINANCIAL_FIELDS = ("total_invoiced", "total_paid", "outstanding")

    def to_dict(self, *, include_financials: bool = True) -> dict[str, Any]:
        return _to_dict(self, "invoices", include_financials)


@dataclass(frozen=True)
class CustomerStats:
    total: int = 0
    active: int = 0
    inactive: int = 0
    assigned: int = 0
    unassigned: int = 0

    FINANCIAL_FIELDS = ()

    def to_dict(self, *, include_financials: bool = True) -> dict[str, Any]:
        return _to_dict(self, "customers", include_financials)


StatsSnapshot = OrderStats | InvoiceStats | CustomerStats


def _to_dict(snapshot: Any, kind: str, include_financials: bool) -> dict[str, Any]:
    body = asdict(snapshot)
    for name in type(snapshot).FINANCIAL_FIELDS:
        if include_financials:
            body[name] = str(body[name])
        else:
            body.pop(name)
    body["kind"] = kind
    return body


def compute_order_stats(orders: Iterable[Order]) -> OrderStats:
    rows = list(orders)
    by_status = {st: 0 for st in (*ORDER_STATUS_FLOW, ORDER_STATUS_CANCELLED)}
    total_value = ZERO
    paid = pending_payments = 0
    for o in rows:
        by_status[o.status] = by_status.get(o.status, 0) + 1
        total_value += Decimal(o.order_total or 0)
        if o.payment_status == "paid":
            paid += 1
        elif o.payment_status in ("pending", "partial"):
            pending_payments += 1

    count = len(rows)
    return OrderStats(
        total=count,
        by_status=by_status,
        total_value=round_money(total_value),
        paid_orders=paid,
        pending_payments=pending_payments,
        average_order_value=round_money(total_value / count) if count else ZERO,
        paid_percentage=percentage(paid, count),
        success_rate=percentage(by_status.get("completed", 0), count),
    )


def compute_invoice_stats(invoices: Iterable[Invoice], *, today: date | None = None) -> InvoiceStats:
    rows = list(invoices)
    by_status = {st: 0 for st in sorted(INVOICE_STATUSES)}
    overdue = 0
    invoiced = paid = ZERO
    for inv in rows:
        by_status[inv.status] = by_status.get(inv.status, 0) + 1
        if is_overdue(inv, today):
            overdue += 1
        if inv.status == "cancelled":
            continue
        amount = Decimal(inv.total_amount or 0)
        invoiced += amount
        if inv.status == "paid":
            paid += amount
    return InvoiceStats(
        total=len(rows),
        by_status=by_status,
        overdue=overdue,
        total_invoiced=round_money(invoiced),
        total_paid=round_money(paid),
        outstanding=round_money(invoiced - paid),
    )


def compute_customer_stats(customers: Iterable[Customer]) -> CustomerStats:
    rows = [c for c in customers if not c.is_deleted]
    active = sum(1 for c in rows if c.status == "active")
    assigned = sum(1 for c in rows if c.assigned_to_user_id is not None)
    return CustomerStats(
        total=len(rows),
        active=active,
        inactive=len(rows) - active,
        assigned=assigned,
        unassigned=len(rows) - assigned,
    )


def compute_stats(records: Sequence[Order] | Sequence[Invoice] | Sequence[Customer], *, today: date | None = None) -> StatsSnapshot:
    """Dispatch on record type. An empty collection gives zeroed order stats."""
    rows = list(records)
    if not rows or all(isinstance(r, Order) for r in rows):
        return compute_order_stats(rows)
    if all(isinstance(r, Invoice) for r in rows):
        return compute_invoice_stats(rows, today=today)
    if all(isinstance(r, Customer) for r in rows):
        return compute_customer_stats(rows)
    raise ValidationError(FieldError("records", "Stats need a collection of a single record type."))
