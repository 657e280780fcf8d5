"""Tests for the stats aggregation engine."""
from datetime import date
from decimal import Decimal

import pytest

from app.opsdesk.errors import ValidationError
from app.opsdesk.modules.customers.models import Customer
from app.opsdesk.modules.invoices.models import Invoice
from app.opsdesk.modules.orders.models import Order
from app.opsdesk.modules.stats.service import (
    CustomerStats,
    InvoiceStats,
    OrderStats,
    compute_customer_stats,
    compute_invoice_stats,
    compute_order_stats,
    compute_stats,
)
from app.opsdesk.utils import percentage

TODAY = date(2026, 3, 1)


def _order(status, payment, total):
    return Order(customer_id=1, status=status, payment_status=payment, order_total=Decimal(total))


def _invoice(status, total, due):
    return Invoice(
        invoice_number=f"INV-{status}-{total}",
        customer_name="Acme",
        status=status,
        invoice_date=date(2026, 1, 1),
        due_date=due,
        total_amount=Decimal(total),
    )


def _customer(status="active", owner=None, deleted=False):
    return Customer(name="C", status=status, assigned_to_user_id=owner, is_deleted=deleted)


def test_empty_input_gives_zeroed_order_stats():
    snap = compute_stats([])
    assert isinstance(snap, OrderStats)
    assert snap.total == 0
    assert snap.average_order_value == Decimal("0.00")
    assert snap.paid_percentage == 0
    assert snap.success_rate == 0
    assert snap.by_status == {"pending": 0, "confirmed": 0, "in_progress": 0, "completed": 0, "cancelled": 0}


def test_order_stats():
    orders = [
        _order("completed", "paid", "100.00"),
        _order("completed", "pending", "50.00"),
        _order("pending", "partial", "25.50"),
        _order("cancelled", "refunded", "10.00"),
    ]
    snap = compute_stats(orders)
    assert snap.total == 4
    assert snap.by_status["completed"] == 2
    assert snap.by_status["cancelled"] == 1
    assert snap.total_value == Decimal("185.50")
    assert snap.paid_orders == 1
    assert snap.pending_payments == 2
    assert snap.average_order_value == Decimal("46.38")
    assert snap.paid_percentage == 25
    assert snap.success_rate == 50


def test_percentage_half_up():
    assert percentage(1, 3) == 33
    assert percentage(2, 3) == 67
    assert percentage(1, 8) == 13
    assert percentage(5, 0) == 0


def test_invoice_stats():
    invoices = [
        _invoice("draft", "100.00", date(2026, 2, 1)),
        _invoice("sent", "200.00", date(2026, 4, 1)),
        _invoice("paid", "300.00", date(2026, 1, 15)),
        _invoice("cancelled", "999.00", date(2026, 1, 15)),
    ]
    snap = compute_stats(invoices, today=TODAY)
    assert isinstance(snap, InvoiceStats)
    assert snap.total == 4
    assert snap.overdue == 1
    assert snap.by_status == {"cancelled": 1, "draft": 1, "paid": 1, "sent": 1}
    assert snap.total_invoiced == Decimal("600.00")
    assert snap.total_paid == Decimal("300.00")
    assert snap.outstanding == Decimal("300.00")


def test_customer_stats_skip_deleted():
    snap = compute_customer_stats(
        [
            _customer("active", owner=2),
            _customer("inactive"),
            _customer("active"),
            _customer("active", owner=3, deleted=True),
        ]
    )
    assert snap == CustomerStats(total=3, active=2, inactive=1, assigned=1, unassigned=2)
    assert compute_stats([_customer()]).total == 1


def test_mixed_records_rejected():
    with pytest.raises(ValidationError):
        compute_stats([_order("pending", "pending", "1"), _customer()])


def test_financials_hidden_from_dict():
    snap = compute_order_stats([_order("completed", "paid", "10.00")])
    full = snap.to_dict()
    assert full["kind"] == "orders"
    assert full["total_value"] == "10.00"
    counts_only = snap.to_dict(include_financials=False)
    assert "total_value" not in counts_only
    assert "average_order_value" not in counts_only
    assert counts_only["paid_orders"] == 1

    inv = compute_invoice_stats([], today=TODAY).to_dict(include_financials=False)
    assert set(inv) == {"total", "by_status", "overdue", "kind"}
