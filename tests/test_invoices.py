"""Tests for the invoice derivation engine (no app or database needed)."""
from datetime import date
from decimal import Decimal

import pytest

from app.opsdesk.errors import InvalidState, InvalidTransition, InvariantViolation, NotFound, PermissionDenied, ValidationError
from app.opsdesk.modules.customers.models import Customer
from app.opsdesk.modules.invoices.service import (
    InvoiceOptions,
    create_manual_invoice,
    days_until_due,
    derive_invoice,
    display_status,
    evaluate_invoice_transition,
    generate_invoice_number,
    is_overdue,
    options_from_payload,
    replace_invoice_items,
)
from app.opsdesk.modules.orders.service import new_order, validate_items
from app.opsdesk.permissions import Actor, Role

ADMIN = Actor(user_id=1, role=Role.ADMIN)
X = Actor(user_id=2, role=Role.ASSISTANT)
Y = Actor(user_id=3, role=Role.ASSISTANT)
JAN_10 = date(2026, 1, 10)


def _customer(owner=X.user_id):
    return Customer(
        id=5,
        name="Acme Ltd",
        email="ops@acme.test",
        phone="+1 555 0100",
        status="active",
        assigned_to_user_id=owner,
        is_deleted=False,
    )


def _order(owner=X.user_id):
    order = new_order(
        customer_id=5,
        items=validate_items(
            [
                {"product_name": "Widget", "quantity": 2, "unit_price": "100"},
                {"product_name": "Gadget", "quantity": 1, "unit_price": "50"},
            ]
        ),
        created_by=ADMIN,
        assigned_to_user_id=owner,
    )
    order.id = 77
    return order


def _numbers():
    seq = iter(range(1, 1000))
    return lambda d: f"INV-{d:%Y%m%d}-{next(seq):06d}"


def _derive(order=None, customer=None, **opts):
    opts.setdefault("term_days", 30)
    opts.setdefault("invoice_date", JAN_10)
    return derive_invoice(
        order or _order(),
        customer if customer is not None else _customer(),
        InvoiceOptions(**opts),
        X,
        next_number=_numbers(),
    )


def test_tax_rate_applied_to_subtotal():
    inv = _derive(tax_rate=Decimal("0.16"))
    assert inv.subtotal == Decimal("250.00")
    assert inv.tax_amount == Decimal("40.00")
    assert inv.total_amount == Decimal("290.00")
    assert inv.status == "draft"
    assert inv.order_id == 77


def test_snapshot_of_customer_and_items():
    customer = _customer()
    order = _order()
    inv = _derive(order=order, customer=customer)
    customer.name = "Renamed"
    order.items[0].quantity = 9
    assert inv.customer_name == "Acme Ltd"
    assert inv.customer_email == "ops@acme.test"
    assert [(i.product_name, i.quantity) for i in inv.items] == [("Widget", 2), ("Gadget", 1)]
    assert inv.subtotal == Decimal("250.00")


def test_due_date_and_terms():
    inv = _derive(term_days=15)
    assert inv.invoice_date == JAN_10
    assert inv.due_date == date(2026, 1, 25)
    assert inv.payment_terms == "Net 15 days"


def test_missing_term_fails_closed():
    with pytest.raises(ValidationError) as exc:
        _derive(term_days=None)
    assert exc.value.errors[0].field == "term_days"


def test_negative_term_rejected():
    with pytest.raises(InvariantViolation):
        _derive(term_days=-1)


def test_order_without_items():
    order = _order()
    order.items.clear()
    with pytest.raises(InvariantViolation):
        _derive(order=order)


def test_missing_customer():
    with pytest.raises(NotFound):
        derive_invoice(_order(), None, InvoiceOptions(term_days=30), X, next_number=_numbers())


def test_cancelled_order_cannot_be_invoiced():
    order = _order()
    order.status = "cancelled"
    with pytest.raises(InvalidState):
        _derive(order=order)


def test_derive_requires_edit_on_order():
    with pytest.raises(PermissionDenied):
        derive_invoice(_order(owner=X.user_id), _customer(), InvoiceOptions(term_days=30), Y, next_number=_numbers())


def test_tax_rate_bounds():
    with pytest.raises(ValidationError):
        _derive(tax_rate=Decimal("1.5"))
    with pytest.raises(ValidationError):
        options_from_payload({"tax_rate": "-0.1", "term_days": 30})
    assert _derive(tax_rate=Decimal("1")).total_amount == Decimal("500.00")


def test_total_rounding_half_up():
    order = new_order(
        customer_id=5,
        items=validate_items([{"product_name": "Thing", "quantity": 1, "unit_price": "0.05"}]),
        created_by=ADMIN,
        assigned_to_user_id=X.user_id,
    )
    order.id = 1
    inv = _derive(order=order, tax_rate=Decimal("0.1"))
    # 0.005 rounds up
    assert inv.tax_amount == Decimal("0.01")
    assert inv.total_amount == inv.subtotal + inv.tax_amount == Decimal("0.06")


def test_invoice_number_format_and_collision_retry():
    seen = {"INV-20260110-000123"}
    clock = lambda: 123 * 1_000_000  # noqa: E731
    n = generate_invoice_number(JAN_10, exists=seen.__contains__, clock=clock)
    assert n == "INV-20260110-000124"
    assert generate_invoice_number(JAN_10, exists=lambda _: False, prefix="ACME", clock=clock) == "ACME-20260110-000123"


def test_invoice_number_gives_up():
    with pytest.raises(InvariantViolation):
        generate_invoice_number(JAN_10, exists=lambda _: True, max_attempts=3)


def test_status_machine():
    inv = _derive()
    with pytest.raises(InvalidTransition):
        evaluate_invoice_transition(inv, "paid", X)
    evaluate_invoice_transition(inv, "sent", X)
    assert inv.sent_at is not None
    evaluate_invoice_transition(inv, "paid", X)
    assert inv.paid_at is not None
    with pytest.raises(InvalidTransition):
        evaluate_invoice_transition(inv, "cancelled", ADMIN)


def test_overdue_cannot_be_set():
    with pytest.raises(ValidationError):
        evaluate_invoice_transition(_derive(), "overdue", ADMIN)


def test_overdue_is_derived():
    inv = _derive(term_days=10)
    assert inv.due_date == date(2026, 1, 20)
    assert not is_overdue(inv, date(2026, 1, 20))
    assert is_overdue(inv, date(2026, 1, 21))
    assert display_status(inv, date(2026, 1, 21)) == "overdue"
    assert days_until_due(inv, date(2026, 1, 15)) == 5
    assert days_until_due(inv, date(2026, 1, 22)) == -2

    evaluate_invoice_transition(inv, "cancelled", X)
    assert not is_overdue(inv, date(2027, 1, 1))
    assert display_status(inv, date(2027, 1, 1)) == "cancelled"


def test_items_editable_only_in_draft():
    inv = _derive()
    items = validate_items([{"product_name": "Consulting", "quantity": 3, "unit_price": "10"}])
    replace_invoice_items(inv, items, X, tax_rate="0.5")
    assert inv.subtotal == Decimal("30.00")
    assert inv.tax_amount == Decimal("15.00")
    assert inv.total_amount == Decimal("45.00")

    evaluate_invoice_transition(inv, "sent", X)
    with pytest.raises(InvalidState):
        replace_invoice_items(inv, items, X)
    assert inv.total_amount == Decimal("45.00")


@pytest.mark.parametrize("blank", [None, ""])
def test_blank_tax_rate_keeps_current_rate(blank):
    inv = _derive(tax_rate=Decimal("0.1"))
    items = validate_items([{"product_name": "Consulting", "quantity": 2, "unit_price": "50"}])
    replace_invoice_items(inv, items, X, tax_rate=blank)
    assert inv.tax_rate == Decimal("0.1")
    assert inv.tax_amount == Decimal("10.00")
    assert inv.total_amount == Decimal("110.00")


def test_manual_invoice_with_explicit_due_date():
    items = validate_items([{"product_name": "Setup", "quantity": 1, "unit_price": "80"}])
    inv = create_manual_invoice(
        _customer(owner=None),
        items,
        InvoiceOptions(invoice_date=JAN_10, due_date=date(2026, 2, 1)),
        ADMIN,
        next_number=_numbers(),
    )
    assert inv.due_date == date(2026, 2, 1)
    assert inv.payment_terms == "Net 22 days"
    assert inv.order_id is None
    assert inv.total_amount == Decimal("80.00")


def test_manual_invoice_due_before_issue():
    items = validate_items([{"product_name": "Setup", "quantity": 1, "unit_price": "80"}])
    with pytest.raises(InvariantViolation):
        create_manual_invoice(
            _customer(),
            items,
            InvoiceOptions(invoice_date=JAN_10, due_date=date(2026, 1, 1)),
            X,
            next_number=_numbers(),
        )


def test_manual_invoice_assistant_gate():
    items = validate_items([{"product_name": "Setup", "quantity": 1, "unit_price": "80"}])
    with pytest.raises(PermissionDenied):
        create_manual_invoice(_customer(owner=X.user_id), items, InvoiceOptions(term_days=7), Y, next_number=_numbers())


def test_options_from_payload():
    opts = options_from_payload({"term_days": "30", "tax_rate": "0.16", "invoice_date": "2026-01-10", "notes": " hi "})
    assert opts.term_days == 30
    assert opts.tax_rate == Decimal("0.16")
    assert opts.invoice_date == JAN_10
    assert opts.notes == "hi"
    with pytest.raises(ValidationError) as exc:
        options_from_payload({"term_days": "soon", "invoice_date": "10/01/2026"})
    assert {e.field for e in exc.value.errors} == {"term_days", "invoice_date"}
