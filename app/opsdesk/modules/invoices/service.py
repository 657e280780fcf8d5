"""
Invoice service layer.

Invoices are derived from an order or entered by hand. Either way the customer's
display fields and the line items are copied at creation time, so later edits to
the customer or the order never change an issued invoice.

Status: draft -> sent -> paid, cancelled from draft or sent. "Overdue" is never
stored; it is computed from due_date by `is_overdue`.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.opsdesk import assignment
from app.opsdesk.assignment import Action
from app.opsdesk.audit import record_event
from app.opsdesk.constants import (
    DEFAULT_PAYMENT_TERMS,
    INVOICE_CLOSED_STATUSES,
    INVOICE_DISPLAY_OVERDUE,
    INVOICE_STATUSES,
    ORDER_STATUS_CANCELLED,
)
from app.opsdesk.errors import (
    FieldError,
    InvalidState,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    ValidationError,
)
from app.opsdesk.models import User
from app.opsdesk.modules.customers.models import Customer
from app.opsdesk.modules.invoices.models import Invoice, InvoiceItem, recompute_invoice_totals
from app.opsdesk.modules.orders.models import Order
from app.opsdesk.modules.orders.service import ItemValues, validate_items
from app.opsdesk.permissions import DEFAULT_POLICY, Actor, Permission, Role, RolePolicy
from app.opsdesk.store import RecordStore
from app.opsdesk.utils import parse_date, parse_int, to_decimal

logger = logging.getLogger(__name__)

INVOICE_TRANSITIONS = {
    "draft": {"sent", "cancelled"},
    "sent": {"paid", "cancelled"},
    "paid": set(),
    "cancelled": set(),
}

DEFAULT_NUMBER_PREFIX = "INV"
DEFAULT_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class InvoiceOptions:
    """
    term_days is required for invoices derived from an order; there is no house
    default. Manual invoices may give an explicit due_date instead.
    """

    term_days: int | None = None
    tax_rate: Decimal = Decimal("0")
    invoice_date: date | None = None
    due_date: date | None = None
    payment_terms: str | None = None
    notes: str | None = None


def validate_tax_rate(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    rate = to_decimal(value)
    if rate is None or rate < 0 or rate > 1:
        raise ValidationError(FieldError("tax_rate", "Tax rate must be a number between 0 and 1."))
    if rate.as_tuple().exponent < -4:  # type: ignore[operator]
        raise ValidationError(FieldError("tax_rate", "Tax rate may have at most 4 decimal places."))
    return rate


def options_from_payload(payload: dict[str, Any]) -> InvoiceOptions:
    errs: list[FieldError] = []
    term_days = None
    if payload.get("term_days") not in (None, ""):
        term_days = parse_int(payload.get("term_days"))
        if term_days is None:
            errs.append(FieldError("term_days", "term_days must be a whole number of days."))
    invoice_date = parse_date(payload.get("invoice_date"))
    if payload.get("invoice_date") and invoice_date is None:
        errs.append(FieldError("invoice_date", "invoice_date must be YYYY-MM-DD."))
    due_date = parse_date(payload.get("due_date"))
    if payload.get("due_date") and due_date is None:
        errs.append(FieldError("due_date", "due_date must be YYYY-MM-DD."))
    try:
        tax_rate = validate_tax_rate(payload.get("tax_rate"))
    except ValidationError as e:
        errs.extend(e.errors)
        tax_rate = Decimal("0")
    if errs:
        raise ValidationError(errs)
    return InvoiceOptions(
        term_days=term_days,
        tax_rate=tax_rate,
        invoice_date=invoice_date,
        due_date=due_date,
        payment_terms=(str(payload.get("payment_terms") or "").strip() or None),
        notes=(str(payload.get("notes") or "").strip() or None),
    )


# ---------------------------------------------------------------------------
# Invoice numbers
# ---------------------------------------------------------------------------


def generate_invoice_number(
    invoice_date: date,
    *,
    exists: Callable[[str], bool],
    prefix: str = DEFAULT_NUMBER_PREFIX,
    max_attempts: int = DEFAULT_NUMBER_ATTEMPTS,
    clock: Callable[[], int] = time.time_ns,
) -> str:
    """
    <PREFIX>-<YYYYMMDD>-<6 digits from the millisecond clock>.

    A taken number is never reused: each retry reads the clock again and adds
    the attempt count, so even a frozen clock yields new candidates.
    """
    for attempt in range(max_attempts):
        millis = clock() // 1_000_000
        candidate = f"{prefix}-{invoice_date:%Y%m%d}-{(millis + attempt) % 1_000_000:06d}"
        if not exists(candidate):
            return candidate
        logger.warning("Invoice number collision on %s (attempt %s/%s)", candidate, attempt + 1, max_attempts)
    raise InvariantViolation(f"Could not allocate a unique invoice number after {max_attempts} attempts.")


# ---------------------------------------------------------------------------
# Derivation engine
# ---------------------------------------------------------------------------


def _due_date(invoice_date: date, options: InvoiceOptions, *, allow_explicit: bool) -> date:
    if allow_explicit and options.due_date is not None:
        due = options.due_date
    elif options.term_days is None:
        # Fail closed: no guessed default term.
        raise ValidationError(FieldError("term_days", "Payment term (term_days) is required."))
    elif options.term_days < 0:
        raise InvariantViolation("Due date cannot be before the invoice date.")
    else:
        due = invoice_date + timedelta(days=options.term_days)
    if due < invoice_date:
        raise InvariantViolation("Due date cannot be before the invoice date.")
    return due


def _payment_terms(invoice_date: date, due: date, options: InvoiceOptions) -> str:
    if options.payment_terms:
        return options.payment_terms
    return DEFAULT_PAYMENT_TERMS.format(days=(due - invoice_date).days)


def _new_invoice(
    *,
    customer: Customer,
    items: list[ItemValues],
    options: InvoiceOptions,
    actor: Actor,
    next_number: Callable[[date], str],
    allow_explicit_due: bool,
    order_id: int | None,
    assigned_to_user_id: int | None,
) -> Invoice:
    if not items:
        raise InvariantViolation("An invoice needs at least one item.")
    tax_rate = validate_tax_rate(options.tax_rate)
    invoice_date = options.invoice_date or date.today()
    due = _due_date(invoice_date, options, allow_explicit=allow_explicit_due)

    now = datetime.utcnow()
    inv = Invoice(
        invoice_number=next_number(invoice_date),
        order_id=order_id,
        customer_id=customer.id,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        status="draft",
        invoice_date=invoice_date,
        due_date=due,
        payment_terms=_payment_terms(invoice_date, due, options),
        notes=options.notes,
        tax_rate=tax_rate,
        assigned_to_user_id=assigned_to_user_id,
        created_by_user_id=actor.user_id,
        created_at=now,
        updated_at=now,
    )
    for v in items:
        inv.items.append(InvoiceItem(product_name=v.product_name, quantity=v.quantity, unit_price=v.unit_price, total_price=v.line_total))
    recompute_invoice_totals(inv)
    return inv


def derive_invoice(
    order: Order,
    customer: Customer | None,
    options: InvoiceOptions,
    actor: Actor,
    *,
    next_number: Callable[[date], str],
) -> Invoice:
    """Build a draft invoice from `order`. Nothing is persisted here."""
    assignment.require(actor, order, Action.EDIT)
    if customer is None or customer.id != order.customer_id:
        raise NotFound(f"Customer {order.customer_id} of order {order.id} not found.")
    if order.status == ORDER_STATUS_CANCELLED:
        raise InvalidState("A cancelled order cannot be invoiced.")
    items = [ItemValues(i.product_name, i.quantity, Decimal(i.unit_price)) for i in order.items]
    return _new_invoice(
        customer=customer,
        items=items,
        options=options,
        actor=actor,
        next_number=next_number,
        allow_explicit_due=False,
        order_id=order.id,
        assigned_to_user_id=order.assigned_to_user_id,
    )


def create_manual_invoice(
    customer: Customer,
    items: list[ItemValues],
    options: InvoiceOptions,
    actor: Actor,
    *,
    next_number: Callable[[date], str],
) -> Invoice:
    assignment.require(actor, customer, Action.EDIT)
    return _new_invoice(
        customer=customer,
        items=items,
        options=options,
        actor=actor,
        next_number=next_number,
        allow_explicit_due=True,
        order_id=None,
        assigned_to_user_id=actor.user_id if actor.role == Role.ASSISTANT else customer.assigned_to_user_id,
    )


def evaluate_invoice_transition(invoice: Invoice, new_status: str, actor: Actor) -> Invoice:
    assignment.require(actor, invoice, Action.EDIT)
    if new_status == INVOICE_DISPLAY_OVERDUE:
        raise ValidationError(FieldError("status", "Overdue is derived from the due date and cannot be set."))
    if new_status not in INVOICE_STATUSES:
        raise ValidationError(FieldError("status", f"Invalid status: {new_status}"))
    current = invoice.status
    if new_status not in INVOICE_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot transition invoice from '{current}' to '{new_status}'")

    now = datetime.utcnow()
    invoice.status = new_status
    if new_status == "sent":
        invoice.sent_at = now
    elif new_status == "paid":
        invoice.paid_at = now
    invoice.updated_at = now
    return invoice


def replace_invoice_items(
    invoice: Invoice,
    items: list[ItemValues],
    actor: Actor,
    *,
    tax_rate: Any = None,
) -> Invoice:
    """Only drafts are editable; totals are frozen from `sent` on."""
    assignment.require(actor, invoice, Action.EDIT)
    if invoice.status != "draft":
        raise InvalidState(f"Items of a {invoice.status} invoice cannot be changed.")
    if not items:
        raise InvariantViolation("An invoice needs at least one item.")
    # blank keeps the current rate
    new_rate = invoice.tax_rate if tax_rate is None or tax_rate == "" else validate_tax_rate(tax_rate)

    invoice.items.clear()
    for v in items:
        invoice.items.append(InvoiceItem(product_name=v.product_name, quantity=v.quantity, unit_price=v.unit_price, total_price=v.line_total))
    invoice.tax_rate = new_rate
    recompute_invoice_totals(invoice)
    invoice.updated_at = datetime.utcnow()
    return invoice


def is_overdue(invoice: Invoice, today: date | None = None) -> bool:
    if invoice.status in INVOICE_CLOSED_STATUSES:
        return False
    return (today or date.today()) > invoice.due_date


def days_until_due(invoice: Invoice, today: date | None = None) -> int:
    """Negative once past due."""
    return (invoice.due_date - (today or date.today())).days


def display_status(invoice: Invoice, today: date | None = None) -> str:
    return INVOICE_DISPLAY_OVERDUE if is_overdue(invoice, today) else invoice.status


# ---------------------------------------------------------------------------
# Persistence + audit
# ---------------------------------------------------------------------------


def invoices(s: Session) -> RecordStore[Invoice]:
    return RecordStore(s, Invoice)


def _number_allocator(s: Session, *, prefix: str, max_attempts: int) -> Callable[[date], str]:
    store = invoices(s)

    def _next(invoice_date: date) -> str:
        return generate_invoice_number(
            invoice_date,
            exists=lambda n: store.exists(invoice_number=n),
            prefix=prefix,
            max_attempts=max_attempts,
        )

    return _next


def serialize_invoice(inv: Invoice, today: date | None = None) -> dict[str, Any]:
    body = inv.to_dict()
    body["is_overdue"] = is_overdue(inv, today)
    body["display_status"] = display_status(inv, today)
    body["days_until_due"] = days_until_due(inv, today)
    return body


def get_invoice(s: Session, invoice_id: int, *, user: User) -> Invoice:
    inv = invoices(s).require(invoice_id)
    assignment.require(user.as_actor(), inv, Action.VIEW)
    return inv


def list_invoices(
    s: Session,
    *,
    user: User,
    status: str | None = None,
    order_id: int | None = None,
    policy: RolePolicy = DEFAULT_POLICY,
) -> list[Invoice]:
    filters: dict[str, Any] = {}
    if status:
        filters["status"] = status
    if order_id is not None:
        filters["order_id"] = order_id
    if not policy.has_permission(user.role, Permission.VIEW_ALL_ORDERS):
        filters["assigned_to_user_id"] = user.id
    return invoices(s).list(order_by=Invoice.invoice_date.desc(), **filters)


def create_invoice_from_order(
    s: Session,
    order: Order,
    options: InvoiceOptions,
    *,
    user: User,
    prefix: str = DEFAULT_NUMBER_PREFIX,
    max_attempts: int = DEFAULT_NUMBER_ATTEMPTS,
) -> Invoice:
    open_invoices = [i for i in invoices(s).list(order_id=order.id) if i.status != "cancelled"]
    if open_invoices:
        raise InvariantViolation(f"Order {order.id} already has invoice {open_invoices[0].invoice_number}.")
    customer = RecordStore(s, Customer).get(order.customer_id)
    inv = derive_invoice(
        order,
        customer,
        options,
        user.as_actor(),
        next_number=_number_allocator(s, prefix=prefix, max_attempts=max_attempts),
    )
    invoices(s).create(inv)
    record_event(
        s,
        actor=user,
        action="invoice.create_from_order",
        entity_type="Invoice",
        entity_id=str(inv.id),
        metadata={
            "invoice_number": inv.invoice_number,
            "order_id": order.id,
            "total_amount": str(inv.total_amount),
            "due_date": inv.due_date.isoformat(),
        },
    )
    logger.info("Invoice %s derived from order %s by user_id=%s", inv.invoice_number, order.id, user.id)
    return inv


def create_invoice(
    s: Session,
    payload: dict[str, Any],
    *,
    user: User,
    prefix: str = DEFAULT_NUMBER_PREFIX,
    max_attempts: int = DEFAULT_NUMBER_ATTEMPTS,
) -> Invoice:
    customer_id = parse_int(payload.get("customer_id"))
    if customer_id is None:
        raise ValidationError(FieldError("customer_id", "Customer is required."))
    customer = RecordStore(s, Customer).require(customer_id)
    if customer.is_deleted:
        raise NotFound(f"Customer {customer_id} not found.")
    assignment.require(user.as_actor(), customer, Action.EDIT)
    options = options_from_payload(payload)
    items = validate_items(payload.get("items") or [])
    inv = create_manual_invoice(
        customer,
        items,
        options,
        user.as_actor(),
        next_number=_number_allocator(s, prefix=prefix, max_attempts=max_attempts),
    )
    invoices(s).create(inv)
    record_event(
        s,
        actor=user,
        action="invoice.create",
        entity_type="Invoice",
        entity_id=str(inv.id),
        metadata={"invoice_number": inv.invoice_number, "customer_id": customer.id, "total_amount": str(inv.total_amount)},
    )
    return inv


def change_invoice_status(s: Session, inv: Invoice, new_status: str, *, user: User, reason: str | None = None) -> Invoice:
    old = inv.status
    evaluate_invoice_transition(inv, new_status, user.as_actor())
    record_event(
        s,
        actor=user,
        action="invoice.status_change",
        entity_type="Invoice",
        entity_id=str(inv.id),
        reason=reason,
        metadata={"invoice_number": inv.invoice_number, "from": old, "to": new_status},
    )
    logger.info("Invoice %s status %s -> %s by user_id=%s", inv.invoice_number, old, new_status, user.id)
    return inv


def update_invoice_items(s: Session, inv: Invoice, payload: dict[str, Any], *, user: User) -> Invoice:
    before = str(inv.total_amount)
    items = validate_items(payload.get("items") or [])
    replace_invoice_items(inv, items, user.as_actor(), tax_rate=payload.get("tax_rate"))
    record_event(
        s,
        actor=user,
        action="invoice.items_update",
        entity_type="Invoice",
        entity_id=str(inv.id),
        metadata={"invoice_number": inv.invoice_number, "items": len(inv.items), "total_amount": {"from": before, "to": str(inv.total_amount)}},
    )
    return inv


def delete_invoice(s: Session, inv: Invoice, *, user: User, reason: str | None = None) -> None:
    assignment.require(user.as_actor(), inv, Action.DELETE)
    record_event(
        s,
        actor=user,
        action="invoice.delete",
        entity_type="Invoice",
        entity_id=str(inv.id),
        reason=reason,
        metadata={"invoice_number": inv.invoice_number, "status": inv.status},
    )
    s.delete(inv)
