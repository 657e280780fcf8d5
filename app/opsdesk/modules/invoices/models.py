from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from app.opsdesk.models import Base
from app.opsdesk.utils import round_money


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        Index("idx_invoices_order_id", "order_id"),
        Index("idx_invoices_status_due", "status", "due_date"),
        Index("idx_invoices_assigned_to", "assigned_to_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)

    # Lookup-only back references; no FKs so the invoice outlives them.
    order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    customer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Snapshot taken at creation; later customer edits do not reach the invoice.
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_terms: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    assigned_to_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "payment_terms": self.payment_terms,
            "notes": self.notes,
            "tax_rate": str(self.tax_rate),
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "total_amount": str(self.total_amount),
            "assigned_to_user_id": self.assigned_to_user_id,
            "items": [i.to_dict() for i in self.items],
        }


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    __table_args__ = (
        Index("idx_invoice_items_invoice_id", "invoice_id", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "total_price": str(self.total_price),
        }


def recompute_invoice_totals(invoice: Invoice) -> Invoice:
    """
    subtotal = sum of item totals, tax_amount = subtotal * tax_rate,
    total_amount = subtotal + tax_amount; each rounded to cents half-up.
    """
    subtotal = Decimal("0.00")
    for pos, item in enumerate(invoice.items):
        item.position = pos
        item.total_price = round_money(Decimal(item.quantity) * Decimal(item.unit_price))
        subtotal += item.total_price
    invoice.subtotal = round_money(subtotal)
    invoice.tax_amount = round_money(invoice.subtotal * Decimal(invoice.tax_rate or 0))
    invoice.total_amount = invoice.subtotal + invoice.tax_amount
    return invoice


@event.listens_for(Session, "before_flush")
def _recompute_draft_totals_before_flush(session, flush_context, instances):  # type: ignore[no-redef]
    """Draft invoices are written with fresh totals; sent/paid/cancelled ones are frozen."""
    seen: set[int] = set()
    for obj in list(session.new) + list(session.dirty):
        inv = obj if isinstance(obj, Invoice) else getattr(obj, "invoice", None) if isinstance(obj, InvoiceItem) else None
        if inv is None or id(inv) in seen or inv in session.deleted or inv.status != "draft":
            continue
        seen.add(id(inv))
        recompute_invoice_totals(inv)
