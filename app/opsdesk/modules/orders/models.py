from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from app.opsdesk.models import Base


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_customer_id", "customer_id"),
        Index("idx_orders_assigned_to", "assigned_to_user_id"),
        Index("idx_orders_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Weak reference: no FK, the customer may be deleted later.
    customer_id: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    # Always derived from items; see recompute_order_total.
    order_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    assigned_to_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "order_total": str(self.order_total) if self.order_total is not None else None,
            "notes": self.notes,
            "assigned_to_user_id": self.assigned_to_user_id,
            "created_by_user_id": self.created_by_user_id,
            "items": [i.to_dict() for i in self.items],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        Index("idx_order_items_order_id", "order_id", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    order: Mapped[Order] = relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
        }


def recompute_order_total(order: Order) -> Decimal:
    """order_total = sum(quantity * unit_price); line totals are rewritten too."""
    total = Decimal("0.00")
    for pos, item in enumerate(order.items):
        item.position = pos
        item.line_total = Decimal(item.quantity) * Decimal(item.unit_price)
        total += item.line_total
    order.order_total = total.quantize(Decimal("0.01"))
    return order.order_total


@event.listens_for(Session, "before_flush")
def _recompute_totals_before_flush(session, flush_context, instances):  # type: ignore[no-redef]
    """Whatever was assigned to order_total, the stored value is the item sum."""
    touched: set[int] = set()
    for obj in list(session.new) + list(session.dirty):
        order = obj if isinstance(obj, Order) else getattr(obj, "order", None) if isinstance(obj, OrderItem) else None
        if order is None or id(order) in touched or order in session.deleted:
            continue
        touched.add(id(order))
        recompute_order_total(order)
