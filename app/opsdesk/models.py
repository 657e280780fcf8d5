from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.opsdesk.permissions import Actor, Role


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    # Fixed at account creation; nothing in the core changes it.
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=Role.ASSISTANT.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def as_actor(self) -> Actor:
        return Actor(user_id=self.id, role=Role(self.role))


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module tables refer to it by entity_type/entity_id.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "order.status_change"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Order"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.opsdesk.modules.customers.models import Customer  # noqa: E402,F401
from app.opsdesk.modules.orders.models import Order, OrderItem  # noqa: E402,F401
from app.opsdesk.modules.invoices.models import Invoice, InvoiceItem  # noqa: E402,F401
