"""
Thin CRUD record store over a SQLAlchemy session.

The engines never touch persistence; request handlers and services go through
this to load and save Customer/Order/Invoice rows.
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.opsdesk.errors import FieldError, NotFound, ValidationError
from app.opsdesk.models import Base, User

M = TypeVar("M", bound=Base)


class RecordStore(Generic[M]):
    def __init__(self, s: Session, model: type[M]) -> None:
        self.s = s
        self.model = model

    @property
    def label(self) -> str:
        return self.model.__name__

    def get(self, record_id: int | None, *, for_update: bool = False) -> M | None:
        if record_id is None:
            return None
        if for_update:
            # Row lock on Postgres; SQLite ignores FOR UPDATE.
            stmt = select(self.model).where(self.model.id == record_id).with_for_update()  # type: ignore[attr-defined]
            return self.s.execute(stmt).scalars().one_or_none()
        return self.s.get(self.model, record_id)

    def require(self, record_id: int | None, *, for_update: bool = False) -> M:
        rec = self.get(record_id, for_update=for_update)
        if rec is None:
            raise NotFound(f"{self.label} {record_id} not found.")
        return rec

    def list(self, *, order_by: Any = None, limit: int | None = None, **filters: Any) -> list[M]:
        stmt = select(self.model)
        for attr, value in filters.items():
            column = getattr(self.model, attr)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        stmt = stmt.order_by(order_by if order_by is not None else self.model.id)  # type: ignore[attr-defined]
        if limit:
            stmt = stmt.limit(limit)
        return list(self.s.execute(stmt).scalars().all())

    def exists(self, **filters: Any) -> bool:
        return bool(self.list(limit=1, **filters))

    def create(self, record: M) -> M:
        self.s.add(record)
        self.s.flush()  # assign id
        return record

    def update(self, record_id: int, patch: dict[str, Any]) -> M:
        rec = self.require(record_id)
        for attr, value in patch.items():
            if not hasattr(self.model, attr):
                raise AttributeError(f"{self.label} has no field {attr!r}")
            setattr(rec, attr, value)
        self.s.flush()
        return rec

    def delete(self, record_id: int) -> None:
        rec = self.require(record_id)
        self.s.delete(rec)
        self.s.flush()


def require_assignee(s: Session, user_id: int | None) -> User | None:
    """Load the user a record is being handed to; None means unassign."""
    if user_id is None:
        return None
    user = s.get(User, user_id)
    if user is None or not user.is_active:
        raise ValidationError(FieldError("assigned_to_user_id", f"User {user_id} does not exist or is inactive."))
    return user
