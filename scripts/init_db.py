import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.opsdesk.models import User
from app.opsdesk.permissions import Role


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def ensure_user(s: Session, *, email: str, password: str, role: Role, name: str | None = None) -> User:
    """
    Idempotent: an existing user keeps its password and role.
    """
    email = email.strip().lower()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        user = User(email=email, name=name, password_hash=generate_password_hash(password), role=role.value, is_active=True)
        s.add(user)
        s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@opsdesk.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///opsdesk.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with _session_scope(db_url) as s:
        ensure_user(s, email=admin_email, password=admin_password, role=Role.ADMIN, name="Administrator")

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
