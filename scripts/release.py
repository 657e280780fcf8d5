"""
Release step for OpsDesk: `alembic upgrade head`, then seed the admin user.

    python scripts/release.py
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.opsdesk.config import Settings, load_settings

logger = logging.getLogger("opsdesk.release")


def check_release_target(settings: Settings) -> None:
    """Production releases must point at Postgres and carry a real secret."""
    if settings.env.lower() not in ("prod", "production"):
        return
    if settings.database_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against sqlite in production; set DATABASE_URL to Postgres.")
    if settings.secret_key in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set before a production release.")


def alembic_config(database_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def run_release(settings: Settings | None = None) -> None:
    from alembic import command

    from scripts import init_db

    settings = settings or load_settings()
    check_release_target(settings)

    logger.info("Migrating %s database (env=%s)", settings.database_url.split(":", 1)[0], settings.env)
    command.upgrade(alembic_config(settings.database_url), "head")

    init_db.seed_only(database_url=settings.database_url)
    logger.info("Release complete")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_release()


if __name__ == "__main__":
    main()
