"""
Container entrypoint: run the release step, then exec gunicorn serving `app.wsgi:app`.

Bind port, worker count and timeout come from PORT, WEB_CONCURRENCY and WEB_TIMEOUT.
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.opsdesk.config import Settings, load_settings

WSGI_APP = "app.wsgi:app"

logger = logging.getLogger("opsdesk.start")


def gunicorn_argv(settings: Settings) -> list[str]:
    return [
        "gunicorn",
        WSGI_APP,
        "--bind", f"0.0.0.0:{settings.port}",
        "--workers", str(settings.web_workers),
        "--timeout", str(settings.web_timeout),
        # engine is disposed in each worker after fork (see create_app)
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    from scripts.release import run_release

    settings = load_settings()
    try:
        run_release(settings)
    except Exception:
        logger.exception("Release failed; not starting the server")
        sys.exit(1)

    argv = gunicorn_argv(settings)
    logger.info("Starting %s", " ".join(argv))
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
