import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    invoice_number_prefix: str
    invoice_number_max_attempts: int

    # gunicorn, used by scripts/start.py
    port: int = 8080
    web_workers: int = 2
    web_timeout: int = 60


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _getenv_port() -> int:
    port = _getenv_int("PORT", 8080)
    if not 1 <= port <= 65535:
        raise RuntimeError(f"PORT must be between 1 and 65535 (got {port}).")
    return port


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///opsdesk.db"),
        invoice_number_prefix=_getenv("INVOICE_NUMBER_PREFIX", "INV").upper(),
        invoice_number_max_attempts=max(1, _getenv_int("INVOICE_NUMBER_MAX_ATTEMPTS", 5)),
        port=_getenv_port(),
        web_workers=max(1, _getenv_int("WEB_CONCURRENCY", 2)),
        web_timeout=max(1, _getenv_int("WEB_TIMEOUT", 60)),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "INVOICE_NUMBER_PREFIX": s.invoice_number_prefix,
        "INVOICE_NUMBER_MAX_ATTEMPTS": s.invoice_number_max_attempts,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON bodies only; 1MB is plenty
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
