import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.opsdesk.auth import bp as auth_bp, load_current_user
from app.opsdesk.config import load_config
from app.opsdesk.db import init_db, teardown_db_session
from app.opsdesk.errors import OpsError
from app.opsdesk.modules.customers.admin import bp as customers_bp
from app.opsdesk.modules.invoices.admin import bp as invoices_bp
from app.opsdesk.modules.orders.admin import bp as orders_bp
from app.opsdesk.modules.stats.admin import bp as stats_bp
from app.opsdesk.permissions import DEFAULT_POLICY, RolePolicy
from app.opsdesk.routes import bp as routes_bp

# Tables the API cannot run without.
REQUIRED_TABLES = ("users", "audit_events", "customers", "orders", "order_items", "invoices", "invoice_items")


def create_app(role_policy: RolePolicy | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.extensions["role_policy"] = role_policy or DEFAULT_POLICY

    from app.opsdesk.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/logout mint and clear the token themselves
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return {"ok": False, "error": "csrf_failed", "message": "CSRF token missing or invalid."}, 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):

        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(customers_bp, url_prefix="/api")
    app.register_blueprint(orders_bp, url_prefix="/api")
    app.register_blueprint(invoices_bp, url_prefix="/api")
    app.register_blueprint(stats_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Migration health: detect a database that is behind the models.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> bool:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [f"{t} (table)" for t in REQUIRED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing
        if missing and not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        return not missing

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok") or not request.path.startswith("/api"):
            return None
        # re-check so a migration applied after boot is picked up without a restart
        if _run_schema_health_check():
            return None
        return {
            "ok": False,
            "error": "schema_out_of_date",
            "message": "Database schema is out of date.",
            "missing": app.config.get("_schema_health_missing") or [],
        }, 500

    @app.errorhandler(OpsError)
    def _err_ops(e: OpsError):  # type: ignore[no-redef]
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        missing = getattr(g, "missing_permission", None)
        app.logger.warning(
            "%s: %s (missing_permission=%s request_id=%s)",
            e.code,
            e.message,
            missing,
            getattr(g, "request_id", None),
        )
        body = {"ok": False, **e.to_dict()}
        if missing:
            body["missing_permission"] = missing
        return body, e.http_status

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return {"ok": False, "error": (e.name or "error").lower().replace(" ", "_"), "message": e.description}, e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return {"ok": False, "error": "internal_error", "message": "Internal server error.", "request_id": rid}, 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
