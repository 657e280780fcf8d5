import pytest
from werkzeug.security import generate_password_hash

from app.opsdesk import auth as auth_module
from app.opsdesk import create_app
from app.opsdesk.db import session_scope
from app.opsdesk.models import AuditEvent, Base, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    auth_module._login_attempts.clear()

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="admin@example.com", password_hash=generate_password_hash("pw"), role="admin", is_active=True))
        s.add(User(email="asst@example.com", password_hash=generate_password_hash("pw"), role="assistant", is_active=True))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com", password="pw"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    return r


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").status_code == 200


def test_anonymous_is_rejected(client):
    r = client.get("/api/customers")
    assert r.status_code == 401
    assert r.json["error"] == "not_authenticated"
    assert client.get("/auth/me").status_code == 401


def test_login_and_me(client):
    r = _login(client)
    assert r.status_code == 200
    assert r.json["user"]["role"] == "admin"
    assert r.json["csrf_token"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert "view_financial_data" in r.json["user"]["permissions"]


def test_assistant_me_lists_assistant_permissions(client):
    _login(client, "asst@example.com")
    perms = client.get("/auth/me").json["user"]["permissions"]
    assert "edit_customers" in perms
    assert "view_financial_data" not in perms


def test_bad_password_is_audited(app, client):
    r = _login(client, password="nope")
    assert r.status_code == 401
    assert r.json["error"] == "invalid_credentials"
    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login_failed" in actions


def test_login_rate_limited(client):
    for _ in range(5):
        assert _login(client, password="nope").status_code == 401
    assert _login(client).status_code == 429
    auth_module._login_attempts.clear()


def test_mutation_requires_csrf(client):
    token = _login(client).json["csrf_token"]
    r = client.post("/api/customers", json={"name": "No Token"})
    assert r.status_code == 400
    assert r.json["error"] == "csrf_failed"

    r = client.post("/api/customers", json={"name": "With Token"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 201


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nothing-here")
    assert r.status_code == 404
    assert r.json["ok"] is False


def test_logout(client):
    _login(client)
    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_production_guardrails(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgresql://db.example/ops")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()
    monkeypatch.setenv("SECRET_KEY", "a-real-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()
