"""Vertical slices through the orders, invoices and stats endpoints."""
from datetime import date, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.opsdesk import auth as auth_module
from app.opsdesk import create_app
from app.opsdesk.db import session_scope
from app.opsdesk.models import AuditEvent, Base, User
from app.opsdesk.modules.orders.models import Order


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("INVOICE_NUMBER_PREFIX", "acme")
    auth_module._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        for email, role in (("admin@example.com", "admin"), ("x@example.com", "assistant"), ("y@example.com", "assistant")):
            s.add(User(email=email, password_hash=generate_password_hash("pw"), role=role, is_active=True))

    return app


def _login(app, email):
    client = app.test_client()
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    return client, {"X-CSRF-Token": r.json["csrf_token"]}


ITEMS = [
    {"product_name": "Widget", "quantity": 2, "unit_price": "100.00"},
    {"product_name": "Gadget", "quantity": 1, "unit_price": "50.00"},
]


def _customer_and_order(client, headers, **order_extra):
    cid = client.post("/api/customers", json={"name": "Acme Ltd", "email": "ops@acme.test"}, headers=headers).json["customer"]["id"]
    r = client.post("/api/orders", json={"customer_id": cid, "items": ITEMS, **order_extra}, headers=headers)
    assert r.status_code == 201, r.json
    return cid, r.json["order"]


def test_order_lifecycle(app):
    x, hx = _login(app, "x@example.com")
    _, order = _customer_and_order(x, hx, order_total="1.00")
    oid = order["id"]
    assert order["order_total"] == "250.00"
    assert order["status"] == "pending"
    assert order["allowed_transitions"] == ["confirmed", "in_progress", "completed", "cancelled"]

    assert x.post(f"/api/orders/{oid}/status", json={"status": "confirmed"}, headers=hx).status_code == 200
    r = x.post(f"/api/orders/{oid}/status", json={"status": "completed"}, headers=hx)
    assert r.status_code == 200
    assert r.json["order"]["status"] == "completed"

    r = x.post(f"/api/orders/{oid}/items", json={"op": "add", "item": {"product_name": "Late", "quantity": 1, "unit_price": 5}}, headers=hx)
    assert r.status_code == 409
    assert r.json["error"] == "invalid_state"
    assert x.get(f"/api/orders/{oid}").json["order"]["order_total"] == "250.00"

    r = x.post(f"/api/orders/{oid}/status", json={"status": "pending"}, headers=hx)
    assert r.status_code == 403


def test_item_mutations_and_stored_total(app):
    x, hx = _login(app, "x@example.com")
    _, order = _customer_and_order(x, hx)
    oid = order["id"]

    r = x.post(f"/api/orders/{oid}/items", json={"op": "update", "index": 1, "item": {"quantity": 3}}, headers=hx)
    assert r.status_code == 200
    assert r.json["order"]["order_total"] == "350.00"

    assert x.post(f"/api/orders/{oid}/items", json={"op": "remove", "index": 0}, headers=hx).status_code == 200
    r = x.post(f"/api/orders/{oid}/items", json={"op": "remove", "index": 0}, headers=hx)
    assert r.status_code == 409
    assert r.json["error"] == "invariant_violation"

    r = x.post(f"/api/orders/{oid}/items", json={"op": "update", "index": 5, "item": {"quantity": 1}}, headers=hx)
    assert r.status_code == 404

    with session_scope(app) as s:
        stored = s.get(Order, oid)
        assert str(stored.order_total) == "150.00"
        assert [i.product_name for i in stored.items] == ["Gadget"]


def test_order_validation(app):
    x, hx = _login(app, "x@example.com")
    cid = x.post("/api/customers", json={"name": "Acme"}, headers=hx).json["customer"]["id"]
    r = x.post("/api/orders", json={"customer_id": cid, "items": []}, headers=hx)
    assert r.status_code == 409
    r = x.post("/api/orders", json={"customer_id": cid, "items": [{"product_name": "", "quantity": 0}]}, headers=hx)
    assert r.status_code == 422
    assert {e["field"] for e in r.json["errors"]} == {"items[0].product_name", "items[0].quantity", "items[0].unit_price"}
    r = x.post("/api/orders", json={"customer_id": 999, "items": ITEMS}, headers=hx)
    assert r.status_code == 404


def test_assistant_sees_only_own_orders(app):
    x, hx = _login(app, "x@example.com")
    y, hy = _login(app, "y@example.com")
    admin, ha = _login(app, "admin@example.com")
    _, order = _customer_and_order(x, hx)

    assert y.get(f"/api/orders/{order['id']}").status_code == 403
    assert y.get("/api/orders").json["orders"] == []
    assert [o["id"] for o in admin.get("/api/orders").json["orders"]] == [order["id"]]
    assert y.post(f"/api/orders/{order['id']}/payment", json={"payment_status": "paid"}, headers=hy).status_code == 403
    assert x.delete(f"/api/orders/{order['id']}", headers=hx).status_code == 403
    assert admin.delete(f"/api/orders/{order['id']}", headers=ha).status_code == 200
    assert admin.get(f"/api/orders/{order['id']}").status_code == 404


def test_payment_endpoint(app):
    x, hx = _login(app, "x@example.com")
    _, order = _customer_and_order(x, hx)
    oid = order["id"]
    r = x.post(f"/api/orders/{oid}/payment", json={"payment_status": "paid"}, headers=hx)
    assert r.json["order"]["payment_status"] == "paid"
    assert r.json["order"]["status"] == "pending"
    r = x.post(f"/api/orders/{oid}/payment", json={"payment_status": "partial"}, headers=hx)
    assert r.status_code == 403


def test_invoice_from_order(app):
    x, hx = _login(app, "x@example.com")
    _, order = _customer_and_order(x, hx)
    oid = order["id"]

    r = x.post(f"/api/invoices/from-order/{oid}", json={"tax_rate": "0.16"}, headers=hx)
    assert r.status_code == 422
    assert r.json["errors"][0]["field"] == "term_days"

    r = x.post(f"/api/invoices/from-order/{oid}", json={"tax_rate": "0.16", "term_days": 30}, headers=hx)
    assert r.status_code == 201
    inv = r.json["invoice"]
    assert inv["subtotal"] == "250.00"
    assert inv["tax_amount"] == "40.00"
    assert inv["total_amount"] == "290.00"
    assert inv["status"] == "draft"
    assert inv["display_status"] == "draft"
    assert inv["is_overdue"] is False
    assert inv["invoice_number"].startswith(f"ACME-{date.today():%Y%m%d}-")
    assert inv["due_date"] == (date.today() + timedelta(days=30)).isoformat()

    r = x.post(f"/api/invoices/from-order/{oid}", json={"term_days": 30}, headers=hx)
    assert r.status_code == 409
    assert r.json["error"] == "invariant_violation"

    iid = inv["id"]
    assert x.post(f"/api/invoices/{iid}/status", json={"status": "overdue"}, headers=hx).status_code == 422
    assert x.post(f"/api/invoices/{iid}/status", json={"status": "sent"}, headers=hx).status_code == 200
    r = x.put(f"/api/invoices/{iid}/items", json={"items": ITEMS}, headers=hx)
    assert r.status_code == 409
    assert r.json["error"] == "invalid_state"
    r = x.post(f"/api/invoices/{iid}/status", json={"status": "paid"}, headers=hx)
    assert r.json["invoice"]["status"] == "paid"

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_type == "Invoice").all()]
    assert actions == ["invoice.create_from_order", "invoice.status_change", "invoice.status_change"]


def test_overdue_invoice_is_reported(app):
    admin, ha = _login(app, "admin@example.com")
    cid = admin.post("/api/customers", json={"name": "Late Payer"}, headers=ha).json["customer"]["id"]
    past = date.today() - timedelta(days=40)
    r = admin.post(
        "/api/invoices",
        json={"customer_id": cid, "items": ITEMS, "invoice_date": past.isoformat(), "term_days": 30},
        headers=ha,
    )
    assert r.status_code == 201
    inv = r.json["invoice"]
    assert inv["is_overdue"] is True
    assert inv["display_status"] == "overdue"
    assert inv["status"] == "draft"
    assert inv["days_until_due"] == -10

    stats = admin.get("/api/stats/invoices").json["stats"]
    assert stats["overdue"] == 1
    assert stats["outstanding"] == "250.00"


def test_cancelled_order_cannot_be_invoiced(app):
    admin, ha = _login(app, "admin@example.com")
    _, order = _customer_and_order(admin, ha)
    admin.post(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=ha)
    r = admin.post(f"/api/invoices/from-order/{order['id']}", json={"term_days": 7}, headers=ha)
    assert r.status_code == 409
    assert r.json["error"] == "invalid_state"


def test_stats_hide_financials_from_assistant(app):
    x, hx = _login(app, "x@example.com")
    admin, _ = _login(app, "admin@example.com")
    _, order = _customer_and_order(x, hx)
    x.post(f"/api/orders/{order['id']}/status", json={"status": "completed"}, headers=hx)

    mine = x.get("/api/stats/orders").json["stats"]
    assert mine["total"] == 1
    assert mine["success_rate"] == 100
    assert "total_value" not in mine

    full = admin.get("/api/stats/orders").json["stats"]
    assert full["total_value"] == "250.00"
    assert full["average_order_value"] == "250.00"

    customers = x.get("/api/stats/customers").json["stats"]
    assert customers == {"kind": "customers", "total": 1, "active": 1, "inactive": 0, "assigned": 1, "unassigned": 0}


def test_assign_order_rejects_unknown_or_inactive_user(app):
    x, hx = _login(app, "x@example.com")
    admin, ha = _login(app, "admin@example.com")
    _, order = _customer_and_order(x, hx)
    oid = order["id"]
    with session_scope(app) as s:
        y = s.query(User).filter(User.email == "y@example.com").one()
        y.is_active = False
        y_id = y.id

    for user_id in (999, y_id):
        r = admin.post(f"/api/orders/{oid}/assign", json={"user_id": user_id}, headers=ha)
        assert r.status_code == 422
        assert [e["field"] for e in r.json["errors"]] == ["assigned_to_user_id"]
    assert admin.get(f"/api/orders/{oid}").json["order"]["assigned_to_user_id"] == order["assigned_to_user_id"]

    assert x.post(f"/api/orders/{oid}/assign", json={"user_id": 999}, headers=hx).status_code == 403

    r = admin.post(f"/api/orders/{oid}/assign", json={"user_id": None}, headers=ha)
    assert r.status_code == 200
    assert r.json["order"]["assigned_to_user_id"] is None
