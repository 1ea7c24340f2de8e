from datetime import datetime, timedelta

import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import Base
from app.facturador.seed import seed_defaults


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.delenv("SESSION_SECRET", raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ES_RESTAURANTE", "true")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        seed_defaults(s, admin_username="admin", admin_password="admin-pass-1")
    auth._login_attempts.clear()
    return app


@pytest.fixture()
def client(app):
    client = app.test_client()
    r = client.post("/api/login", json={"role": "admin", "username": "admin", "password": "admin-pass-1"})
    assert r.status_code == 200
    return client


@pytest.fixture()
def stocked(client):
    client.post("/api/unidades", json={"code": "PZA", "name": "Pieza"})
    client.post("/api/unidades", json={"code": "KG", "name": "Kilogramo"})
    for code, unit in (("CAFE", "PZA"), ("AZUCAR", "KG")):
        client.post(
            "/api/articulos",
            json={"article_code": code, "name": code.title(), "storage_unit": unit, "retail_unit": unit, "default_warehouse_code": "PRINCIPAL"},
        )
    r = client.post(
        "/api/inventario/compras",
        json={
            "warehouse_code": "PRINCIPAL",
            "supplier_name": "Abarrotes Sur",
            "lines": [{"article_code": "CAFE", "quantity": 3, "cost_per_unit": 10}, {"article_code": "AZUCAR", "quantity": 20, "cost_per_unit": 2}],
        },
    )
    assert r.status_code == 201


def test_notification_channels(client):
    r = client.post("/api/preferencias/notificaciones", json={"name": "Compras", "channel_type": "EMAIL", "target": "compras@example.com"})
    assert r.status_code == 201
    channel = r.json["channel"]
    assert channel["channel_type"] == "email"

    r = client.post("/api/preferencias/notificaciones", json={"name": "Compras", "channel_type": "sms", "target": "+5055555"})
    assert r.status_code == 409

    r = client.post("/api/preferencias/notificaciones", json={"name": "Fax", "channel_type": "fax", "target": "123"})
    assert r.status_code == 400

    r = client.patch(f"/api/preferencias/notificaciones/{channel['id']}", json={"is_active": False})
    assert r.status_code == 200
    assert r.json["channel"]["is_active"] is False


def test_exchange_rate_upsert_and_current(client):
    r = client.post("/api/preferencias/tipo-cambio", json={"rate_date": "2024-06-01", "rate_value": 17.1})
    assert r.status_code == 200
    rate = r.json["rate"]
    assert rate["base_currency_code"] == "MXN"
    assert rate["quote_currency_code"] == "USD"

    r = client.post("/api/preferencias/tipo-cambio", json={"rate_date": "2024-06-01", "rate_value": 17.25})
    assert r.json["rate"]["id"] == rate["id"]
    assert r.json["rate"]["rate_value"] == 17.25

    client.post("/api/preferencias/tipo-cambio", json={"rate_date": "2024-06-10", "rate_value": 18.0})
    r = client.get("/api/preferencias/tipo-cambio/actual?date=2024-06-05")
    assert r.status_code == 200
    assert r.json["rate"]["rate_value"] == 17.25

    r = client.post("/api/preferencias/tipo-cambio", json={"rate_date": "2024-06-01", "rate_value": 0})
    assert r.status_code == 400


def test_inventory_alert_evaluation(client, stocked):
    channel = client.post(
        "/api/preferencias/notificaciones", json={"name": "Bodega", "channel_type": "whatsapp", "target": "+5215550000"}
    ).json["channel"]
    r = client.post("/api/preferencias/alertas", json={"name": "Stock bajo", "threshold": 5, "notify_channel_id": channel["id"]})
    assert r.status_code == 201
    assert r.json["alert"]["notify_channel"] == "Bodega"
    client.post("/api/preferencias/alertas", json={"name": "Kilos bajos", "threshold": 50, "unit_code": "kg"})

    r = client.get("/api/preferencias/alertas/evaluacion")
    assert r.status_code == 200
    by_name = {row["alert"]["name"]: [i["article_code"] for i in row["items"]] for row in r.json["items"]}
    assert by_name == {"Kilos bajos": ["AZUCAR"], "Stock bajo": ["CAFE"]}

    r = client.post("/api/preferencias/alertas", json={"name": "Mala", "threshold": 1, "notify_channel_id": 999})
    assert r.status_code == 404


def test_reports(client, stocked):
    r = client.get("/api/reportes/compras")
    assert r.status_code == 200
    report = r.json["report"]
    assert report["total_amount"] == 70.0
    assert report["items"][0]["supplier_name"] == "Abarrotes Sur"
    assert report["by_status"] == {"PAGADA": 70.0}

    r = client.get("/api/reportes/inventario?warehouse=PRINCIPAL")
    assert r.status_code == 200
    assert {i["article_code"]: i["net"] for i in r.json["report"]["items"]} == {"AZUCAR": 20.0, "CAFE": 3.0}

    r = client.get("/api/reportes/ventas")
    assert r.status_code == 200
    sales = r.json["report"]
    assert sales["invoice_count"] == 0
    today = datetime.utcnow().date()
    assert sales["to"] == today.isoformat()
    assert sales["from"] == (today - timedelta(days=30)).isoformat()

    r = client.get("/api/reportes/ventas?from=2024-02-01&to=2024-01-01")
    assert r.status_code == 400


def test_reports_require_permission(app, client):
    client.post("/api/roles", json={"code": "MESA", "name": "Solo mesa", "permissions": ["invoice.issue"]})
    client.post("/api/admin-users", json={"username": "hostess", "password": "hostess-pass-1", "roles": ["MESA"]})

    other = app.test_client()
    other.post("/api/login", json={"role": "admin", "username": "hostess", "password": "hostess-pass-1"})
    r = other.get("/api/reportes/ventas")
    assert r.status_code == 403
    assert r.json["message"] == "No tienes permisos para consultar reportes"

    r = other.post("/api/preferencias/tipo-cambio", json={"rate_date": "2024-06-01", "rate_value": 17})
    assert r.status_code == 403
