import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import Base
from app.facturador.modules.orders.models import Order
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
def admin(app):
    client = app.test_client()
    r = client.post("/api/login", json={"role": "admin", "username": "admin", "password": "admin-pass-1"})
    assert r.status_code == 200
    return client


def _waiter_client(app, pin):
    client = app.test_client()
    r = client.post("/api/login", json={"role": "waiter", "pin": pin})
    assert r.status_code == 200, r.json
    return client


@pytest.fixture()
def floor(app, admin):
    r = admin.post("/api/tables/zones", json={"name": "Terraza"})
    assert r.status_code == 201
    assert r.json["zone"]["id"] == "terraza"

    r = admin.post("/api/tables", json={"label": "Mesa 1", "zone_id": "terraza", "capacity": 4})
    assert r.status_code == 201
    assert r.json["table"]["id"] == "mesa-1"
    assert r.json["table"]["available"] is True

    for code, name, pin in (("M01", "Ana Pérez", "1234"), ("M02", "Luis Gómez", "5678")):
        r = admin.post("/api/meseros", json={"code": code, "full_name": name, "pin": pin})
        assert r.status_code == 201
    return "mesa-1"


def _sent(*lines):
    return [{"articleCode": code, "name": name, "quantity": qty, "unitPrice": price} for code, name, qty, price in lines]


def test_duplicate_waiter_pin_is_conflict(admin, floor):
    r = admin.post("/api/meseros", json={"code": "M03", "full_name": "Otro", "pin": "1234"})
    assert r.status_code == 409
    assert r.json["message"] == "El PIN ya está asignado a otro mesero"


def test_waiter_claims_table_and_syncs_order(app, floor):
    waiter = _waiter_client(app, "1234")

    r = waiter.post("/api/meseros/tables/select", json={"table_id": floor})
    assert r.status_code == 200
    table = r.json["table"]
    assert table["state"]["assigned_waiter_name"] == "Ana Pérez"
    assert table["available"] is False

    r = waiter.put(
        f"/api/meseros/tables/{floor}",
        json={"pendingItems": [], "sentItems": _sent(("CAFE", "Café americano", 2, 35.0), ("PAN", "Pan dulce", 1, 20.0))},
    )
    assert r.status_code == 200
    order = r.json["order"]
    assert order["status"] == "OPEN"
    assert order["table_id"] == floor
    assert order["waiter_code"] == "M01"
    assert order["order_code"] == f"ORD-{order['id']:04d}"
    assert order["total"] == 90.0
    assert [it["article_code"] for it in order["items"]] == ["CAFE", "PAN"]

    # resending replaces the lines of the same open order
    r = waiter.put(f"/api/meseros/tables/{floor}", json={"sentItems": _sent(("CAFE", "Café americano", 3, 35.0))})
    assert r.status_code == 200
    assert r.json["order"]["id"] == order["id"]
    assert r.json["order"]["total"] == 105.0

    with session_scope(app) as s:
        assert s.query(Order).count() == 1


def test_table_held_by_other_waiter_is_conflict(app, floor):
    first = _waiter_client(app, "1234")
    assert first.post("/api/meseros/tables/select", json={"table_id": floor}).status_code == 200

    second = _waiter_client(app, "5678")
    r = second.post("/api/meseros/tables/select", json={"table_id": floor})
    assert r.status_code == 409
    assert "otro mesero" in r.json["message"]

    r = second.post("/api/meseros/tables/select", json={"table_id": "no-existe"})
    assert r.status_code == 404


def test_cannot_delete_table_or_zone_in_use(app, admin, floor):
    waiter = _waiter_client(app, "1234")
    waiter.put(f"/api/meseros/tables/{floor}", json={"sentItems": _sent(("CAFE", "Café", 1, 35.0))})

    r = admin.delete(f"/api/tables/{floor}")
    assert r.status_code == 409
    assert "comanda activa" in r.json["message"]

    r = admin.delete("/api/tables/zones/terraza")
    assert r.status_code == 409


def test_reservation_blocks_availability_and_is_seated_on_claim(app, admin, floor):
    r = admin.put(f"/api/tables/{floor}/reservation", json={"reserved_by": "Familia Ruiz", "party_size": 4})
    assert r.status_code == 200
    assert r.json["reservation"]["status"] == "holding"
    assert r.json["table"]["available"] is False

    waiter = _waiter_client(app, "1234")
    r = waiter.post("/api/meseros/tables/select", json={"table_id": floor})
    assert r.status_code == 200
    assert r.json["table"]["reservation"]["status"] == "seated"

    r = admin.delete(f"/api/tables/{floor}/reservation")
    assert r.status_code == 200
    assert r.json["table"]["reservation"] is None


def test_order_items_and_cancel(admin, floor):
    r = admin.post(
        "/api/orders",
        json={"table_id": floor, "guests": 2, "items": [{"article_code": "CAFE", "description": "Café", "quantity": 1, "unit_price": 35}]},
    )
    assert r.status_code == 201
    order_id = r.json["order"]["id"]

    r = admin.post(f"/api/orders/{order_id}/items", json={"article_code": "PAN", "description": "Pan", "quantity": 2, "unit_price": 20})
    assert r.status_code == 201
    item_id = r.json["item"]["id"]
    assert r.json["order"]["total"] == 75.0

    r = admin.patch(f"/api/orders/{order_id}/items/{item_id}", json={"quantity": 1})
    assert r.status_code == 200
    assert r.json["order"]["total"] == 55.0

    r = admin.post(f"/api/orders/{order_id}/cancel", json={"reason": "Cliente se retiró"})
    assert r.status_code == 200
    assert r.json["order"]["status"] == "CANCELLED"

    r = admin.post(f"/api/orders/{order_id}/items", json={"article_code": "PAN", "description": "Pan", "quantity": 1, "unit_price": 20})
    assert r.status_code == 409
    assert r.json["message"] == "Solo se pueden modificar comandas abiertas"

    r = admin.get("/api/tables")
    table = next(t for t in r.json["items"] if t["id"] == floor)
    assert table["state"]["status"] == "anulado"


def test_tables_disabled_in_retail_mode(app, admin):
    app.config["RESTAURANT_MODE"] = False
    r = admin.get("/api/tables")
    assert r.status_code == 403
    assert r.json["message"] == "Funcionalidad deshabilitada para modo retail"
