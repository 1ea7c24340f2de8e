import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import Base
from app.facturador.modules.inventory.models import InventoryTransaction
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
def register(client):
    """Stocked article, a register assigned to the admin with the FAC sequence."""
    client.post("/api/unidades", json={"code": "PZA", "name": "Pieza"})
    client.post(
        "/api/articulos",
        json={"article_code": "CAFE", "name": "Café", "storage_unit": "PZA", "retail_unit": "PZA", "default_warehouse_code": "PRINCIPAL"},
    )
    client.post("/api/inventario/compras", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "CAFE", "quantity": 10}]})

    r = client.post("/api/cajas", json={"code": "CAJA1", "name": "Caja principal", "warehouse_code": "PRINCIPAL"})
    assert r.status_code == 201
    admin_id = int(client.get("/api/session").json["session"]["sub"])
    r = client.post("/api/cajas/CAJA1/usuarios", json={"admin_user_id": admin_id, "is_default": True})
    assert r.status_code == 201
    return "CAJA1"


def _open(client, register_code="CAJA1", amount=500):
    return client.post("/api/cajas/aperturas", json={"cash_register_code": register_code, "opening_amount": amount})


def _invoice(client, quantity=2, price=35.0, payments=None, **extra):
    total = quantity * price
    payload = {
        "items": [{"article_code": "CAFE", "description": "Café", "quantity": quantity, "unit_price": price}],
        "payments": payments if payments is not None else [{"method": "CASH", "amount": total}],
        **extra,
    }
    return client.post("/api/invoices", json=payload)


def _stock(client, article="CAFE"):
    items = client.get(f"/api/inventario/existencias?warehouse=PRINCIPAL&article={article}").json["items"]
    return items[0]["quantity_retail"]


def test_invoice_requires_open_session(client, register):
    r = _invoice(client)
    assert r.status_code == 409
    assert r.json["message"] == "Debes abrir una caja antes de facturar"


def test_invoice_requires_register_sequence(client, register):
    assert _open(client).status_code == 201
    r = _invoice(client)
    assert r.status_code == 409
    assert "consecutivo" in r.json["message"]


def test_open_session_requires_assignment_and_is_unique(client, register):
    client.post("/api/cajas", json={"code": "CAJA2", "name": "Caja barra", "warehouse_code": "PRINCIPAL"})
    r = _open(client, "CAJA2")
    assert r.status_code == 403

    assert _open(client).status_code == 201
    r = _open(client)
    assert r.status_code == 409
    assert "apertura activa" in r.json["message"]

    r = client.get("/api/cajas/aperturas/activa")
    assert r.json["session"]["cash_register"]["code"] == "CAJA1"


def test_invoice_issues_number_and_consumes_stock(app, client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)

    r = _invoice(client, quantity=2, service_charge=7)
    assert r.status_code == 409
    r = _invoice(client, quantity=2)
    assert r.status_code == 201
    inv = r.json["invoice"]
    assert inv["invoice_number"] == "FAC-000001"
    assert inv["status"] == "FACTURADA"
    assert inv["total_amount"] == 70.0
    assert inv["warehouse_code"] == "PRINCIPAL"
    assert inv["payments"] == [{"id": inv["payments"][0]["id"], "method": "CASH", "amount": 70.0, "reference": None}]
    assert _stock(client) == 8.0

    r = _invoice(client, quantity=1)
    assert r.json["invoice"]["invoice_number"] == "FAC-000002"

    with session_scope(app) as s:
        tx = s.query(InventoryTransaction).filter(InventoryTransaction.reference == "FAC-000001").one()
        assert tx.transaction_type == "CONSUMPTION"

    r = client.get("/api/invoices?pageSize=1")
    assert r.status_code == 200
    assert r.json["total"] == 2
    assert len(r.json["items"]) == 1


def test_underpaid_invoice_is_rejected(client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)

    r = _invoice(client, quantity=2, payments=[{"method": "CARD", "amount": 50}])
    assert r.status_code == 409
    assert "saldo pendiente" in r.json["message"]
    assert _stock(client) == 10.0

    r = _invoice(client, payments=[{"method": "BITCOIN", "amount": 70}])
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"


def test_cancel_invoice_restores_stock_once(app, client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)
    inv_id = _invoice(client, quantity=3).json["invoice"]["id"]
    assert _stock(client) == 7.0

    r = client.patch(f"/api/invoices/{inv_id}", json={"status": "PAGADA"})
    assert r.status_code == 400

    r = client.patch(f"/api/invoices/{inv_id}", json={"status": "ANULADA", "reason": "Error de captura"})
    assert r.status_code == 200
    assert r.json["invoice"]["status"] == "ANULADA"
    assert r.json["invoice"]["cancellation_reason"] == "Error de captura"
    assert _stock(client) == 10.0

    # a second cancellation is a no-op
    r = client.patch(f"/api/invoices/{inv_id}", json={"status": "ANULADA"})
    assert r.status_code == 200
    assert _stock(client) == 10.0
    with session_scope(app) as s:
        assert s.query(InventoryTransaction).filter(InventoryTransaction.reference == "ANUL-FAC-000001").count() == 1


def test_close_session_summary(client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)
    _invoice(client, quantity=2, payments=[{"method": "CASH", "amount": 40}, {"method": "CARD", "amount": 30}])
    _invoice(client, quantity=1)
    cancelled = _invoice(client, quantity=1).json["invoice"]["id"]
    client.patch(f"/api/invoices/{cancelled}", json={"status": "ANULADA"})

    r = client.post(
        "/api/cajas/cierres",
        json={
            "closing_amount": 575,
            "reported_payments": [{"method": "CASH", "amount": 75, "tx_count": 2}, {"method": "CARD", "amount": 30, "tx_count": 1}],
        },
    )
    assert r.status_code == 200
    summary = r.json["summary"]
    assert summary["invoice_count"] == 2
    assert summary["expected_total"] == 105.0
    assert summary["reported_total"] == 105.0
    assert summary["difference_total"] == 0.0
    assert {b["method"]: b["expected_amount"] for b in summary["breakdown"]} == {"CARD": 30.0, "CASH": 75.0}
    assert r.json["session"]["status"] == "CLOSED"

    session_id = r.json["session"]["id"]
    r = client.get(f"/api/cajas/cierres/{session_id}")
    assert r.status_code == 200
    assert len(r.json["report"]["invoices"]) == 3

    r = client.post("/api/cajas/cierres", json={"session_id": session_id, "closing_amount": 0})
    assert r.status_code == 409


def test_invoicing_an_order_closes_it(client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)
    client.post("/api/tables", json={"label": "Barra 1"})
    order = client.post(
        "/api/orders",
        json={"table_id": "barra-1", "items": [{"article_code": "CAFE", "description": "Café", "quantity": 2, "unit_price": 35}]},
    ).json["order"]

    r = _invoice(client, quantity=2, origin_order_id=order["id"], table_code="barra-1")
    assert r.status_code == 201
    assert r.json["invoice"]["origin_order_id"] == order["id"]

    r = client.get(f"/api/orders/{order['id']}")
    assert r.json["order"]["status"] == "INVOICED"

    r = _invoice(client, quantity=2, origin_order_id=order["id"])
    assert r.status_code == 409
    assert r.json["message"] == "La comanda ya fue facturada"


def test_credit_sale_rejected_in_restaurant_mode(client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)
    r = _invoice(client, sale_type="CREDITO", payments=[])
    assert r.status_code == 400
    assert "modo retail" in r.json["message"]


def test_invoice_sequence_is_not_shared_between_registers(client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    admin_id = int(client.get("/api/session").json["session"]["sub"])
    client.post("/api/cajas", json={"code": "CAJA2", "name": "Caja barra", "warehouse_code": "PRINCIPAL"})
    client.post("/api/cajas/CAJA2/usuarios", json={"admin_user_id": admin_id})

    r = client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA2", "sequence_code": "FAC"})
    assert r.status_code == 409
    assert r.json["message"] == "La secuencia ya está asignada a otra caja (CAJA1)"

    # reassigning the same register is allowed
    r = client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    assert r.status_code == 200


def test_moved_sequence_cannot_repeat_an_invoice_number(client, register):
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    _open(client)
    assert _invoice(client).json["invoice"]["invoice_number"] == "FAC-000001"
    r = client.post("/api/cajas/cierres", json={"closing_amount": 570})
    assert r.status_code == 200

    admin_id = int(client.get("/api/session").json["session"]["sub"])
    client.post("/api/cajas", json={"code": "CAJA2", "name": "Caja barra", "warehouse_code": "PRINCIPAL"})
    client.post("/api/cajas/CAJA2/usuarios", json={"admin_user_id": admin_id})
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": ""})
    r = client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA2", "sequence_code": "FAC"})
    assert r.status_code == 200
    assert _open(client, "CAJA2").status_code == 201

    r = _invoice(client, quantity=1)
    assert r.status_code == 409
    assert r.json["message"] == "El consecutivo FAC-000001 ya fue utilizado por otra factura"
    assert _stock(client) == 8.0
    assert client.get("/api/invoices").json["total"] == 1
