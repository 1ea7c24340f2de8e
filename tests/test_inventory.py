import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import Base
from app.facturador.modules.inventory.models import InventoryMovement
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
def catalog(client):
    for code, name in (("PZA", "Pieza"), ("CJA", "Caja")):
        assert client.post("/api/unidades", json={"code": code, "name": name}).status_code == 201

    articles = [
        {"article_code": "REFRESCO", "name": "Refresco 355ml", "storage_unit": "CJA", "retail_unit": "PZA", "conversion_factor": 24},
        {"article_code": "PAPAS", "name": "Papas fritas", "storage_unit": "PZA", "retail_unit": "PZA"},
        {"article_code": "COMBO1", "name": "Combo refresco y papas", "article_type": "KIT", "storage_unit": "PZA", "retail_unit": "PZA"},
    ]
    for payload in articles:
        r = client.post("/api/articulos", json={**payload, "default_warehouse_code": "PRINCIPAL"})
        assert r.status_code == 201, r.json

    r = client.post(
        "/api/kits",
        json={"kit_code": "COMBO1", "components": [{"component_code": "REFRESCO", "qty_retail": 1}, {"component_code": "PAPAS", "qty_retail": 2}]},
    )
    assert r.status_code == 200
    assert len(r.json["kit"]["components"]) == 2


def _stock(client, article, warehouse="PRINCIPAL"):
    r = client.get(f"/api/inventario/existencias?warehouse={warehouse}&article={article}")
    assert r.status_code == 200
    items = r.json["items"]
    return items[0]["quantity_retail"] if items else 0.0


def test_article_requires_existing_units(client):
    r = client.post("/api/articulos", json={"article_code": "X1", "name": "X", "storage_unit": "NOPE", "retail_unit": "NOPE"})
    assert r.status_code == 404
    assert "NOPE" in r.json["message"]


def test_article_upsert_returns_200_on_update(client, catalog):
    r = client.post("/api/articulos", json={"article_code": "PAPAS", "name": "Papas adobadas", "storage_unit": "PZA", "retail_unit": "PZA"})
    assert r.status_code == 200
    assert r.json["article"]["name"] == "Papas adobadas"


def test_purchase_in_storage_units_converts_to_retail(client, catalog):
    r = client.post(
        "/api/inventario/compras",
        json={
            "warehouse_code": "PRINCIPAL",
            "supplier_name": "Distribuidora Norte",
            "lines": [
                {"article_code": "REFRESCO", "quantity": 2, "unit": "STORAGE", "cost_per_unit": 240},
                {"article_code": "PAPAS", "quantity": 30, "cost_per_unit": 8.5},
            ],
        },
    )
    assert r.status_code == 201
    tx = r.json["transaction"]
    assert tx["transaction_type"] == "PURCHASE"
    assert tx["status"] == "PAGADA"
    assert tx["transaction_code"].startswith("COM-")
    assert tx["total_amount"] == 735.0
    assert len(tx["entries"]) == 2

    assert _stock(client, "REFRESCO") == 48.0
    assert _stock(client, "PAPAS") == 30.0


def test_kit_consumption_expands_components(app, client, catalog):
    client.post(
        "/api/inventario/compras",
        json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "REFRESCO", "quantity": 10}, {"article_code": "PAPAS", "quantity": 10}]},
    )
    r = client.post("/api/inventario/consumos", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "COMBO1", "quantity": 3}]})
    assert r.status_code == 201
    movements = r.json["transaction"]["entries"][0]["movements"]
    assert {(m["article_code"], m["quantity_retail"], m["source_kit_code"]) for m in movements} == {
        ("REFRESCO", 3.0, "COMBO1"),
        ("PAPAS", 6.0, "COMBO1"),
    }

    assert _stock(client, "REFRESCO") == 7.0
    assert _stock(client, "PAPAS") == 4.0

    with session_scope(app) as s:
        assert s.query(InventoryMovement).filter(InventoryMovement.direction == "OUT").count() == 2


def test_consumption_shortfall_is_conflict_and_leaves_stock(client, catalog):
    client.post("/api/inventario/compras", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 1}]})

    r = client.post("/api/inventario/consumos", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 5}]})
    assert r.status_code == 409
    assert r.json["message"].startswith("Existencias insuficientes")
    assert _stock(client, "PAPAS") == 1.0


def test_adjustment_and_transfer(client, catalog):
    assert client.post("/api/inventario/warehouses", json={"code": "BARRA", "name": "Barra"}).status_code == 201

    r = client.post("/api/inventario/ajustes", json={"warehouse_code": "PRINCIPAL", "reason": "Conteo", "lines": [{"article_code": "PAPAS", "quantity": 12}]})
    assert r.status_code == 201
    r = client.post("/api/inventario/ajustes", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": -2}]})
    assert r.status_code == 201
    assert _stock(client, "PAPAS") == 10.0

    r = client.post(
        "/api/inventario/traspasos",
        json={"from_warehouse_code": "PRINCIPAL", "to_warehouse_code": "BARRA", "lines": [{"article_code": "PAPAS", "quantity": 4}]},
    )
    assert r.status_code == 201
    assert r.json["transaction"]["destination_warehouse_code"] == "BARRA"
    assert _stock(client, "PAPAS") == 6.0
    assert _stock(client, "PAPAS", "BARRA") == 4.0

    r = client.post(
        "/api/inventario/traspasos",
        json={"from_warehouse_code": "BARRA", "to_warehouse_code": "BARRA", "lines": [{"article_code": "PAPAS", "quantity": 1}]},
    )
    assert r.status_code == 400


def test_kardex_running_balance(client, catalog):
    client.post("/api/inventario/compras", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 5}]})
    client.post("/api/inventario/consumos", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 2}]})

    r = client.get("/api/inventario/kardex?article=PAPAS&warehouse=PRINCIPAL")
    assert r.status_code == 200
    assert [(m["direction"], m["balance"]) for m in r.json["items"]] == [("IN", 5.0), ("OUT", 3.0)]

    r = client.get("/api/inventario/documentos?type=PURCHASE")
    assert r.status_code == 200
    code = r.json["items"][0]["transaction_code"]
    r = client.get(f"/api/inventario/documentos/{code}")
    assert r.status_code == 200
    assert r.json["transaction"]["entries"][0]["article_code"] == "PAPAS"


def test_price_lists_and_current_price(client, catalog):
    r = client.post("/api/precios/listas", json={"code": "GENERAL", "name": "Lista general", "start_date": "2024-01-01"})
    assert r.status_code == 201

    r = client.post("/api/precios", json={"article_code": "PAPAS", "price_list_code": "GENERAL", "price": 25, "start_date": "2024-01-01"})
    assert r.status_code == 201

    r = client.get("/api/precios?article=papas&list=general")
    assert r.status_code == 200
    assert r.json["price"] == 25.0

    r = client.get("/api/precios?article=REFRESCO&list=GENERAL")
    assert r.status_code == 404


def test_inventory_sequence_assignment_and_fallback_code(client, catalog):
    r = client.post("/api/inventario/ajustes", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 5}]})
    assert r.status_code == 201
    tx = r.json["transaction"]
    assert tx["transaction_code"] == f"AJU-{tx['id']:06d}"

    r = client.post("/api/preferencias/consecutivos", json={"code": "aju", "name": "Ajustes", "scope": "INVENTORY", "prefix": "AJ", "padding": 4})
    assert r.status_code == 201
    assert r.json["sequence"]["preview"] == "AJ0001"

    r = client.post("/api/preferencias/consecutivos/inventario", json={"transaction_type": "ADJUSTMENT", "sequence_code": "FAC"})
    assert r.status_code == 400
    assert r.json["message"] == "La secuencia debe ser de tipo inventario"
    r = client.post("/api/preferencias/consecutivos/inventario", json={"transaction_type": "ADJUSTMENT", "sequence_code": "NOPE"})
    assert r.status_code == 404

    r = client.post("/api/preferencias/consecutivos/inventario", json={"transaction_type": "adjustment", "sequence_code": "AJU"})
    assert r.status_code == 200
    settings = {row["transaction_type"]: row["sequence_code"] for row in r.json["items"]}
    assert settings == {"PURCHASE": None, "CONSUMPTION": None, "ADJUSTMENT": "AJU", "TRANSFER": None}

    codes = []
    for _ in range(2):
        r = client.post("/api/inventario/ajustes", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 1}]})
        codes.append(r.json["transaction"]["transaction_code"])
    assert codes == ["AJ0001", "AJ0002"]

    # purchases keep the fallback
    r = client.post("/api/inventario/compras", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 1}]})
    assert r.json["transaction"]["transaction_code"] == f"COM-{r.json['transaction']['id']:06d}"

    # unassigning goes back to the fallback
    client.post("/api/preferencias/consecutivos/inventario", json={"transaction_type": "ADJUSTMENT", "sequence_code": ""})
    r = client.post("/api/inventario/ajustes", json={"warehouse_code": "PRINCIPAL", "lines": [{"article_code": "PAPAS", "quantity": 1}]})
    assert r.json["transaction"]["transaction_code"].startswith("AJU-")


def test_classification_levels_build_full_code(client):
    r = client.post("/api/clasificaciones", json={"level": 1, "code": "beb", "name": "Bebidas"})
    assert r.status_code == 201
    assert r.json["classification"]["full_code"] == "BEB"
    assert r.json["classification"]["parent_full_code"] is None

    r = client.post("/api/clasificaciones", json={"level": 2, "code": "GAS", "name": "Gaseosas", "parent_full_code": "BEB"})
    assert r.status_code == 201
    assert r.json["classification"]["full_code"] == "BEBGAS"
    assert r.json["classification"]["parent_full_code"] == "BEB"

    r = client.post("/api/clasificaciones", json={"level": 2, "code": "GAS", "name": "Otra vez", "parent_full_code": "BEB"})
    assert r.status_code == 409
    r = client.post("/api/clasificaciones", json={"level": 3, "code": "LAT", "name": "Latas", "parent_full_code": "BEB"})
    assert r.status_code == 404
    assert r.json["message"] == "La clasificación padre no existe en el nivel anterior"
    r = client.post("/api/clasificaciones", json={"level": 2, "code": "JUG", "name": "Jugos"})
    assert r.status_code == 400
    r = client.post("/api/clasificaciones", json={"level": 7, "code": "X", "name": "Demasiado"})
    assert r.status_code == 400

    r = client.get("/api/clasificaciones?level=2&parent=beb")
    assert [c["full_code"] for c in r.json["items"]] == ["BEBGAS"]


def test_article_warehouse_links_keep_one_primary(client, catalog):
    client.post("/api/inventario/warehouses", json={"code": "BARRA", "name": "Barra"})

    r = client.post("/api/articulos/PAPAS/almacenes", json={"warehouse_code": "PRINCIPAL", "is_primary": True})
    assert r.status_code == 200
    r = client.post("/api/articulos/PAPAS/almacenes", json={"warehouse_code": "BARRA", "is_primary": True})
    assert r.status_code == 200
    assert [(i["warehouse_code"], i["is_primary"]) for i in r.json["items"]] == [("BARRA", True), ("PRINCIPAL", False)]

    # linking again without the flag keeps the current primary
    r = client.post("/api/articulos/PAPAS/almacenes", json={"warehouse_code": "PRINCIPAL"})
    assert [(i["warehouse_code"], i["is_primary"]) for i in r.json["items"]] == [("BARRA", True), ("PRINCIPAL", False)]

    r = client.post("/api/articulos/PAPAS/almacenes", json={"warehouse_code": "BODEGA9"})
    assert r.status_code == 404

    r = client.delete("/api/articulos/PAPAS/almacenes/BARRA")
    assert r.status_code == 200
    assert [i["warehouse_code"] for i in r.json["items"]] == ["PRINCIPAL"]
    r = client.delete("/api/articulos/PAPAS/almacenes/BARRA")
    assert r.status_code == 404
