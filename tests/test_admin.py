import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import AuditEvent, Base
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


def _client(app, username="admin", password="admin-pass-1"):
    client = app.test_client()
    r = client.post("/api/login", json={"role": "admin", "username": username, "password": password})
    assert r.status_code == 200, r.json
    return client


@pytest.fixture()
def admin(app):
    return _client(app)


def test_create_admin_user_with_roles(app, admin):
    r = admin.post(
        "/api/admin-users",
        json={
            "username": "Caja1",
            "password": "caja-pass-1",
            "display_name": "Cajera turno mañana",
            "roles": ["FACTURADOR"],
        },
    )
    assert r.status_code == 201
    user = r.json["user"]
    assert user["username"] == "caja1"
    assert [role["code"] for role in user["roles"]] == ["FACTURADOR"]
    assert user["primary_role"] == "FACTURADOR"

    r = admin.post("/api/admin-users", json={"username": "caja1", "password": "otra-pass-1", "roles": ["FACTURADOR"]})
    assert r.status_code == 409

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "admin_user.create").count() == 1


def test_create_admin_user_validation(admin):
    r = admin.post("/api/admin-users", json={"username": "corto", "password": "123"})
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"
    assert r.json["errors"]

    r = admin.post("/api/admin-users", json={"username": "nuevo", "password": "nuevo-pass-1", "roles": ["NO_EXISTE"]})
    assert r.status_code == 400
    assert r.json["message"] == "Roles no válidos: NO_EXISTE"


def test_admin_cannot_deactivate_self(admin):
    me = admin.get("/api/session").json["session"]
    r = admin.patch(f"/api/admin-users/{me['sub']}", json={"is_active": False})
    assert r.status_code == 400
    assert r.json["message"] == "No puedes desactivar tu propio usuario"


def test_reset_password_allows_new_login(app, admin):
    r = admin.post("/api/admin-users", json={"username": "caja2", "password": "caja-pass-1", "roles": ["FACTURADOR"]})
    user_id = r.json["user"]["id"]

    r = admin.post(f"/api/admin-users/{user_id}/reset-password", json={"password": "nueva-clave-9"})
    assert r.status_code == 200

    client = app.test_client()
    r = client.post("/api/login", json={"role": "admin", "username": "caja2", "password": "caja-pass-1"})
    assert r.status_code == 401
    _client(app, "caja2", "nueva-clave-9")


def test_facturador_is_limited_by_permissions(app, admin):
    admin.post("/api/admin-users", json={"username": "caja3", "password": "caja-pass-1", "roles": ["FACTURADOR"]})
    cashier = _client(app, "caja3", "caja-pass-1")

    r = cashier.get("/api/admin-users")
    assert r.status_code == 403
    assert r.json["code"] == "FORBIDDEN"
    assert r.json["message"] == "Solo un administrador puede realizar esta acción"

    r = cashier.post("/api/inventario/compras", json={"warehouse_code": "PRINCIPAL", "lines": []})
    assert r.status_code == 403

    r = cashier.get("/api/reportes/ventas")
    assert r.status_code == 200


def test_roles_crud(admin):
    r = admin.get("/api/roles/permissions")
    assert r.status_code == 200
    keys = {p["key"] for p in r.json["items"]}
    assert {"invoice.issue", "cash.register.open", "admin.users.manage"} <= keys

    r = admin.post("/api/roles", json={"code": "inventarios", "name": "Inventarios", "permissions": ["inventory.manage"]})
    assert r.status_code == 201
    role = r.json["role"]
    assert role["code"] == "INVENTARIOS"
    assert role["permissions"] == ["inventory.manage"]
    assert role["user_count"] == 0

    r = admin.post("/api/roles", json={"code": "INVENTARIOS", "name": "Otro"})
    assert r.status_code == 409

    r = admin.post("/api/roles", json={"code": "X", "name": "X", "permissions": ["nada.de.nada"]})
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"

    r = admin.patch("/api/roles/INVENTARIOS", json={"permissions": ["inventory.manage", "cash.report.view"]})
    assert r.status_code == 200
    assert r.json["role"]["permissions"] == ["cash.report.view", "inventory.manage"]

    r = admin.delete("/api/roles/FACTURADOR")
    assert r.status_code == 200

    r = admin.delete("/api/roles/ADMINISTRADOR")
    assert r.status_code == 409


def test_waiter_pin_login_and_profile(app, admin):
    r = admin.post("/api/meseros", json={"code": "m10", "full_name": "Rosa Díaz", "pin": "4321"})
    assert r.status_code == 201
    assert r.json["waiter"]["code"] == "M10"

    r = admin.post("/api/meseros", json={"code": "M11", "full_name": "Sin PIN", "pin": "12"})
    assert r.status_code == 400

    waiter = app.test_client()
    r = waiter.post("/api/login", json={"role": "waiter", "pin": "4321"})
    assert r.status_code == 200
    assert r.json["waiter"]["code"] == "M10"

    r = waiter.get("/api/meseros/me")
    assert r.status_code == 200
    assert r.json["waiter"]["full_name"] == "Rosa Díaz"

    # waiters cannot reach admin endpoints
    assert waiter.get("/api/meseros").status_code == 403

    r = admin.post("/api/meseros/M10/reset-pin", json={"pin": "8765"})
    assert r.status_code == 200
    bad = app.test_client().post("/api/login", json={"role": "waiter", "pin": "4321"})
    assert bad.status_code == 401
    assert bad.json["message"] == "PIN no válido"


def test_inactive_waiter_cannot_login(app, admin):
    admin.post("/api/meseros", json={"code": "M20", "full_name": "Pedro", "pin": "2468"})
    r = admin.patch("/api/meseros/M20", json={"is_active": False})
    assert r.status_code == 200
    assert r.json["waiter"]["is_active"] is False

    r = app.test_client().post("/api/login", json={"role": "waiter", "pin": "2468"})
    assert r.status_code == 401
