from datetime import datetime, timedelta

import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import Base, LoginAudit
from app.facturador.seed import seed_defaults
from app.facturador.session import SESSION_KEY, parse_session_payload


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
    return app.test_client()


def _login(client, username="admin", password="admin-pass-1"):
    return client.post("/api/login", json={"role": "admin", "username": username, "password": password})


def test_health_ok(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["status"] == "ok"
    assert r.json["mode"] == "restaurant"

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_session_requires_login(client):
    r = client.get("/api/session")
    assert r.status_code == 401
    assert r.json == {"success": False, "message": "Sesión no válida", "code": "UNAUTHORIZED"}


def test_admin_login_session_and_logout(client):
    r = _login(client)
    assert r.status_code == 200
    user = r.json["user"]
    assert user["username"] == "admin"
    assert "ADMINISTRADOR" in user["roles"]
    assert "invoice.issue" in user["permissions"]

    r = client.get("/api/session")
    assert r.status_code == 200
    assert r.json["session"]["role"] == "admin"
    assert r.json["session"]["exp"]

    r = client.post("/api/logout")
    assert r.status_code == 200
    assert client.get("/api/session").status_code == 401


def test_login_rejects_bad_credentials_and_audits(app, client):
    r = _login(client, password="wrong-password")
    assert r.status_code == 401
    assert r.json["code"] == "UNAUTHORIZED"

    with session_scope(app) as s:
        rows = s.query(LoginAudit).all()
        assert len(rows) == 1
        assert rows[0].success is False
        assert rows[0].identifier == "admin"


def test_login_validation_errors(client):
    r = client.post("/api/login", json={"role": "root"})
    assert r.status_code == 400
    assert r.json["code"] == "VALIDATION_ERROR"
    assert r.json["errors"]

    r = client.post("/api/login", json={"role": "waiter", "pin": "12"})
    assert r.status_code == 400


def test_login_rate_limit(client):
    for _ in range(5):
        assert _login(client, password="nope").status_code == 401
    r = _login(client)
    assert r.status_code == 429
    assert r.json["code"] == "RATE_LIMITED"


def test_unknown_route_uses_error_envelope(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False
    assert r.json["code"] == "NOT_FOUND"


def test_retail_only_routes_blocked_in_restaurant_mode(client):
    _login(client)
    r = client.get("/api/cxc/clientes")
    assert r.status_code == 403
    assert "modo restaurante" in r.json["message"]


def test_expired_session_is_rejected(client):
    assert _login(client).status_code == 200
    with client.session_transaction() as sess:
        payload = dict(sess[SESSION_KEY])
        payload["exp"] = (datetime.utcnow() - timedelta(minutes=1)).isoformat()
        sess[SESSION_KEY] = payload

    r = client.get("/api/session")
    assert r.status_code == 401


def test_parse_session_payload_rejects_malformed_input():
    exp = (datetime.utcnow() + timedelta(hours=1)).replace(microsecond=0)
    valid = {"sub": "7", "role": "admin", "name": "Ana", "roles": [" administrador ", "ADMINISTRADOR"], "exp": exp.isoformat()}

    info = parse_session_payload(valid)
    assert info.user_id == 7
    assert info.roles == ("ADMINISTRADOR",)
    assert info.exp == exp

    assert parse_session_payload(None) is None
    assert parse_session_payload("admin") is None
    assert parse_session_payload({**valid, "role": "root"}) is None
    assert parse_session_payload({**valid, "sub": ""}) is None
    assert parse_session_payload({**valid, "exp": "mañana"}) is None
    assert parse_session_payload({k: v for k, v in valid.items() if k != "exp"}) is None
