import pytest
from werkzeug.security import check_password_hash

from app.facturador.db import standalone_session
from app.facturador.models import AdminUser, Role
from app.facturador.modules.catalog.models import Warehouse
from app.facturador.modules.cxc.models import PaymentTerm
from app.facturador.modules.sequences.models import SequenceDefinition
from scripts import init_db, release


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    monkeypatch.setenv("ADMIN_USERNAME", "Gerente")
    monkeypatch.setenv("ADMIN_PASSWORD", "primera-clave-1")
    init_db.create_tables(url)
    return url


def test_seed_is_idempotent(db_url, monkeypatch):
    init_db.seed_only(database_url=db_url)
    monkeypatch.setenv("ADMIN_PASSWORD", "otra-clave-2")
    init_db.seed_only(database_url=db_url)

    with standalone_session(db_url) as s:
        admins = s.query(AdminUser).all()
        assert [a.username for a in admins] == ["gerente"]
        # the second run must not reset the password
        assert check_password_hash(admins[0].password_hash, "primera-clave-1")
        assert [r.code for r in admins[0].roles] == ["ADMINISTRADOR"]

        assert {r.code for r in s.query(Role).all()} == {"ADMINISTRADOR", "FACTURADOR"}
        assert sorted(t.code for t in s.query(PaymentTerm).all()) == ["CONTADO", "CRED15", "CRED30"]
        assert s.query(Warehouse).filter(Warehouse.code == "PRINCIPAL").count() == 1
        fac = s.query(SequenceDefinition).filter(SequenceDefinition.code == "FAC").one()
        assert (fac.scope, fac.prefix, fac.padding) == ("INVOICE", "FAC-", 6)


def test_standalone_session_rolls_back_on_error(db_url):
    with pytest.raises(RuntimeError):
        with standalone_session(db_url) as s:
            s.add(Warehouse(code="BARRA", name="Barra", is_active=True))
            s.flush()
            raise RuntimeError("boom")

    with standalone_session(db_url) as s:
        assert s.query(Warehouse).filter(Warehouse.code == "BARRA").count() == 0


def test_release_guardrails(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        release.check_release_env()

    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    with pytest.raises(RuntimeError, match="sqlite"):
        release.check_release_env()

    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://u:p@db/facturador")
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    with pytest.raises(RuntimeError, match="ADMIN_PASSWORD"):
        release.check_release_env()

    monkeypatch.setenv("ADMIN_PASSWORD", "una-clave-segura")
    assert release.check_release_env() == "postgresql+psycopg://u:p@db/facturador"
