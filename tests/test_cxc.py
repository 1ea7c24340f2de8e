import pytest

from app.facturador import auth, create_app
from app.facturador.db import session_scope
from app.facturador.models import Base
from app.facturador.modules.cxc.models import CustomerDocument
from app.facturador.seed import seed_defaults


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.delenv("SESSION_SECRET", raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ES_RESTAURANTE", "false")

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
def customer(client):
    r = client.post(
        "/api/cxc/clientes",
        json={"code": "c001", "name": "Ferretería El Clavo", "payment_term_code": "CRED30", "credit_limit": 1000},
    )
    assert r.status_code == 201
    c = r.json["customer"]
    assert c["code"] == "C001"
    assert c["payment_term_code"] == "CRED30"
    assert c["available_credit"] == 1000.0
    return c


def _document(client, customer_id, number, amount, document_type="INVOICE", **extra):
    payload = {
        "customer_id": customer_id,
        "document_type": document_type,
        "document_number": number,
        "original_amount": amount,
        **extra,
    }
    return client.post("/api/cxc/documentos", json=payload)


def test_restaurant_only_endpoints_are_disabled(client):
    r = client.get("/api/health")
    assert r.json["mode"] == "retail"
    r = client.get("/api/tables")
    assert r.status_code == 403


def test_duplicate_customer_is_conflict(client, customer):
    r = client.post("/api/cxc/clientes", json={"code": "C001", "name": "Otro"})
    assert r.status_code == 409


def test_documents_update_credit_usage(client, customer):
    r = _document(client, customer["id"], "F-100", 400, document_date="2024-05-01", payment_term_code="CRED30")
    assert r.status_code == 201
    doc = r.json["document"]
    assert doc["status"] == "PENDIENTE"
    assert doc["balance_amount"] == 400.0
    assert doc["due_date"] == "2024-05-31"

    r = _document(client, customer["id"], "F-100", 50)
    assert r.status_code == 409

    r = client.get("/api/cxc/clientes/C001")
    assert r.json["credit"]["credit_used"] == 400.0
    assert r.json["credit"]["available_credit"] == 600.0


def test_apply_and_revert_receipt(client, customer):
    invoice = _document(client, customer["id"], "F-200", 300).json["document"]
    receipt = _document(client, customer["id"], "R-1", 120, document_type="RECEIPT").json["document"]

    r = client.post(
        "/api/cxc/documentos/aplicaciones",
        json={"applications": [{"applied_document_id": receipt["id"], "target_document_id": invoice["id"], "amount": 500}]},
    )
    assert r.status_code == 400
    assert "excede" in r.json["message"]

    r = client.post(
        "/api/cxc/documentos/aplicaciones",
        json={"applications": [{"applied_document_id": receipt["id"], "target_document_id": invoice["id"], "amount": 120}]},
    )
    assert r.status_code == 201
    application_id = r.json["items"][0]["id"]

    r = client.get(f"/api/cxc/documentos/{invoice['id']}")
    assert r.json["document"]["balance_amount"] == 180.0
    assert len(r.json["applications"]) == 1
    assert client.get("/api/cxc/clientes/C001").json["credit"]["credit_used"] == 180.0

    # a document with applications cannot be cancelled
    r = client.post(f"/api/cxc/documentos/{invoice['id']}/cancel", json={})
    assert r.status_code == 409

    r = client.delete(f"/api/cxc/documentos/aplicaciones/{application_id}")
    assert r.status_code == 200
    r = client.get(f"/api/cxc/documentos/{invoice['id']}")
    assert r.json["document"]["balance_amount"] == 300.0
    r = client.get(f"/api/cxc/documentos/{receipt['id']}")
    assert r.json["document"]["balance_amount"] == 120.0


def test_aging_buckets(client, customer):
    _document(client, customer["id"], "F-1", 100, document_date="2024-03-01", due_date="2024-03-20")
    _document(client, customer["id"], "F-2", 200, document_date="2024-01-01", due_date="2024-01-31")
    _document(client, customer["id"], "F-3", 50, document_date="2023-10-01", due_date="2023-10-31")

    r = client.get("/api/reportes/cxc/antiguedad?asOf=2024-03-15&customer=C001")
    assert r.status_code == 200
    report = r.json["report"]
    assert report["as_of"] == "2024-03-15"
    row = report["customers"][0]
    assert row["current"] == 100.0
    assert row["31_60"] == 200.0
    assert row["90_plus"] == 50.0
    assert row["total"] == 350.0
    assert row["documents"] == 3
    assert report["totals"]["total"] == 350.0

    r = client.get("/api/reportes/cxc/estado-cuenta?customer=C001")
    assert r.status_code == 400

    r = client.get("/api/reportes/cxc/estado-cuenta?customer=C001&from=2024-01-01&to=2024-03-31")
    assert r.status_code == 200
    statement = r.json["report"]
    assert statement["opening_balance"] == 50.0
    assert statement["closing_balance"] == 350.0


@pytest.fixture()
def cash_ready(client):
    client.post("/api/cajas", json={"code": "CAJA1", "name": "Caja mostrador", "warehouse_code": "PRINCIPAL"})
    admin_id = int(client.get("/api/session").json["session"]["sub"])
    client.post("/api/cajas/CAJA1/usuarios", json={"admin_user_id": admin_id, "is_default": True})
    client.post("/api/preferencias/consecutivos/cajas", json={"cash_register_code": "CAJA1", "sequence_code": "FAC"})
    r = client.post("/api/cajas/aperturas", json={"cash_register_code": "CAJA1", "opening_amount": 0})
    assert r.status_code == 201


def _sale(client, customer_id, payments, sale_type="CREDITO"):
    return client.post(
        "/api/invoices",
        json={
            "customer_id": customer_id,
            "sale_type": sale_type,
            "items": [{"description": "Martillo", "quantity": 1, "unit_price": 250}],
            "payments": payments,
        },
    )


def test_retail_invoice_requires_customer(client, cash_ready):
    r = client.post("/api/invoices", json={"items": [{"description": "Martillo", "quantity": 1, "unit_price": 250}], "payments": [{"method": "CASH", "amount": 250}]})
    assert r.status_code == 400
    assert r.json["message"].startswith("Debes seleccionar un cliente")


def test_credit_sale_opens_receivable(app, client, customer, cash_ready):
    r = _sale(client, customer["id"], [{"method": "CASH", "amount": 50}])
    assert r.status_code == 201
    inv = r.json["invoice"]
    assert inv["sale_type"] == "CREDITO"
    assert inv["due_date"] is not None

    with session_scope(app) as s:
        doc = s.query(CustomerDocument).filter(CustomerDocument.related_invoice_id == inv["id"], CustomerDocument.document_type == "INVOICE").one()
        assert doc.document_number == inv["invoice_number"]
        assert doc.balance_amount == 200.0
        assert doc.original_amount == 250.0
    assert client.get("/api/cxc/clientes/C001").json["credit"]["credit_used"] == 200.0

    # fully paid credit sale leaves no receivable
    r = _sale(client, customer["id"], [{"method": "CARD", "amount": 250}])
    assert r.status_code == 201
    with session_scope(app) as s:
        assert s.query(CustomerDocument).filter(CustomerDocument.related_invoice_id == r.json["invoice"]["id"]).count() == 0

    # the receivable follows the invoice when it is cancelled
    r = client.patch(f"/api/invoices/{inv['id']}", json={"status": "ANULADA", "reason": "Devolución"})
    assert r.status_code == 200
    with session_scope(app) as s:
        doc = s.query(CustomerDocument).filter(CustomerDocument.related_invoice_id == inv["id"], CustomerDocument.document_type == "INVOICE").one()
        assert doc.status == "CANCELADO"
    assert client.get("/api/cxc/clientes/C001").json["credit"]["credit_used"] == 0.0


def test_blocked_customer_cannot_buy_on_credit(client, customer, cash_ready):
    r = client.patch("/api/cxc/clientes/C001/credito", json={"status": "BLOCKED", "reason": "Mora"})
    assert r.status_code == 200
    assert r.json["credit"]["is_blocked"] is True

    r = _sale(client, customer["id"], [])
    assert r.status_code == 409
    assert r.json["message"] == "El cliente tiene el crédito bloqueado"

    r = _sale(client, customer["id"], [{"method": "CASH", "amount": 250}], sale_type="CONTADO")
    assert r.status_code == 201


def test_invoice_with_applied_payments_cannot_be_cancelled(client, customer, cash_ready):
    inv = _sale(client, customer["id"], []).json["invoice"]
    docs = client.get("/api/cxc/documentos?customer=C001").json["items"]
    invoice_doc = next(d for d in docs if d["document_number"] == inv["invoice_number"])
    receipt = _document(client, customer["id"], "R-9", 100, document_type="RECEIPT").json["document"]
    client.post(
        "/api/cxc/documentos/aplicaciones",
        json={"applications": [{"applied_document_id": receipt["id"], "target_document_id": invoice_doc["id"], "amount": 100}]},
    )

    r = client.patch(f"/api/invoices/{inv['id']}", json={"status": "ANULADA"})
    assert r.status_code == 409
    assert "pagos aplicados" in r.json["message"]

    r = client.post(f"/api/cxc/documentos/{invoice_doc['id']}/cancel", json={})
    assert r.status_code == 409


def test_counter_payment_on_credit_sale_keeps_reports_in_agreement(app, client, customer, cash_ready):
    inv = _sale(client, customer["id"], [{"method": "CASH", "amount": 50}]).json["invoice"]

    with session_scope(app) as s:
        docs = {
            d.document_type: d
            for d in s.query(CustomerDocument).filter(CustomerDocument.related_invoice_id == inv["id"]).all()
        }
        assert (docs["INVOICE"].original_amount, docs["INVOICE"].balance_amount) == (250.0, 200.0)
        assert (docs["RECEIPT"].original_amount, docs["RECEIPT"].balance_amount) == (50.0, 0.0)
        assert docs["RECEIPT"].status == "PAGADO"
        invoice_doc_id = docs["INVOICE"].id

    applications = client.get(f"/api/cxc/documentos/aplicaciones?documentId={invoice_doc_id}").json["items"]
    assert [(a["applied_document_type"], a["amount"]) for a in applications] == [("RECEIPT", 50.0)]

    credit_used = client.get("/api/cxc/clientes/C001").json["credit"]["credit_used"]
    aging = client.get("/api/reportes/cxc/antiguedad?asOf=2100-01-01&customer=C001").json["report"]["totals"]["total"]
    statement = client.get("/api/reportes/cxc/estado-cuenta?customer=C001&from=2000-01-01&to=2100-01-01").json["report"]
    assert statement["closing_balance"] == aging == credit_used == 200.0
    assert [m["document_type"] for m in statement["movements"]] == ["INVOICE", "RECEIPT"]


def test_sub_cent_application_keeps_balances_consistent(client, customer):
    invoice = _document(client, customer["id"], "F-300", 300).json["document"]
    receipt = _document(client, customer["id"], "R-3", 120, document_type="RECEIPT").json["document"]

    r = client.post(
        "/api/cxc/documentos/aplicaciones",
        json={"applications": [{"applied_document_id": receipt["id"], "target_document_id": invoice["id"], "amount": 100.004}]},
    )
    assert r.status_code == 201
    assert r.json["items"][0]["amount"] == 100.0
    assert client.get(f"/api/cxc/documentos/{invoice['id']}").json["document"]["balance_amount"] == 200.0
    assert client.get(f"/api/cxc/documentos/{receipt['id']}").json["document"]["balance_amount"] == 20.0

    r = client.post(
        "/api/cxc/documentos/aplicaciones",
        json={"applications": [{"applied_document_id": receipt["id"], "target_document_id": invoice["id"], "amount": 0.004}]},
    )
    assert r.status_code == 400
    assert r.json["message"] == "El monto a aplicar debe ser mayor a cero"


def test_applications_follow_document_priority(client, customer):
    invoice = _document(client, customer["id"], "F-400", 100).json["document"]
    receipt = _document(client, customer["id"], "R-4", 40, document_type="RECEIPT").json["document"]
    credit_note = _document(client, customer["id"], "NC-4", 60, document_type="CREDIT_NOTE").json["document"]

    r = client.post(
        "/api/cxc/documentos/aplicaciones",
        json={
            "applications": [
                {"applied_document_id": receipt["id"], "target_document_id": invoice["id"], "amount": 40},
                {"applied_document_id": credit_note["id"], "target_document_id": invoice["id"], "amount": 60},
            ]
        },
    )
    assert r.status_code == 201
    assert [a["applied_document_type"] for a in r.json["items"]] == ["CREDIT_NOTE", "RECEIPT"]
    doc = client.get(f"/api/cxc/documentos/{invoice['id']}").json["document"]
    assert (doc["balance_amount"], doc["status"]) == (0.0, "PAGADO")

    # a retention and a credit note compete for the same balance; the retention goes first
    invoice = _document(client, customer["id"], "F-401", 100).json["document"]
    retention = _document(client, customer["id"], "RET-1", 100, document_type="RETENTION").json["document"]
    credit_note = _document(client, customer["id"], "NC-5", 100, document_type="CREDIT_NOTE").json["document"]
    r = client.post(
        "/api/cxc/documentos/aplicaciones",
        json={
            "applications": [
                {"applied_document_id": credit_note["id"], "target_document_id": invoice["id"], "amount": 100},
                {"applied_document_id": retention["id"], "target_document_id": invoice["id"], "amount": 100},
            ]
        },
    )
    assert r.status_code == 400
    assert r.json["message"] == "El documento objetivo ya está pagado"
    # nothing is kept from a rejected batch
    assert client.get(f"/api/cxc/documentos/{invoice['id']}").json["document"]["balance_amount"] == 100.0
    assert client.get(f"/api/cxc/documentos/{retention['id']}").json["document"]["balance_amount"] == 100.0


def test_credit_lines_mirror_onto_customer(client, customer):
    _document(client, customer["id"], "F-500", 300)

    r = client.post("/api/cxc/credit-lines", json={"customer_code": "C001", "approved_limit": 2000, "blocked_amount": 200})
    assert r.status_code == 201
    line = r.json["credit_line"]
    assert line["status"] == "ACTIVE"
    assert line["available_limit"] == 1500.0
    credit = r.json["credit"]
    assert (credit["credit_limit"], credit["credit_on_hold"], credit["available_credit"]) == (2000.0, 200.0, 1500.0)
    assert credit["usage_percent"] == 0.25

    # new debit documents refresh the active line
    _document(client, customer["id"], "F-501", 100)
    r = client.get("/api/cxc/credit-lines?customer=C001")
    assert r.json["items"][0]["available_limit"] == 1400.0

    r = client.patch(f"/api/cxc/credit-lines/{line['id']}", json={"status": "PAUSED", "reason": "Revisión anual"})
    assert r.status_code == 200
    customer_row = client.get("/api/cxc/clientes/C001").json["customer"]
    assert (customer_row["credit_status"], customer_row["credit_hold_reason"]) == ("ON_HOLD", "Revisión anual")

    r = client.patch(f"/api/cxc/credit-lines/{line['id']}", json={"status": "BLOCKED"})
    assert r.json["credit"]["is_blocked"] is True

    r = client.patch(f"/api/cxc/credit-lines/{line['id']}", json={"status": "ACTIVE", "approved_limit": 500})
    assert r.json["credit"]["limit_warning"] is True
    customer_row = client.get("/api/cxc/clientes/C001").json["customer"]
    assert (customer_row["credit_status"], customer_row["credit_hold_reason"]) == ("ACTIVE", None)

    assert client.post("/api/cxc/credit-lines", json={"customer_code": "C001", "approved_limit": 0}).status_code == 400
    assert client.post("/api/cxc/credit-lines", json={"customer_code": "C999", "approved_limit": 10}).status_code == 404
    assert client.patch("/api/cxc/credit-lines/999", json={"status": "ACTIVE"}).status_code == 404


def test_collection_logs(client, customer):
    other = client.post("/api/cxc/clientes", json={"code": "C002", "name": "Tlapalería Sur"}).json["customer"]
    foreign_doc = _document(client, other["id"], "F-9", 80).json["document"]
    doc = _document(client, customer["id"], "F-600", 150).json["document"]

    r = client.post("/api/cxc/gestiones", json={"customer_id": customer["id"], "document_id": foreign_doc["id"], "notes": "Llamada"})
    assert r.status_code == 400
    assert r.json["message"] == "El documento no pertenece al cliente indicado"
    r = client.post("/api/cxc/gestiones", json={"customer_id": customer["id"], "notes": "   "})
    assert r.status_code == 400
    r = client.post("/api/cxc/gestiones", json={"customer_id": 999, "notes": "Llamada"})
    assert r.status_code == 404

    r = client.post(
        "/api/cxc/gestiones",
        json={
            "customer_id": customer["id"],
            "document_id": doc["id"],
            "contact_method": " Teléfono ",
            "notes": "Promete pagar el viernes",
            "follow_up_at": "2024-06-07T10:00:00",
        },
    )
    assert r.status_code == 201
    log = r.json["log"]
    assert log["contact_method"] == "Teléfono"
    assert log["document_number"] == "F-600"
    assert log["follow_up_at"].startswith("2024-06-07T10:00")

    r = client.get(f"/api/cxc/gestiones?customerId={customer['id']}")
    assert [item["id"] for item in r.json["items"]] == [log["id"]]

    assert client.delete(f"/api/cxc/gestiones/{log['id']}").status_code == 200
    assert client.delete(f"/api/cxc/gestiones/{log['id']}").status_code == 404


def test_disputes_stamp_resolution(client, customer):
    doc = _document(client, customer["id"], "F-700", 90).json["document"]

    r = client.post("/api/cxc/disputas", json={"customer_id": customer["id"], "document_id": doc["id"]})
    assert r.status_code == 400
    r = client.post(
        "/api/cxc/disputas",
        json={"customer_id": customer["id"], "document_id": doc["id"], "dispute_code": "D-1", "description": "Cobro duplicado"},
    )
    assert r.status_code == 201
    dispute = r.json["dispute"]
    assert (dispute["status"], dispute["resolved_at"]) == ("OPEN", None)

    r = client.patch(f"/api/cxc/disputas/{dispute['id']}", json={"status": "IN_PROGRESS"})
    assert r.json["dispute"]["resolved_at"] is None
    r = client.patch(f"/api/cxc/disputas/{dispute['id']}", json={"status": "RESOLVED", "resolution_notes": "Se emitió nota de crédito"})
    resolved_at = r.json["dispute"]["resolved_at"]
    assert resolved_at is not None
    r = client.patch(f"/api/cxc/disputas/{dispute['id']}", json={"status": "CLOSED"})
    assert r.json["dispute"]["resolved_at"] == resolved_at

    assert client.patch(f"/api/cxc/disputas/{dispute['id']}", json={"status": "ARCHIVED"}).status_code == 400
    r = client.get("/api/cxc/disputas?status=CLOSED")
    assert [d["id"] for d in r.json["items"]] == [dispute["id"]]


def test_payment_terms_crud_and_in_use_guard(client, customer):
    r = client.post("/api/preferencias/terminos-pago", json={"code": "cred45", "name": "Crédito 45 días", "days": 45, "grace_days": 5})
    assert r.status_code == 201
    assert (r.json["term"]["code"], r.json["term"]["days"], r.json["term"]["grace_days"]) == ("CRED45", 45, 5)

    assert client.post("/api/preferencias/terminos-pago", json={"code": "CRED45", "name": "Otra", "days": 45}).status_code == 409
    assert client.post("/api/preferencias/terminos-pago", json={"code": "CRED60", "name": "Sesenta", "days": -1}).status_code == 400

    r = client.patch("/api/preferencias/terminos-pago/CRED45", json={"name": "Crédito 45", "grace_days": 0})
    assert r.status_code == 200
    assert r.json["term"]["name"] == "Crédito 45"

    # the customer fixture uses CRED30
    r = client.delete("/api/preferencias/terminos-pago/CRED30")
    assert r.status_code == 409
    assert r.json["message"] == "No se puede eliminar la condición porque hay clientes asociados"

    assert client.delete("/api/preferencias/terminos-pago/CRED45").status_code == 200
    assert client.delete("/api/preferencias/terminos-pago/CRED45").status_code == 404
    codes = [t["code"] for t in client.get("/api/preferencias/terminos-pago").json["items"]]
    assert "CRED45" not in codes and "CRED30" in codes


def test_summary_and_due_schedule_reports(client, customer):
    _document(client, customer["id"], "F-1", 100, document_date="2024-03-01", due_date="2024-03-20")
    _document(client, customer["id"], "F-2", 200, document_date="2024-01-01", due_date="2024-01-31")
    client.patch("/api/cxc/clientes/C001", json={"credit_limit": 350})

    r = client.get("/api/reportes/cxc/resumen?asOf=2024-03-15")
    assert r.status_code == 200
    summary = r.json["report"]
    assert summary["open_balance"] == 300.0
    assert summary["overdue_balance"] == 200.0
    assert (summary["open_documents"], summary["overdue_documents"], summary["customers_with_balance"]) == (2, 1, 1)
    assert [w["customer_code"] for w in summary["credit_warnings"]] == ["C001"]

    r = client.get("/api/reportes/cxc/vencimientos?from=2024-03-01&to=2024-03-31")
    assert r.status_code == 200
    schedule = r.json["report"]
    assert [i["document_number"] for i in schedule["items"]] == ["F-1"]
    assert schedule["total"] == 100.0

    assert client.get("/api/reportes/cxc/vencimientos?from=2024-03-31&to=2024-03-01").status_code == 400
    assert client.get("/api/reportes/cxc/vencimientos?customer=C999").status_code == 404
