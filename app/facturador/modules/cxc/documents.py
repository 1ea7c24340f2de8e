"""
Customer documents and their applications.

A document's balance is its original amount minus every application that
references it, whether as the applied (paying) document or as the target.
All balance changes go through `adjust_balance`.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.facturador.audit import record_event
from app.facturador.modules.cxc.customers import DEBIT_DOCUMENT_TYPES, calculate_due_date, resolve_payment_term, sync_credit_usage
from app.facturador.modules.cxc.models import Customer, CustomerDocument, CustomerDocumentApplication
from app.facturador.utils import clean_code, clean_str, iso, parse_date, parse_datetime, round_money, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser


DOCUMENT_TYPES = ("INVOICE", "CREDIT_NOTE", "DEBIT_NOTE", "RECEIPT", "RETENTION", "ADJUSTMENT")
DOCUMENT_STATUSES = ("PENDIENTE", "PAGADO", "CANCELADO", "BORRADOR")
SETTLED_STATUSES = ("PAGADO", "CANCELADO")
APPLICATION_PRIORITY = {
    "RETENTION": 0,
    "CREDIT_NOTE": 1,
    "ADJUSTMENT": 2,
    "RECEIPT": 3,
    "DEBIT_NOTE": 4,
    "INVOICE": 5,
}
AMOUNT_TOLERANCE = 0.0001
_ORDER_COLUMNS = {
    "documentDate": CustomerDocument.document_date,
    "dueDate": CustomerDocument.due_date,
    "createdAt": CustomerDocument.created_at,
}


def is_debit_type(document_type: str) -> bool:
    return document_type in DEBIT_DOCUMENT_TYPES


def document_to_dict(d: CustomerDocument) -> dict:
    return {
        "id": d.id,
        "customer_id": d.customer_id,
        "customer_code": d.customer.code,
        "customer_name": d.customer.name,
        "payment_term_id": d.payment_term_id,
        "payment_term_code": d.payment_term.code if d.payment_term else None,
        "related_invoice_id": d.related_invoice_id,
        "document_type": d.document_type,
        "document_number": d.document_number,
        "document_date": iso(d.document_date),
        "due_date": iso(d.due_date),
        "currency_code": d.currency_code,
        "original_amount": d.original_amount,
        "balance_amount": d.balance_amount,
        "status": d.status,
        "reference": d.reference,
        "notes": d.notes,
        "metadata": json.loads(d.metadata_json) if d.metadata_json else None,
        "created_at": iso(d.created_at),
    }


def application_to_dict(a: CustomerDocumentApplication) -> dict:
    return {
        "id": a.id,
        "applied_document_id": a.applied_document_id,
        "applied_document_number": a.applied_document.document_number,
        "applied_document_type": a.applied_document.document_type,
        "target_document_id": a.target_document_id,
        "target_document_number": a.target_document.document_number,
        "target_document_type": a.target_document.document_type,
        "amount": a.amount,
        "application_date": iso(a.application_date),
        "reference": a.reference,
        "notes": a.notes,
    }


# ---------- Documents ----------
def create_document(
    s: "Session",
    payload: dict,
    user: "AdminUser | None",
    *,
    default_currency: str,
    related_invoice_id: int | None = None,
) -> CustomerDocument:
    amount = to_float(payload.get("original_amount"))
    if amount is None or amount <= 0:
        raise ValueError("El monto del documento debe ser mayor a cero")
    document_type = clean_code(payload.get("document_type"))
    if document_type not in DOCUMENT_TYPES:
        raise ValueError(f"Tipo de documento inválido. Debe ser uno de: {', '.join(DOCUMENT_TYPES)}")
    number = clean_code(payload.get("document_number"))
    if not number:
        raise ValueError("El número de documento es obligatorio")

    customer = s.get(Customer, to_int(payload.get("customer_id"))) if to_int(payload.get("customer_id")) is not None else None
    if customer is None:
        raise ValueError("El cliente indicado no existe")

    term = resolve_payment_term(s, payload.get("payment_term_id"), payload.get("payment_term_code"))
    document_date = parse_date(payload.get("document_date")) or date.today()
    due_date = parse_date(payload.get("due_date"))
    if due_date is None:
        if term is None or int(term.days or 0) <= 0:
            due_date = document_date
        else:
            due_date = calculate_due_date(document_date, term)

    balance = to_float(payload.get("balance_amount"))
    balance = round_money(amount if balance is None else balance)
    if balance < 0:
        raise ValueError("El saldo del documento no puede ser negativo")
    status = clean_code(payload.get("status"))
    if status and status not in DOCUMENT_STATUSES:
        raise ValueError("Estado de documento inválido")
    if not status:
        status = "PAGADO" if balance <= 0 else "PENDIENTE"

    duplicate = (
        s.query(CustomerDocument)
        .filter(
            CustomerDocument.customer_id == customer.id,
            CustomerDocument.document_type == document_type,
            CustomerDocument.document_number == number,
        )
        .first()
    )
    if duplicate is not None:
        raise ValueError("Ya existe un documento con ese número")

    metadata = payload.get("metadata")
    doc = CustomerDocument(
        customer_id=customer.id,
        payment_term_id=term.id if term else None,
        related_invoice_id=related_invoice_id,
        document_type=document_type,
        document_number=number[:60],
        document_date=document_date,
        due_date=due_date,
        currency_code=(clean_code(payload.get("currency_code")) or default_currency)[:3],
        original_amount=round_money(amount),
        balance_amount=balance,
        status=status,
        reference=clean_str(payload.get("reference"), 120),
        notes=clean_str(payload.get("notes"), 400),
        metadata_json=json.dumps(metadata, sort_keys=True) if isinstance(metadata, dict) else None,
    )
    doc.customer = customer
    doc.payment_term = term
    s.add(doc)
    s.flush()
    if is_debit_type(document_type):
        sync_credit_usage(s, customer.id)
    record_event(
        s,
        actor=user,
        action="cxc.document.create",
        entity_type="CustomerDocument",
        entity_id=str(doc.id),
        metadata={"customer": customer.code, "type": document_type, "number": doc.document_number, "amount": doc.original_amount},
    )
    return doc


def list_documents(
    s: "Session",
    *,
    customer_id: int | None = None,
    types: list[str] | None = None,
    statuses: list[str] | None = None,
    include_settled: bool = False,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    order_by: str | None = None,
    direction: str | None = None,
    limit: int | None = None,
) -> list[CustomerDocument]:
    q = s.query(CustomerDocument)
    if customer_id is not None:
        q = q.filter(CustomerDocument.customer_id == customer_id)
    if types:
        q = q.filter(CustomerDocument.document_type.in_(types))
    if statuses:
        q = q.filter(CustomerDocument.status.in_(statuses))
    elif not include_settled:
        q = q.filter(CustomerDocument.status.notin_(SETTLED_STATUSES))
    if date_from:
        q = q.filter(CustomerDocument.document_date >= date_from)
    if date_to:
        q = q.filter(CustomerDocument.document_date <= date_to)
    if search and search.strip():
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                CustomerDocument.document_number.ilike(like),
                CustomerDocument.reference.ilike(like),
                CustomerDocument.notes.ilike(like),
            )
        )
    column = _ORDER_COLUMNS.get(order_by or "documentDate", CustomerDocument.document_date)
    ordering = column.asc() if (direction or "desc").lower() == "asc" else column.desc()
    limit = 200 if limit is None else max(1, min(500, limit))
    return q.order_by(ordering, CustomerDocument.id.desc()).limit(limit).all()


def get_document(s: "Session", document_id: int) -> CustomerDocument | None:
    return s.get(CustomerDocument, document_id)


def update_document(s: "Session", doc: CustomerDocument, payload: dict, user: "AdminUser") -> CustomerDocument:
    if "notes" in payload:
        doc.notes = clean_str(payload.get("notes"), 400)
    if "reference" in payload:
        doc.reference = clean_str(payload.get("reference"), 120)
    if "due_date" in payload:
        doc.due_date = parse_date(payload.get("due_date"))
    if "status" in payload:
        status = clean_code(payload.get("status"))
        if status not in DOCUMENT_STATUSES:
            raise ValueError("Estado de documento inválido")
        doc.status = status
    doc.updated_at = datetime.utcnow()
    s.flush()
    if is_debit_type(doc.document_type):
        sync_credit_usage(s, doc.customer_id)
    record_event(
        s,
        actor=user,
        action="cxc.document.edit",
        entity_type="CustomerDocument",
        entity_id=str(doc.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return doc


def adjust_balance(doc: CustomerDocument, delta: float) -> CustomerDocument:
    new_balance = float(doc.balance_amount) + delta
    if new_balance < -0.01:
        raise ValueError("El saldo del documento no puede ser negativo")
    doc.balance_amount = round_money(max(0.0, new_balance))
    if doc.balance_amount <= 0:
        doc.status = "PAGADO"
    doc.updated_at = datetime.utcnow()
    return doc


def has_applications(s: "Session", document_id: int, *, ignore_applied_id: int | None = None) -> bool:
    q = s.query(CustomerDocumentApplication.id).filter(
        or_(
            CustomerDocumentApplication.applied_document_id == document_id,
            CustomerDocumentApplication.target_document_id == document_id,
        )
    )
    if ignore_applied_id is not None:
        q = q.filter(CustomerDocumentApplication.applied_document_id != ignore_applied_id)
    return q.first() is not None


def cancel_document(s: "Session", document_id: int, user: "AdminUser | None", *, allow_invoice_link: bool = False) -> CustomerDocument:
    doc = s.get(CustomerDocument, document_id)
    if doc is None:
        raise ValueError("El documento indicado no existe")
    if doc.related_invoice_id is not None and not allow_invoice_link:
        raise ValueError("Este documento proviene del módulo de facturación. Debes anularlo desde su módulo de origen.")
    if has_applications(s, doc.id):
        raise ValueError("No puedes anular un documento con aplicaciones activas. Reviértelas antes de continuar.")
    if doc.status == "CANCELADO":
        return doc
    doc.status = "CANCELADO"
    doc.balance_amount = 0
    doc.updated_at = datetime.utcnow()
    s.flush()
    if is_debit_type(doc.document_type):
        sync_credit_usage(s, doc.customer_id)
    record_event(
        s,
        actor=user,
        action="cxc.document.cancel",
        entity_type="CustomerDocument",
        entity_id=str(doc.id),
        metadata={"number": doc.document_number, "type": doc.document_type},
    )
    return doc


def find_invoice_document(s: "Session", invoice_id: int, *, document_type: str = "INVOICE") -> CustomerDocument | None:
    return (
        s.query(CustomerDocument)
        .filter(CustomerDocument.related_invoice_id == invoice_id, CustomerDocument.document_type == document_type)
        .first()
    )


# ---------- Applications ----------
def list_applications(s: "Session", *, document_id: int | None = None, customer_id: int | None = None) -> list[CustomerDocumentApplication]:
    q = s.query(CustomerDocumentApplication)
    if document_id is not None:
        q = q.filter(
            or_(
                CustomerDocumentApplication.applied_document_id == document_id,
                CustomerDocumentApplication.target_document_id == document_id,
            )
        )
    if customer_id is not None:
        ids = s.query(CustomerDocument.id).filter(CustomerDocument.customer_id == customer_id)
        q = q.filter(CustomerDocumentApplication.applied_document_id.in_(ids))
    return q.order_by(CustomerDocumentApplication.application_date.desc(), CustomerDocumentApplication.id.desc()).all()


def _validate_application(applied: CustomerDocument, target: CustomerDocument, amount: float) -> None:
    if applied.id == target.id:
        raise ValueError("Un documento no puede aplicarse a sí mismo")
    if applied.customer_id != target.customer_id:
        raise ValueError("Los documentos deben pertenecer al mismo cliente")
    if applied.status == "CANCELADO" or target.status == "CANCELADO":
        raise ValueError("No puedes aplicar documentos anulados")
    if target.status == "PAGADO":
        raise ValueError("El documento objetivo ya está pagado")
    if amount > float(applied.balance_amount) + AMOUNT_TOLERANCE:
        raise ValueError("El monto excede el saldo disponible del documento aplicado")
    if amount > float(target.balance_amount) + AMOUNT_TOLERANCE:
        raise ValueError("El monto excede el saldo pendiente del documento objetivo")


def apply_documents(s: "Session", inputs: list[dict], user: "AdminUser | None") -> list[CustomerDocumentApplication]:
    """
    Apply payments/credits to debit documents. Inputs are processed by the
    applied document's priority (retentions first, invoices last).
    """
    if not inputs:
        return []

    applied_docs: dict[int, CustomerDocument] = {}
    for raw in inputs:
        applied_id = to_int(raw.get("applied_document_id"))
        doc = s.get(CustomerDocument, applied_id) if applied_id is not None else None
        if doc is None:
            raise ValueError(f"El documento aplicado {raw.get('applied_document_id')} no existe")
        applied_docs[doc.id] = doc

    ordered = sorted(
        inputs,
        key=lambda raw: APPLICATION_PRIORITY.get(applied_docs[to_int(raw.get("applied_document_id"))].document_type, 99),
    )

    results: list[CustomerDocumentApplication] = []
    customers_to_sync: set[int] = set()
    for raw in ordered:
        amount = to_float(raw.get("amount"))
        if amount is not None:
            amount = round_money(amount)
        if amount is None or amount <= 0:
            raise ValueError("El monto a aplicar debe ser mayor a cero")
        applied = applied_docs[to_int(raw.get("applied_document_id"))]
        target_id = to_int(raw.get("target_document_id"))
        target = s.get(CustomerDocument, target_id) if target_id is not None else None
        if target is None:
            raise ValueError(f"El documento objetivo {raw.get('target_document_id')} no existe")
        _validate_application(applied, target, amount)

        application = CustomerDocumentApplication(
            applied_document_id=applied.id,
            target_document_id=target.id,
            amount=amount,
            application_date=parse_datetime(raw.get("application_date")) or datetime.utcnow(),
            reference=clean_str(raw.get("reference"), 120),
            notes=clean_str(raw.get("notes"), 400),
        )
        application.applied_document = applied
        application.target_document = target
        s.add(application)

        adjust_balance(applied, -amount)
        adjust_balance(target, -amount)
        if float(target.balance_amount) > 0 and target.status == "PAGADO":
            target.status = "PENDIENTE"
        s.flush()
        results.append(application)

        for doc in (applied, target):
            if is_debit_type(doc.document_type):
                customers_to_sync.add(doc.customer_id)

    for customer_id in sorted(customers_to_sync):
        sync_credit_usage(s, customer_id)
    record_event(
        s,
        actor=user,
        action="cxc.document.apply",
        entity_type="CustomerDocumentApplication",
        entity_id=",".join(str(a.id) for a in results),
        metadata={"count": len(results), "total": round_money(sum(float(a.amount) for a in results))},
    )
    return results


def delete_application(s: "Session", application_id: int, user: "AdminUser | None") -> None:
    application = s.get(CustomerDocumentApplication, application_id)
    if application is None:
        raise ValueError("La aplicación indicada no existe")
    amount = float(application.amount)
    touched = []
    for doc in (application.applied_document, application.target_document):
        was_paid = doc.status == "PAGADO"
        doc.balance_amount = round_money(min(float(doc.original_amount), float(doc.balance_amount) + amount))
        if was_paid and doc.balance_amount > 0:
            doc.status = "PENDIENTE"
        doc.updated_at = datetime.utcnow()
        touched.append(doc)
    s.delete(application)
    s.flush()
    for customer_id in sorted({d.customer_id for d in touched if is_debit_type(d.document_type)}):
        sync_credit_usage(s, customer_id)
    record_event(
        s,
        actor=user,
        action="cxc.application.delete",
        entity_type="CustomerDocumentApplication",
        entity_id=str(application_id),
        metadata={"amount": amount},
    )
