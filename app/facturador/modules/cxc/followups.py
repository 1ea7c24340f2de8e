from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.facturador.audit import record_event
from app.facturador.modules.cxc.models import CollectionLog, Customer, CustomerDispute, CustomerDocument
from app.facturador.utils import clean_code, clean_str, iso, parse_datetime, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser


DISPUTE_STATUSES = ("OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED")
DISPUTE_FINAL_STATUSES = ("RESOLVED", "CLOSED")


def _resolve_customer_and_document(s: "Session", customer_id, document_id) -> tuple[Customer, CustomerDocument | None]:
    cid = to_int(customer_id)
    customer = s.get(Customer, cid) if cid is not None else None
    if customer is None:
        raise ValueError("El cliente indicado no existe")
    did = to_int(document_id)
    if did is None:
        return customer, None
    document = s.get(CustomerDocument, did)
    if document is None:
        raise ValueError("El documento indicado no existe")
    if document.customer_id != customer.id:
        raise ValueError("El documento no pertenece al cliente indicado")
    return customer, document


# ---------- Collection logs ----------
def collection_log_to_dict(log: CollectionLog) -> dict:
    return {
        "id": log.id,
        "customer_id": log.customer_id,
        "customer_code": log.customer.code,
        "document_id": log.document_id,
        "document_number": log.document.document_number if log.document else None,
        "contact_method": log.contact_method,
        "contact_name": log.contact_name,
        "notes": log.notes,
        "outcome": log.outcome,
        "follow_up_at": iso(log.follow_up_at),
        "created_by": log.created_by,
        "created_at": iso(log.created_at),
    }


def list_collection_logs(s: "Session", *, customer_id: int | None = None, document_id: int | None = None) -> list[CollectionLog]:
    q = s.query(CollectionLog)
    if customer_id is not None:
        q = q.filter(CollectionLog.customer_id == customer_id)
    if document_id is not None:
        q = q.filter(CollectionLog.document_id == document_id)
    return q.order_by(CollectionLog.created_at.desc(), CollectionLog.id.desc()).all()


def create_collection_log(s: "Session", payload: dict, user: "AdminUser") -> CollectionLog:
    customer, document = _resolve_customer_and_document(s, payload.get("customer_id"), payload.get("document_id"))
    notes = clean_str(payload.get("notes"), 512)
    if not notes:
        raise ValueError("Las notas de la gestión son obligatorias")
    log = CollectionLog(
        customer_id=customer.id,
        document_id=document.id if document else None,
        contact_method=clean_str(payload.get("contact_method"), 120),
        contact_name=clean_str(payload.get("contact_name"), 160),
        notes=notes,
        outcome=clean_str(payload.get("outcome"), 240),
        follow_up_at=parse_datetime(payload.get("follow_up_at")),
        created_by=user.id,
    )
    log.customer = customer
    log.document = document
    s.add(log)
    s.flush()
    record_event(s, actor=user, action="cxc.collection_log.create", entity_type="CollectionLog", entity_id=str(log.id), metadata={"customer": customer.code})
    return log


def delete_collection_log(s: "Session", log_id: int, user: "AdminUser") -> None:
    log = s.get(CollectionLog, log_id)
    if log is None:
        raise ValueError("La gestión indicada no existe")
    record_event(s, actor=user, action="cxc.collection_log.delete", entity_type="CollectionLog", entity_id=str(log.id), metadata={"customer_id": log.customer_id})
    s.delete(log)
    s.flush()


# ---------- Disputes ----------
def dispute_to_dict(d: CustomerDispute) -> dict:
    return {
        "id": d.id,
        "customer_id": d.customer_id,
        "customer_code": d.customer.code,
        "document_id": d.document_id,
        "document_number": d.document.document_number if d.document else None,
        "dispute_code": d.dispute_code,
        "description": d.description,
        "status": d.status,
        "resolution_notes": d.resolution_notes,
        "resolved_at": iso(d.resolved_at),
        "created_at": iso(d.created_at),
        "updated_at": iso(d.updated_at),
    }


def list_disputes(
    s: "Session",
    *,
    customer_id: int | None = None,
    document_id: int | None = None,
    statuses: list[str] | None = None,
) -> list[CustomerDispute]:
    q = s.query(CustomerDispute)
    if customer_id is not None:
        q = q.filter(CustomerDispute.customer_id == customer_id)
    if document_id is not None:
        q = q.filter(CustomerDispute.document_id == document_id)
    if statuses:
        q = q.filter(CustomerDispute.status.in_(statuses))
    return q.order_by(CustomerDispute.created_at.desc(), CustomerDispute.id.desc()).all()


def _set_dispute_status(d: CustomerDispute, status: str) -> None:
    if status not in DISPUTE_STATUSES:
        raise ValueError("Estado de disputa inválido")
    d.status = status
    if status in DISPUTE_FINAL_STATUSES and d.resolved_at is None:
        d.resolved_at = datetime.utcnow()


def create_dispute(s: "Session", payload: dict, user: "AdminUser") -> CustomerDispute:
    customer, document = _resolve_customer_and_document(s, payload.get("customer_id"), payload.get("document_id"))
    description = clean_str(payload.get("description"), 600)
    if not description:
        raise ValueError("La descripción de la disputa es obligatoria")
    d = CustomerDispute(
        customer_id=customer.id,
        document_id=document.id if document else None,
        dispute_code=clean_str(payload.get("dispute_code"), 60),
        description=description,
        resolution_notes=clean_str(payload.get("resolution_notes"), 600),
        resolved_at=parse_datetime(payload.get("resolved_at")),
        created_by=user.id,
    )
    d.customer = customer
    d.document = document
    _set_dispute_status(d, clean_code(payload.get("status")) or "OPEN")
    s.add(d)
    s.flush()
    record_event(s, actor=user, action="cxc.dispute.create", entity_type="CustomerDispute", entity_id=str(d.id), metadata={"customer": customer.code, "status": d.status})
    return d


def update_dispute(s: "Session", d: CustomerDispute, payload: dict, user: "AdminUser") -> CustomerDispute:
    if "description" in payload:
        description = clean_str(payload.get("description"), 600)
        if not description:
            raise ValueError("La descripción de la disputa es obligatoria")
        d.description = description
    if "dispute_code" in payload:
        d.dispute_code = clean_str(payload.get("dispute_code"), 60)
    if "resolution_notes" in payload:
        d.resolution_notes = clean_str(payload.get("resolution_notes"), 600)
    if "resolved_at" in payload:
        d.resolved_at = parse_datetime(payload.get("resolved_at"))
    if "document_id" in payload:
        _customer, document = _resolve_customer_and_document(s, d.customer_id, payload.get("document_id"))
        d.document_id = document.id if document else None
        d.document = document
    if "status" in payload:
        _set_dispute_status(d, clean_code(payload.get("status")))
    d.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="cxc.dispute.edit", entity_type="CustomerDispute", entity_id=str(d.id), metadata={"status": d.status})
    return d
