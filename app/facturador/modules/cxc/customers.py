"""
Payment terms, customers and credit lines.

Credit usage is derived, never entered: it is the open balance of the
customer's debit documents and is recomputed by `sync_credit_usage` whenever
those documents change.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.facturador.audit import record_event
from app.facturador.modules.cxc.models import Customer, CustomerCreditLine, CustomerDocument, PaymentTerm
from app.facturador.utils import clean_code, clean_str, iso, parse_datetime, round_money, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser


DEBIT_DOCUMENT_TYPES = ("INVOICE", "DEBIT_NOTE")
CREDIT_STATUSES = ("ACTIVE", "ON_HOLD", "BLOCKED")
CREDIT_LINE_STATUSES = ("ACTIVE", "PAUSED", "BLOCKED")
CREDIT_WARNING_RATIO = 0.8


# ---------- Payment terms ----------
def payment_term_to_dict(t: PaymentTerm) -> dict:
    return {
        "id": t.id,
        "code": t.code,
        "name": t.name,
        "description": t.description,
        "days": t.days,
        "grace_days": t.grace_days,
        "is_active": t.is_active,
    }


def calculate_due_date(start: date, term: PaymentTerm) -> date:
    return start + timedelta(days=int(term.days or 0) + int(term.grace_days or 0))


def list_payment_terms(s: "Session", *, include_inactive: bool = True) -> list[PaymentTerm]:
    q = s.query(PaymentTerm)
    if not include_inactive:
        q = q.filter(PaymentTerm.is_active.is_(True))
    return q.order_by(PaymentTerm.days.asc(), PaymentTerm.code.asc()).all()


def get_payment_term_by_code(s: "Session", code: str | None) -> PaymentTerm | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    return s.query(PaymentTerm).filter(PaymentTerm.code == normalized).one_or_none()


def resolve_payment_term(s: "Session", term_id, term_code) -> PaymentTerm | None:
    """Term by id and/or code; both given must point to the same row."""
    term_id = to_int(term_id)
    code = clean_code(term_code)
    if term_id is None and not code:
        return None
    term = s.get(PaymentTerm, term_id) if term_id is not None else get_payment_term_by_code(s, code)
    if term is None:
        raise ValueError("La condición de pago indicada no existe")
    if term_id is not None and code and term.code != code:
        raise ValueError("La condición de pago indicada no coincide con el código proporcionado")
    return term


def _term_days(payload: dict, key: str, *, required: bool) -> int | None:
    raw = payload.get(key)
    if raw is None or raw == "":
        if required:
            raise ValueError("Los días de la condición de pago son obligatorios")
        return None
    value = to_int(raw)
    if value is None or value < 0:
        raise ValueError("Los días deben ser un entero mayor o igual a cero")
    return value


def create_payment_term(s: "Session", payload: dict, user: "AdminUser") -> PaymentTerm:
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 120)
    if not code or not name:
        raise ValueError("El código y el nombre de la condición de pago son obligatorios")
    if get_payment_term_by_code(s, code):
        raise ValueError("Ya existe una condición de pago con ese código")
    term = PaymentTerm(
        code=code[:30],
        name=name,
        description=clean_str(payload.get("description"), 250),
        days=_term_days(payload, "days", required=True),
        grace_days=_term_days(payload, "grace_days", required=False),
        is_active=bool(payload.get("is_active", True)),
    )
    s.add(term)
    s.flush()
    record_event(s, actor=user, action="cxc.payment_term.create", entity_type="PaymentTerm", entity_id=str(term.id), metadata={"code": term.code})
    return term


def update_payment_term(s: "Session", term: PaymentTerm, payload: dict, user: "AdminUser") -> PaymentTerm:
    if "name" in payload:
        name = clean_str(payload.get("name"), 120)
        if not name:
            raise ValueError("El nombre de la condición de pago es obligatorio")
        term.name = name
    if "description" in payload:
        term.description = clean_str(payload.get("description"), 250)
    if "days" in payload:
        term.days = _term_days(payload, "days", required=True)
    if "grace_days" in payload:
        term.grace_days = _term_days(payload, "grace_days", required=False)
    if "is_active" in payload:
        term.is_active = bool(payload.get("is_active"))
    term.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="cxc.payment_term.edit", entity_type="PaymentTerm", entity_id=str(term.id), metadata={"code": term.code})
    return term


def delete_payment_term(s: "Session", term: PaymentTerm, user: "AdminUser") -> None:
    in_use = s.query(func.count(Customer.id)).filter(Customer.payment_term_id == term.id).scalar()
    if in_use:
        raise ValueError("No se puede eliminar la condición porque hay clientes asociados")
    record_event(s, actor=user, action="cxc.payment_term.delete", entity_type="PaymentTerm", entity_id=str(term.id), metadata={"code": term.code})
    s.delete(term)
    s.flush()


# ---------- Customers ----------
def available_credit(c: Customer) -> float:
    return round_money(max(0.0, float(c.credit_limit or 0) - float(c.credit_used or 0) - float(c.credit_on_hold or 0)))


def customer_summary(c: Customer) -> dict:
    return {
        "id": c.id,
        "code": c.code,
        "name": c.name,
        "tax_id": c.tax_id,
        "payment_term_code": c.payment_term.code if c.payment_term else None,
        "credit_limit": c.credit_limit,
        "credit_used": c.credit_used,
        "credit_on_hold": c.credit_on_hold,
        "available_credit": available_credit(c),
        "credit_status": c.credit_status,
        "is_active": c.is_active,
    }


def customer_to_dict(c: Customer) -> dict:
    data = customer_summary(c)
    data.update(
        {
            "trade_name": c.trade_name,
            "email": c.email,
            "phone": c.phone,
            "mobile_phone": c.mobile_phone,
            "billing_address": c.billing_address,
            "city": c.city,
            "state": c.state,
            "country_code": c.country_code,
            "postal_code": c.postal_code,
            "payment_term_id": c.payment_term_id,
            "credit_hold_reason": c.credit_hold_reason,
            "last_credit_review_at": iso(c.last_credit_review_at),
            "next_credit_review_at": iso(c.next_credit_review_at),
            "notes": c.notes,
        }
    )
    return data


def list_customers(s: "Session", *, search: str | None = None, only_active: bool = False) -> list[Customer]:
    q = s.query(Customer)
    if only_active:
        q = q.filter(Customer.is_active.is_(True))
    if search and search.strip():
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Customer.code.ilike(like),
                Customer.name.ilike(like),
                Customer.trade_name.ilike(like),
                Customer.tax_id.ilike(like),
            )
        )
    return q.order_by(Customer.name.asc(), Customer.code.asc()).all()


def get_customer_by_code(s: "Session", code: str | None) -> Customer | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    return s.query(Customer).filter(Customer.code == normalized).one_or_none()


_CUSTOMER_TEXT_FIELDS = {
    "trade_name": 200,
    "tax_id": 30,
    "email": 150,
    "phone": 50,
    "mobile_phone": 50,
    "billing_address": 250,
    "city": 120,
    "state": 120,
    "postal_code": 20,
    "credit_hold_reason": 250,
    "notes": 400,
}


def _apply_customer_fields(s: "Session", c: Customer, payload: dict) -> None:
    if "name" in payload or c.name is None:
        name = clean_str(payload.get("name"), 200)
        if not name:
            raise ValueError("El nombre del cliente es obligatorio")
        c.name = name
    for key, max_len in _CUSTOMER_TEXT_FIELDS.items():
        if key in payload:
            setattr(c, key, clean_str(payload.get(key), max_len))
    if "country_code" in payload:
        c.country_code = (clean_code(payload.get("country_code")) or "NI")[:3]
    if "payment_term_id" in payload or "payment_term_code" in payload:
        term = resolve_payment_term(s, payload.get("payment_term_id"), payload.get("payment_term_code"))
        c.payment_term_id = term.id if term else None
        c.payment_term = term
    for key in ("credit_limit", "credit_on_hold"):
        if key in payload:
            value = to_float(payload.get(key), 0.0)
            if value is None or value < 0:
                raise ValueError("Los montos de crédito no pueden ser negativos")
            setattr(c, key, round_money(value))
    if "credit_status" in payload:
        status = clean_code(payload.get("credit_status")) or "ACTIVE"
        if status not in CREDIT_STATUSES:
            raise ValueError("Estado de crédito inválido")
        c.credit_status = status
    for key in ("last_credit_review_at", "next_credit_review_at"):
        if key in payload:
            setattr(c, key, parse_datetime(payload.get(key)))
    if "is_active" in payload:
        c.is_active = bool(payload.get("is_active"))


def create_customer(s: "Session", payload: dict, user: "AdminUser") -> Customer:
    code = clean_code(payload.get("code"))
    if not code:
        raise ValueError("El código del cliente es obligatorio")
    if len(code) > 40:
        raise ValueError("El código del cliente admite máximo 40 caracteres")
    if get_customer_by_code(s, code):
        raise ValueError("Ya existe un cliente con ese código")
    c = Customer(code=code, country_code="NI", credit_limit=0, credit_used=0, credit_on_hold=0, credit_status="ACTIVE", is_active=True)
    _apply_customer_fields(s, c, payload)
    s.add(c)
    s.flush()
    record_event(s, actor=user, action="cxc.customer.create", entity_type="Customer", entity_id=str(c.id), metadata={"code": c.code})
    return c


def update_customer(s: "Session", c: Customer, payload: dict, user: "AdminUser") -> Customer:
    _apply_customer_fields(s, c, payload)
    c.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="cxc.customer.edit", entity_type="Customer", entity_id=str(c.id), metadata={"code": c.code, "fields": sorted(payload.keys())})
    return c


# ---------- Credit lines ----------
def credit_line_to_dict(line: CustomerCreditLine) -> dict:
    return {
        "id": line.id,
        "customer_id": line.customer_id,
        "customer_code": line.customer.code,
        "customer_name": line.customer.name,
        "status": line.status,
        "approved_limit": line.approved_limit,
        "available_limit": line.available_limit,
        "blocked_amount": line.blocked_amount,
        "reviewer_admin_user_id": line.reviewer_admin_user_id,
        "review_notes": line.review_notes,
        "reviewed_at": iso(line.reviewed_at),
        "next_review_at": iso(line.next_review_at),
    }


def list_credit_lines(s: "Session", *, customer_id: int | None = None, status: str | None = None) -> list[CustomerCreditLine]:
    q = s.query(CustomerCreditLine)
    if customer_id is not None:
        q = q.filter(CustomerCreditLine.customer_id == customer_id)
    if status:
        q = q.filter(CustomerCreditLine.status == clean_code(status))
    return q.order_by(CustomerCreditLine.created_at.desc(), CustomerCreditLine.id.desc()).all()


def _line_available(line: CustomerCreditLine, customer: Customer) -> float:
    return round_money(max(0.0, float(line.approved_limit) - float(customer.credit_used or 0) - float(line.blocked_amount or 0)))


def _mirror_line_on_customer(line: CustomerCreditLine, customer: Customer, reason: str | None = None) -> None:
    customer.credit_limit = line.approved_limit
    customer.credit_on_hold = line.blocked_amount
    customer.credit_status = {"BLOCKED": "BLOCKED", "PAUSED": "ON_HOLD"}.get(line.status, "ACTIVE")
    customer.credit_hold_reason = None if customer.credit_status == "ACTIVE" else (reason or customer.credit_hold_reason)
    customer.last_credit_review_at = line.reviewed_at or customer.last_credit_review_at
    customer.next_credit_review_at = line.next_review_at or customer.next_credit_review_at
    customer.updated_at = datetime.utcnow()


def _apply_line_fields(line: CustomerCreditLine, payload: dict, *, creating: bool) -> None:
    if creating or "approved_limit" in payload:
        approved = to_float(payload.get("approved_limit"))
        if approved is None or approved <= 0:
            raise ValueError("El límite aprobado debe ser mayor a cero")
        line.approved_limit = round_money(approved)
    if creating or "blocked_amount" in payload:
        blocked = to_float(payload.get("blocked_amount"), 0.0)
        if blocked is None or blocked < 0:
            raise ValueError("El monto bloqueado no puede ser negativo")
        line.blocked_amount = round_money(blocked)
    if creating or "status" in payload:
        status = clean_code(payload.get("status")) or "ACTIVE"
        if status not in CREDIT_LINE_STATUSES:
            raise ValueError("Estado de línea de crédito inválido")
        line.status = status
    if "review_notes" in payload:
        line.review_notes = clean_str(payload.get("review_notes"), 400)
    if "next_review_at" in payload:
        line.next_review_at = parse_datetime(payload.get("next_review_at"))


def assign_credit_line(s: "Session", customer: Customer, payload: dict, user: "AdminUser") -> CustomerCreditLine:
    now = datetime.utcnow()
    line = CustomerCreditLine(customer_id=customer.id, reviewer_admin_user_id=user.id, reviewed_at=now)
    line.customer = customer
    _apply_line_fields(line, payload, creating=True)
    line.available_limit = _line_available(line, customer)
    s.add(line)
    _mirror_line_on_customer(line, customer, clean_str(payload.get("reason"), 250))
    s.flush()
    record_event(
        s,
        actor=user,
        action="cxc.credit_line.assign",
        entity_type="CustomerCreditLine",
        entity_id=str(line.id),
        metadata={"customer": customer.code, "approved_limit": line.approved_limit, "status": line.status},
    )
    return line


def update_credit_line(s: "Session", line: CustomerCreditLine, payload: dict, user: "AdminUser") -> CustomerCreditLine:
    _apply_line_fields(line, payload, creating=False)
    line.reviewer_admin_user_id = user.id
    line.reviewed_at = datetime.utcnow()
    line.available_limit = _line_available(line, line.customer)
    line.updated_at = datetime.utcnow()
    _mirror_line_on_customer(line, line.customer, clean_str(payload.get("reason"), 250))
    s.flush()
    record_event(
        s,
        actor=user,
        action="cxc.credit_line.edit",
        entity_type="CustomerCreditLine",
        entity_id=str(line.id),
        metadata={"customer": line.customer.code, "approved_limit": line.approved_limit, "status": line.status},
    )
    return line


def update_customer_credit_status(s: "Session", customer: Customer, status: str, reason: str | None, user: "AdminUser") -> Customer:
    status = clean_code(status)
    if status not in CREDIT_STATUSES:
        raise ValueError("Estado de crédito inválido")
    customer.credit_status = status
    customer.credit_hold_reason = None if status == "ACTIVE" else clean_str(reason, 250)
    customer.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="cxc.customer.credit_status",
        entity_type="Customer",
        entity_id=str(customer.id),
        reason=reason,
        metadata={"code": customer.code, "status": status},
    )
    return customer


def credit_overview(customer: Customer) -> dict:
    limit = float(customer.credit_limit or 0)
    used = float(customer.credit_used or 0)
    on_hold = float(customer.credit_on_hold or 0)
    usage = (used + on_hold) / limit if limit > 0 else (1.0 if used + on_hold > 0 else 0.0)
    return {
        "customer_code": customer.code,
        "credit_limit": round_money(limit),
        "credit_used": round_money(used),
        "credit_on_hold": round_money(on_hold),
        "available_credit": available_credit(customer),
        "usage_percent": round(usage, 4),
        "limit_warning": usage >= CREDIT_WARNING_RATIO,
        "is_blocked": customer.credit_status == "BLOCKED",
        "credit_status": customer.credit_status,
    }


def sync_credit_usage(s: "Session", customer_id: int) -> Customer | None:
    """Recompute credit_used from open debit documents and refresh active lines."""
    customer = s.get(Customer, customer_id)
    if customer is None:
        return None
    s.flush()
    used = (
        s.query(func.coalesce(func.sum(CustomerDocument.balance_amount), 0))
        .filter(
            CustomerDocument.customer_id == customer_id,
            CustomerDocument.document_type.in_(DEBIT_DOCUMENT_TYPES),
            CustomerDocument.status != "CANCELADO",
            CustomerDocument.balance_amount > 0,
        )
        .scalar()
    )
    customer.credit_used = round_money(float(used or 0))
    for line in s.query(CustomerCreditLine).filter(
        CustomerCreditLine.customer_id == customer_id, CustomerCreditLine.status == "ACTIVE"
    ):
        line.available_limit = _line_available(line, customer)
    s.flush()
    return customer
