from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.facturador.audit import record_event
from app.facturador.models import AdminUser
from app.facturador.modules.cash_registers.models import (
    CashRegister,
    CashRegisterSession,
    CashRegisterSessionPayment,
    CashRegisterUser,
)
from app.facturador.modules.catalog.service import get_warehouse_by_code
from app.facturador.modules.invoices.models import Invoice, InvoicePayment
from app.facturador.utils import clean_code, clean_str, iso, round_money, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"


# ---------- Serializers ----------
def register_to_dict(r: CashRegister) -> dict:
    return {
        "id": r.id,
        "code": r.code,
        "name": r.name,
        "warehouse_code": r.warehouse.code,
        "warehouse_name": r.warehouse.name,
        "allow_manual_warehouse_override": r.allow_manual_warehouse_override,
        "is_active": r.is_active,
        "notes": r.notes,
        "invoice_sequence_code": r.invoice_sequence.code if r.invoice_sequence else None,
    }


def session_to_dict(cs: CashRegisterSession) -> dict:
    return {
        "id": cs.id,
        "status": cs.status,
        "cash_register": register_to_dict(cs.cash_register),
        "admin_user_id": cs.admin_user_id,
        "opened_by": cs.admin_user.username,
        "opening_amount": cs.opening_amount,
        "opening_notes": cs.opening_notes,
        "opened_at": iso(cs.opened_at),
        "closing_amount": cs.closing_amount,
        "closing_notes": cs.closing_notes,
        "closed_at": iso(cs.closed_at),
        "invoice_sequence_start": cs.invoice_sequence_start,
        "invoice_sequence_end": cs.invoice_sequence_end,
    }


# ---------- Registers ----------
def list_registers(s: "Session", *, include_inactive: bool = False) -> list[CashRegister]:
    q = s.query(CashRegister)
    if not include_inactive:
        q = q.filter(CashRegister.is_active.is_(True))
    return q.order_by(CashRegister.code.asc()).all()


def get_register_by_code(s: "Session", code: str | None) -> CashRegister | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    return s.query(CashRegister).filter(CashRegister.code == normalized).one_or_none()


def _set_warehouse(s: "Session", register: CashRegister, warehouse_code) -> None:
    warehouse = get_warehouse_by_code(s, warehouse_code)
    if not warehouse:
        raise ValueError(f"El almacén {clean_code(warehouse_code) or '(vacío)'} no existe o está inactivo")
    register.warehouse_id = warehouse.id
    register.warehouse = warehouse


def create_register(s: "Session", payload: dict, user: AdminUser) -> CashRegister:
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 100)
    if not code or not name:
        raise ValueError("El código y el nombre de la caja son obligatorios")
    if len(code) > 20:
        raise ValueError("El código de la caja admite máximo 20 caracteres")
    if get_register_by_code(s, code):
        raise ValueError("Ya existe una caja con ese código")
    register = CashRegister(
        code=code,
        name=name,
        allow_manual_warehouse_override=bool(payload.get("allow_manual_warehouse_override", False)),
        is_active=bool(payload.get("is_active", True)),
        notes=clean_str(payload.get("notes"), 300),
    )
    _set_warehouse(s, register, payload.get("warehouse_code"))
    s.add(register)
    s.flush()
    record_event(s, actor=user, action="cash_register.create", entity_type="CashRegister", entity_id=str(register.id), metadata={"code": code})
    return register


def update_register(s: "Session", register: CashRegister, payload: dict, user: AdminUser) -> CashRegister:
    if "name" in payload:
        name = clean_str(payload.get("name"), 100)
        if not name:
            raise ValueError("El nombre de la caja es obligatorio")
        register.name = name
    if "warehouse_code" in payload:
        _set_warehouse(s, register, payload.get("warehouse_code"))
    if "allow_manual_warehouse_override" in payload:
        register.allow_manual_warehouse_override = bool(payload.get("allow_manual_warehouse_override"))
    if "is_active" in payload:
        register.is_active = bool(payload.get("is_active"))
    if "notes" in payload:
        register.notes = clean_str(payload.get("notes"), 300)
    register.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=user, action="cash_register.edit", entity_type="CashRegister", entity_id=str(register.id), metadata={"code": register.code})
    return register


# ---------- Assignments ----------
def list_assignments(s: "Session", *, register: CashRegister | None = None, admin_user_id: int | None = None) -> list[CashRegisterUser]:
    q = s.query(CashRegisterUser)
    if register is not None:
        q = q.filter(CashRegisterUser.cash_register_id == register.id)
    if admin_user_id is not None:
        q = q.filter(CashRegisterUser.admin_user_id == admin_user_id)
    return q.order_by(CashRegisterUser.is_default.desc(), CashRegisterUser.id.asc()).all()


def assignment_to_dict(a: CashRegisterUser) -> dict:
    return {
        "cash_register_code": a.cash_register.code,
        "cash_register_name": a.cash_register.name,
        "admin_user_id": a.admin_user_id,
        "is_default": a.is_default,
        "assigned_at": iso(a.assigned_at),
    }


def _get_assignment(s: "Session", register: CashRegister, admin_user_id: int) -> CashRegisterUser | None:
    return (
        s.query(CashRegisterUser)
        .filter(CashRegisterUser.cash_register_id == register.id, CashRegisterUser.admin_user_id == admin_user_id)
        .one_or_none()
    )


def _clear_defaults(s: "Session", admin_user_id: int) -> None:
    for other in s.query(CashRegisterUser).filter(CashRegisterUser.admin_user_id == admin_user_id).all():
        other.is_default = False


def assign_register(s: "Session", register: CashRegister, target: AdminUser, *, is_default: bool, user: AdminUser) -> CashRegisterUser:
    link = _get_assignment(s, register, target.id)
    if link is None:
        link = CashRegisterUser(cash_register_id=register.id, admin_user_id=target.id, is_default=False)
        link.cash_register = register
        s.add(link)
    if is_default:
        _clear_defaults(s, target.id)
        link.is_default = True
    s.flush()
    record_event(
        s,
        actor=user,
        action="cash_register.assign",
        entity_type="CashRegister",
        entity_id=str(register.id),
        metadata={"username": target.username, "is_default": link.is_default},
    )
    return link


def unassign_register(s: "Session", register: CashRegister, target: AdminUser, user: AdminUser) -> None:
    link = _get_assignment(s, register, target.id)
    if link is None:
        raise ValueError("El usuario no está asignado a la caja")
    s.delete(link)
    s.flush()
    record_event(s, actor=user, action="cash_register.unassign", entity_type="CashRegister", entity_id=str(register.id), metadata={"username": target.username})


def set_default_register(s: "Session", register: CashRegister, target: AdminUser, user: AdminUser) -> CashRegisterUser:
    link = _get_assignment(s, register, target.id)
    if link is None:
        raise ValueError("El usuario no está asignado a la caja")
    _clear_defaults(s, target.id)
    link.is_default = True
    s.flush()
    record_event(s, actor=user, action="cash_register.set_default", entity_type="CashRegister", entity_id=str(register.id), metadata={"username": target.username})
    return link


# ---------- Sessions ----------
def get_active_session(s: "Session", user: AdminUser) -> CashRegisterSession | None:
    return (
        s.query(CashRegisterSession)
        .filter(CashRegisterSession.admin_user_id == user.id, CashRegisterSession.status == STATUS_OPEN)
        .order_by(CashRegisterSession.opened_at.desc())
        .first()
    )


def open_session(s: "Session", user: AdminUser, payload: dict) -> CashRegisterSession:
    code = clean_code(payload.get("cash_register_code"))
    register = get_register_by_code(s, code)
    if not register or not register.is_active:
        raise ValueError(f"La caja {code or '(vacía)'} no existe o está inactiva")
    if _get_assignment(s, register, user.id) is None:
        raise PermissionError(f"No tienes permisos para operar la caja {register.code}")
    amount = to_float(payload.get("opening_amount"), 0.0)
    if amount is None or amount < 0:
        raise ValueError("El monto de apertura debe ser mayor o igual a cero")

    existing = (
        s.query(CashRegisterSession)
        .filter(
            CashRegisterSession.status == STATUS_OPEN,
            (CashRegisterSession.cash_register_id == register.id) | (CashRegisterSession.admin_user_id == user.id),
        )
        .first()
    )
    if existing is not None:
        raise ValueError("Ya existe una apertura activa para el usuario o la caja seleccionada")

    cs = CashRegisterSession(
        cash_register_id=register.id,
        admin_user_id=user.id,
        status=STATUS_OPEN,
        opening_amount=round_money(amount),
        opening_notes=clean_str(payload.get("notes"), 400),
        opened_at=datetime.utcnow(),
    )
    cs.cash_register = register
    cs.admin_user = user
    s.add(cs)
    s.flush()
    record_event(
        s,
        actor=user,
        action="cash_register.session.open",
        entity_type="CashRegisterSession",
        entity_id=str(cs.id),
        metadata={"cash_register": register.code, "opening_amount": cs.opening_amount},
    )
    return cs


def expected_payments(s: "Session", cash_session: CashRegisterSession) -> dict[str, dict]:
    """Payments of the session's non-cancelled invoices, grouped by method."""
    rows = (
        s.query(
            InvoicePayment.payment_method,
            func.coalesce(func.sum(InvoicePayment.amount), 0),
            func.count(InvoicePayment.id),
        )
        .join(Invoice, Invoice.id == InvoicePayment.invoice_id)
        .filter(Invoice.cash_register_session_id == cash_session.id, Invoice.status != "ANULADA")
        .group_by(InvoicePayment.payment_method)
        .all()
    )
    return {
        clean_code(method): {"amount": round_money(float(total or 0)), "count": int(count or 0)}
        for method, total, count in rows
    }


def _reported_payments(raw) -> dict[str, dict]:
    reported: dict[str, dict] = {}
    for item in raw or []:
        if not isinstance(item, dict):
            raise ValueError("Cada pago reportado debe ser un objeto")
        method = clean_code(item.get("method"))
        if not method:
            raise ValueError("Cada pago reportado debe indicar el método")
        amount = to_float(item.get("amount"), 0.0)
        if amount is None or amount < 0:
            raise ValueError(f"El monto reportado para {method} debe ser mayor o igual a cero")
        tx_count = to_int(item.get("tx_count"), 0) or 0
        slot = reported.setdefault(method, {"amount": 0.0, "count": 0})
        slot["amount"] = round_money(slot["amount"] + amount)
        slot["count"] += max(0, tx_count)
    return reported


def build_closure_summary(expected: dict[str, dict], reported: dict[str, dict]) -> dict:
    breakdown = []
    for method in sorted(set(expected) | set(reported)):
        exp = expected.get(method, {"amount": 0.0, "count": 0})
        rep = reported.get(method, {"amount": 0.0, "count": 0})
        breakdown.append(
            {
                "method": method,
                "expected_amount": exp["amount"],
                "reported_amount": rep["amount"],
                "difference": round_money(rep["amount"] - exp["amount"]),
                "expected_count": exp["count"],
                "reported_count": rep["count"],
            }
        )
    expected_total = round_money(sum(b["expected_amount"] for b in breakdown))
    reported_total = round_money(sum(b["reported_amount"] for b in breakdown))
    return {
        "breakdown": breakdown,
        "expected_total": expected_total,
        "reported_total": reported_total,
        "difference_total": round_money(reported_total - expected_total),
    }


def close_session(s: "Session", user: AdminUser, payload: dict) -> tuple[CashRegisterSession, dict]:
    session_id = to_int(payload.get("session_id"))
    if session_id is not None:
        cs = s.get(CashRegisterSession, session_id)
    else:
        cs = get_active_session(s, user)
    if cs is None:
        raise ValueError("No se encontró una apertura de caja activa")
    if cs.status != STATUS_OPEN:
        raise ValueError("La sesión indicada ya fue cerrada")
    if cs.admin_user_id != user.id:
        raise PermissionError("Solo el usuario que abrió la caja puede cerrarla")

    closing_amount = to_float(payload.get("closing_amount"), 0.0)
    if closing_amount is None or closing_amount < 0:
        raise ValueError("El monto de cierre debe ser mayor o igual a cero")

    summary = build_closure_summary(expected_payments(s, cs), _reported_payments(payload.get("reported_payments")))
    invoice_count = (
        s.query(func.count(Invoice.id))
        .filter(Invoice.cash_register_session_id == cs.id, Invoice.status != "ANULADA")
        .scalar()
    )
    summary["invoice_count"] = int(invoice_count or 0)
    summary["opening_amount"] = cs.opening_amount
    summary["closing_amount"] = round_money(closing_amount)

    now = datetime.utcnow()
    cs.status = STATUS_CLOSED
    cs.closing_amount = round_money(closing_amount)
    cs.closing_notes = clean_str(payload.get("notes"), 400)
    cs.closed_at = now
    cs.closing_user_id = user.id
    cs.totals_snapshot = json.dumps(summary, sort_keys=True)
    for b in summary["breakdown"]:
        cs.payments.append(
            CashRegisterSessionPayment(
                payment_method=b["method"],
                expected_amount=b["expected_amount"],
                reported_amount=b["reported_amount"],
                difference_amount=b["difference"],
                transaction_count=b["reported_count"] or b["expected_count"],
                created_at=now,
            )
        )
    s.flush()
    record_event(
        s,
        actor=user,
        action="cash_register.session.close",
        entity_type="CashRegisterSession",
        entity_id=str(cs.id),
        metadata={
            "cash_register": cs.cash_register.code,
            "expected_total": summary["expected_total"],
            "reported_total": summary["reported_total"],
            "difference_total": summary["difference_total"],
        },
    )
    return cs, summary


def closure_report(s: "Session", session_id: int) -> dict | None:
    cs = s.get(CashRegisterSession, session_id)
    if cs is None:
        return None
    if cs.totals_snapshot:
        summary = json.loads(cs.totals_snapshot)
    else:
        summary = build_closure_summary(expected_payments(s, cs), {})
    invoices = (
        s.query(Invoice)
        .filter(Invoice.cash_register_session_id == cs.id)
        .order_by(Invoice.invoice_date.asc(), Invoice.id.asc())
        .all()
    )
    return {
        "session": session_to_dict(cs),
        "summary": summary,
        "payments": [
            {
                "method": p.payment_method,
                "expected_amount": p.expected_amount,
                "reported_amount": p.reported_amount,
                "difference": p.difference_amount,
                "transaction_count": p.transaction_count,
            }
            for p in cs.payments
        ],
        "invoices": [
            {
                "id": inv.id,
                "invoice_number": inv.invoice_number,
                "invoice_date": iso(inv.invoice_date),
                "total_amount": inv.total_amount,
                "status": inv.status,
            }
            for inv in invoices
        ],
    }
