from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.facturador.audit import record_event
from app.facturador.auth import pin_signature
from app.facturador.models import AdminUser, Waiter
from app.facturador.utils import clean_code, clean_str, iso, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

PIN_RE = re.compile(r"^\d{4,6}$")
PIN_TAKEN_MESSAGE = "El PIN ya está asignado a otro mesero"


def waiter_to_dict(w: Waiter) -> dict:
    return {
        "id": w.id,
        "code": w.code,
        "full_name": w.full_name,
        "phone": w.phone,
        "email": w.email,
        "is_active": w.is_active,
        "last_login_at": iso(w.last_login_at),
    }


def list_waiters(s: "Session", *, include_inactive: bool = False) -> list[Waiter]:
    q = s.query(Waiter)
    if not include_inactive:
        q = q.filter(Waiter.is_active.is_(True))
    return q.order_by(Waiter.full_name.asc()).all()


def get_waiter_by_code(s: "Session", code: str | None) -> Waiter | None:
    code = clean_code(code)
    if not code:
        return None
    return s.query(Waiter).filter(Waiter.code == code).one_or_none()


def validate_pin(pin) -> list[str]:
    if not PIN_RE.match(str(pin or "")):
        return ["El PIN debe tener entre 4 y 6 dígitos."]
    return []


def _assign_pin(s: "Session", waiter: Waiter, pin: str) -> None:
    signature = pin_signature(pin)
    q = s.query(Waiter).filter(Waiter.pin_signature == signature)
    if waiter.id is not None:
        q = q.filter(Waiter.id != waiter.id)
    if q.first() is not None:
        raise ValueError(PIN_TAKEN_MESSAGE)
    waiter.pin_signature = signature
    waiter.pin_hash = generate_password_hash(pin)


def create_waiter(s: "Session", payload: dict, actor: AdminUser) -> Waiter:
    code = clean_code(payload.get("code"))[:50]
    full_name = clean_str(payload.get("full_name"), 150)
    if not code or not full_name:
        raise ValueError("El código y el nombre del mesero son obligatorios")
    if get_waiter_by_code(s, code) is not None:
        raise ValueError("Ya existe un mesero con ese código")
    waiter = Waiter(
        code=code,
        full_name=full_name,
        phone=clean_str(payload.get("phone"), 30),
        email=clean_str(payload.get("email"), 150),
        is_active=parse_bool(payload.get("is_active"), True),
    )
    _assign_pin(s, waiter, str(payload.get("pin")))
    s.add(waiter)
    s.flush()
    record_event(s, actor=actor, action="waiter.create", entity_type="Waiter", entity_id=str(waiter.id), metadata={"code": code})
    return waiter


def update_waiter(s: "Session", waiter: Waiter, payload: dict, actor: AdminUser) -> Waiter:
    if "full_name" in payload:
        full_name = clean_str(payload.get("full_name"), 150)
        if not full_name:
            raise ValueError("El nombre del mesero es obligatorio")
        waiter.full_name = full_name
    if "phone" in payload:
        waiter.phone = clean_str(payload.get("phone"), 30)
    if "email" in payload:
        waiter.email = clean_str(payload.get("email"), 150)
    if "is_active" in payload:
        waiter.is_active = parse_bool(payload.get("is_active"), waiter.is_active)
    waiter.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=actor, action="waiter.update", entity_type="Waiter", entity_id=str(waiter.id), metadata={"code": waiter.code, "is_active": waiter.is_active})
    return waiter


def reset_waiter_pin(s: "Session", waiter: Waiter, pin: str, actor: AdminUser) -> None:
    _assign_pin(s, waiter, pin)
    waiter.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=actor, action="waiter.pin_reset", entity_type="Waiter", entity_id=str(waiter.id), metadata={"code": waiter.code})
