from __future__ import annotations

from flask import Blueprint, request

from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ensure_valid, ok, raise_for_business_error
from app.facturador.modules.waiters.service import (
    PIN_TAKEN_MESSAGE,
    create_waiter,
    get_waiter_by_code,
    list_waiters,
    reset_waiter_pin,
    update_waiter,
    validate_pin,
    waiter_to_dict,
)
from app.facturador.rbac import current_admin, current_waiter, require_administrator, require_restaurant_mode, require_waiter
from app.facturador.utils import json_body, parse_bool

bp = Blueprint("waiters", __name__)

_CONFLICTS = ("Ya existe", PIN_TAKEN_MESSAGE)


def _waiter_or_404(s, code: str):
    waiter = get_waiter_by_code(s, code)
    if not waiter:
        raise NotFoundError("Mesero no encontrado")
    return waiter


@bp.get("/meseros")
@require_restaurant_mode
@require_administrator
def waiters_list():
    s = db_session()
    rows = list_waiters(s, include_inactive=parse_bool(request.args.get("includeInactive")))
    return ok(items=[waiter_to_dict(w) for w in rows])


@bp.post("/meseros")
@require_restaurant_mode
@require_administrator
def waiters_create():
    payload = json_body()
    ensure_valid(validate_pin(payload.get("pin")))
    s = db_session()
    try:
        waiter = create_waiter(s, payload, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return created(waiter=waiter_to_dict(waiter))


@bp.get("/meseros/me")
@require_restaurant_mode
@require_waiter
def waiters_me():
    return ok(waiter=waiter_to_dict(current_waiter()))


@bp.patch("/meseros/<code>")
@require_restaurant_mode
@require_administrator
def waiters_update(code: str):
    s = db_session()
    waiter = _waiter_or_404(s, code)
    try:
        update_waiter(s, waiter, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(waiter=waiter_to_dict(waiter))


@bp.post("/meseros/<code>/reset-pin")
@require_restaurant_mode
@require_administrator
def waiters_reset_pin(code: str):
    payload = json_body()
    ensure_valid(validate_pin(payload.get("pin")))
    s = db_session()
    waiter = _waiter_or_404(s, code)
    try:
        reset_waiter_pin(s, waiter, str(payload["pin"]), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_CONFLICTS)
    s.commit()
    return ok()
