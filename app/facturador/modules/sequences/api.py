from __future__ import annotations

from flask import Blueprint, request

from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ok, raise_for_business_error
from app.facturador.modules.cash_registers.service import get_register_by_code, list_registers
from app.facturador.modules.sequences.service import (
    assign_cash_register_sequence,
    assign_inventory_sequence,
    create_definition,
    definition_to_dict,
    get_definition_by_code,
    list_definitions,
    list_inventory_settings,
    update_definition,
)
from app.facturador.rbac import current_admin, require_admin_session, require_administrator
from app.facturador.utils import json_body

bp = Blueprint("sequences", __name__)


@bp.get("")
@require_admin_session
def definitions_list():
    s = db_session()
    return ok(items=[definition_to_dict(d) for d in list_definitions(s, scope=request.args.get("scope"))])


@bp.post("")
@require_administrator
def definitions_create():
    s = db_session()
    try:
        d = create_definition(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return created(sequence=definition_to_dict(d))


@bp.patch("/<code>")
@require_administrator
def definitions_update(code: str):
    s = db_session()
    d = get_definition_by_code(s, code)
    if not d:
        raise NotFoundError("La secuencia indicada no existe")
    try:
        update_definition(s, d, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(sequence=definition_to_dict(d))


@bp.get("/cajas")
@require_admin_session
def cash_register_sequences():
    s = db_session()
    items = [
        {
            "cash_register_code": r.code,
            "cash_register_name": r.name,
            "sequence_code": r.invoice_sequence.code if r.invoice_sequence else None,
        }
        for r in list_registers(s, include_inactive=True)
    ]
    return ok(items=items)


@bp.post("/cajas")
@require_administrator
def cash_register_sequence_assign():
    s = db_session()
    payload = json_body()
    register = get_register_by_code(s, payload.get("cash_register_code"))
    if not register:
        raise NotFoundError("La caja indicada no existe")
    try:
        assign_cash_register_sequence(s, register, payload.get("sequence_code"), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("ya está asignada",))
    s.commit()
    return ok(
        cash_register_code=register.code,
        sequence_code=register.invoice_sequence.code if register.invoice_sequence else None,
    )


@bp.get("/inventario")
@require_admin_session
def inventory_sequences():
    s = db_session()
    return ok(items=list_inventory_settings(s))


@bp.post("/inventario")
@require_administrator
def inventory_sequence_assign():
    s = db_session()
    payload = json_body()
    try:
        assign_inventory_sequence(s, payload.get("transaction_type") or "", payload.get("sequence_code"), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(items=list_inventory_settings(s))
