from __future__ import annotations

from flask import Blueprint, request

from app.facturador.constants import PERM_CASH_CLOSE, PERM_CASH_OPEN, PERM_CASH_REPORT
from app.facturador.db import db_session
from app.facturador.errors import ForbiddenError, NotFoundError, created, ok, raise_for_business_error
from app.facturador.models import AdminUser
from app.facturador.modules.cash_registers.service import (
    assign_register,
    assignment_to_dict,
    close_session,
    closure_report,
    create_register,
    get_active_session,
    get_register_by_code,
    list_assignments,
    list_registers,
    open_session,
    register_to_dict,
    session_to_dict,
    set_default_register,
    unassign_register,
    update_register,
)
from app.facturador.rbac import current_admin, require_admin_session, require_administrator, require_permissions
from app.facturador.utils import json_body, parse_bool

bp = Blueprint("cash_registers", __name__)


def _register_or_404(s, code: str):
    register = get_register_by_code(s, code)
    if not register:
        raise NotFoundError("La caja indicada no existe")
    return register


def _user_or_404(s, user_id: int) -> AdminUser:
    user = s.get(AdminUser, user_id)
    if not user:
        raise NotFoundError("Usuario no encontrado")
    return user


# ---------- Registers ----------
@bp.get("")
@require_admin_session
def registers_list():
    s = db_session()
    rows = list_registers(s, include_inactive=parse_bool(request.args.get("includeInactive")))
    return ok(items=[register_to_dict(r) for r in rows])


@bp.post("")
@require_administrator
def registers_create():
    s = db_session()
    try:
        register = create_register(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return created(cash_register=register_to_dict(register))


@bp.patch("/<code>")
@require_administrator
def registers_update(code: str):
    s = db_session()
    register = _register_or_404(s, code)
    try:
        update_register(s, register, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(cash_register=register_to_dict(register))


@bp.get("/mis-cajas")
@require_admin_session
def my_registers():
    s = db_session()
    rows = list_assignments(s, admin_user_id=current_admin().id)
    return ok(items=[assignment_to_dict(a) for a in rows if a.cash_register.is_active])


# ---------- Assignments ----------
@bp.get("/<code>/usuarios")
@require_administrator
def assignments_list(code: str):
    s = db_session()
    register = _register_or_404(s, code)
    return ok(items=[assignment_to_dict(a) for a in list_assignments(s, register=register)])


@bp.post("/<code>/usuarios")
@require_administrator
def assignments_add(code: str):
    s = db_session()
    register = _register_or_404(s, code)
    payload = json_body()
    target = _user_or_404(s, int(payload.get("admin_user_id") or 0))
    link = assign_register(s, register, target, is_default=parse_bool(payload.get("is_default")), user=current_admin())
    s.commit()
    return created(assignment=assignment_to_dict(link))


@bp.delete("/<code>/usuarios/<int:user_id>")
@require_administrator
def assignments_remove(code: str, user_id: int):
    s = db_session()
    register = _register_or_404(s, code)
    target = _user_or_404(s, user_id)
    try:
        unassign_register(s, register, target, current_admin())
    except ValueError as e:
        raise_for_business_error(e, not_found_markers=("no está asignado",))
    s.commit()
    return ok()


@bp.post("/<code>/usuarios/<int:user_id>/predeterminada")
@require_administrator
def assignments_default(code: str, user_id: int):
    s = db_session()
    register = _register_or_404(s, code)
    target = _user_or_404(s, user_id)
    try:
        link = set_default_register(s, register, target, current_admin())
    except ValueError as e:
        raise_for_business_error(e, not_found_markers=("no está asignado",))
    s.commit()
    return ok(assignment=assignment_to_dict(link))


# ---------- Sessions ----------
@bp.post("/aperturas")
@require_permissions(PERM_CASH_OPEN, message="No tienes permisos para aperturar caja")
def session_open():
    s = db_session()
    try:
        cs = open_session(s, current_admin(), json_body())
    except PermissionError as e:
        raise ForbiddenError(str(e)) from e
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("apertura activa",))
    s.commit()
    return created(session=session_to_dict(cs))


@bp.get("/aperturas/activa")
@require_admin_session
def session_active():
    s = db_session()
    cs = get_active_session(s, current_admin())
    return ok(session=session_to_dict(cs) if cs else None)


@bp.post("/cierres")
@require_permissions(PERM_CASH_CLOSE, message="No tienes permisos para cerrar caja")
def session_close():
    s = db_session()
    try:
        cs, summary = close_session(s, current_admin(), json_body())
    except PermissionError as e:
        raise ForbiddenError(str(e)) from e
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("ya fue cerrada",), not_found_markers=("no se encontró",))
    s.commit()
    return ok(session=session_to_dict(cs), summary=summary)


@bp.get("/cierres/<int:session_id>")
@require_permissions(PERM_CASH_REPORT, message="No tienes permisos para ver reportes de caja")
def session_report(session_id: int):
    s = db_session()
    report = closure_report(s, session_id)
    if report is None:
        raise NotFoundError("Sesión de caja no encontrada")
    return ok(report=report)
