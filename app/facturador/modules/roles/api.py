from __future__ import annotations

from flask import Blueprint

from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ensure_valid, ok, raise_for_business_error
from app.facturador.modules.roles.service import (
    create_role,
    delete_role,
    get_role_by_code,
    list_permissions,
    list_roles,
    permission_to_dict,
    role_to_dict,
    update_role,
    validate_role_payload,
)
from app.facturador.rbac import current_admin, require_administrator
from app.facturador.utils import json_body

bp = Blueprint("roles", __name__)


def _role_or_404(s, code: str):
    role = get_role_by_code(s, code)
    if not role:
        raise NotFoundError("Rol no encontrado")
    return role


@bp.get("")
@require_administrator
def roles_list():
    s = db_session()
    return ok(items=[role_to_dict(r) for r in list_roles(s)])


@bp.get("/permissions")
@require_administrator
def roles_permissions():
    s = db_session()
    return ok(items=[permission_to_dict(p) for p in list_permissions(s)])


@bp.post("")
@require_administrator
def roles_create():
    s = db_session()
    payload = json_body()
    ensure_valid(validate_role_payload(s, payload, creating=True))
    try:
        role = create_role(s, payload, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return created(role=role_to_dict(role))


@bp.patch("/<code>")
@require_administrator
def roles_update(code: str):
    s = db_session()
    role = _role_or_404(s, code)
    payload = json_body()
    ensure_valid(validate_role_payload(s, payload, creating=False))
    update_role(s, role, payload, current_admin())
    s.commit()
    return ok(role=role_to_dict(role))


@bp.delete("/<code>")
@require_administrator
def roles_delete(code: str):
    s = db_session()
    role = _role_or_404(s, code)
    try:
        delete_role(s, role, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("asignado a usuarios",))
    s.commit()
    return ok()
