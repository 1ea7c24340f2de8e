from __future__ import annotations

from flask import Blueprint

from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ensure_valid, ok, raise_for_business_error
from app.facturador.models import AdminUser
from app.facturador.modules.admin_users.service import (
    admin_user_to_dict,
    create_admin_user,
    list_admin_users,
    list_assignable_roles,
    reset_admin_password,
    update_admin_user,
    validate_admin_user_payload,
    validate_password,
)
from app.facturador.rbac import current_admin, require_administrator
from app.facturador.utils import json_body

bp = Blueprint("admin_users", __name__)


def _user_or_404(s, user_id: int) -> AdminUser:
    user = s.get(AdminUser, user_id)
    if not user:
        raise NotFoundError("Usuario no encontrado")
    return user


@bp.get("")
@require_administrator
def admin_users_list():
    s = db_session()
    return ok(items=[admin_user_to_dict(s, u) for u in list_admin_users(s)])


@bp.get("/roles")
@require_administrator
def admin_users_roles():
    s = db_session()
    return ok(items=[{"code": r.code, "name": r.name, "description": r.description} for r in list_assignable_roles(s)])


@bp.post("")
@require_administrator
def admin_users_create():
    payload = json_body()
    ensure_valid(validate_admin_user_payload(payload, creating=True))
    s = db_session()
    try:
        user = create_admin_user(s, payload, current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return created(user=admin_user_to_dict(s, user))


@bp.get("/<int:user_id>")
@require_administrator
def admin_users_detail(user_id: int):
    s = db_session()
    return ok(user=admin_user_to_dict(s, _user_or_404(s, user_id)))


@bp.patch("/<int:user_id>")
@require_administrator
def admin_users_update(user_id: int):
    payload = json_body()
    ensure_valid(validate_admin_user_payload(payload, creating=False))
    s = db_session()
    user = _user_or_404(s, user_id)
    try:
        update_admin_user(s, user, payload, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(user=admin_user_to_dict(s, user))


@bp.post("/<int:user_id>/reset-password")
@require_administrator
def admin_users_reset_password(user_id: int):
    payload = json_body()
    ensure_valid(validate_password(payload.get("password")))
    s = db_session()
    user = _user_or_404(s, user_id)
    reset_admin_password(s, user, payload["password"], current_admin())
    s.commit()
    return ok()
