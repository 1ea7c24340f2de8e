from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.facturador.audit import record_event
from app.facturador.models import AdminUser, AdminUserRole, Role
from app.facturador.utils import clean_code, clean_str, iso, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MIN_PASSWORD_LENGTH = 8


def _primary_role_code(s: "Session", user: AdminUser) -> str | None:
    row = (
        s.query(AdminUserRole)
        .filter(AdminUserRole.admin_user_id == user.id, AdminUserRole.is_primary.is_(True))
        .one_or_none()
    )
    if row is None:
        return None
    role = s.get(Role, row.role_id)
    return role.code if role else None


def admin_user_to_dict(s: "Session", user: AdminUser) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "is_active": user.is_active,
        "roles": [{"code": r.code, "name": r.name} for r in sorted(user.roles, key=lambda r: r.code)],
        "primary_role": _primary_role_code(s, user),
        "last_login_at": iso(user.last_login_at),
        "created_at": iso(user.created_at),
    }


def list_admin_users(s: "Session") -> list[AdminUser]:
    return s.query(AdminUser).order_by(AdminUser.username.asc()).all()


def list_assignable_roles(s: "Session") -> list[Role]:
    return s.query(Role).filter(Role.is_active.is_(True)).order_by(Role.name.asc()).all()


def validate_password(password) -> list[str]:
    if not isinstance(password, str) or not password:
        return ["La contraseña es obligatoria."]
    if len(password) < MIN_PASSWORD_LENGTH:
        return [f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres."]
    return []


def validate_admin_user_payload(payload: dict, *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating:
        if not clean_str(payload.get("username")):
            errors.append("El usuario es obligatorio.")
        errors.extend(validate_password(payload.get("password")))
    roles = payload.get("roles")
    if roles is not None and (not isinstance(roles, list) or not all(isinstance(r, str) for r in roles)):
        errors.append("Los roles deben ser una lista de códigos.")
    return errors


def _set_roles(s: "Session", user: AdminUser, role_codes: list[str], primary_code: str | None) -> None:
    codes = []
    for code in role_codes:
        code = clean_code(code)
        if code and code not in codes:
            codes.append(code)
    roles = s.query(Role).filter(Role.code.in_(codes)).all() if codes else []
    missing = sorted(set(codes) - {r.code for r in roles})
    if missing:
        raise ValueError(f"Roles no válidos: {', '.join(missing)}")
    primary_code = clean_code(primary_code) or (codes[0] if codes else "")
    if primary_code and primary_code not in codes:
        raise ValueError("El rol principal debe estar entre los roles asignados")

    user.roles = roles
    s.flush()
    for row in s.query(AdminUserRole).filter(AdminUserRole.admin_user_id == user.id).all():
        role = next(r for r in roles if r.id == row.role_id)
        row.is_primary = role.code == primary_code
    s.flush()


def create_admin_user(s: "Session", payload: dict, actor: AdminUser) -> AdminUser:
    username = (clean_str(payload.get("username"), 120) or "").lower()
    if s.query(AdminUser).filter(AdminUser.username == username).one_or_none() is not None:
        raise ValueError("Ya existe un usuario con ese nombre")
    user = AdminUser(
        username=username,
        password_hash=generate_password_hash(payload["password"]),
        display_name=clean_str(payload.get("display_name"), 150),
        is_active=parse_bool(payload.get("is_active"), True),
    )
    s.add(user)
    s.flush()
    _set_roles(s, user, payload.get("roles") or [], payload.get("primary_role"))
    record_event(
        s,
        actor=actor,
        action="admin_user.create",
        entity_type="AdminUser",
        entity_id=str(user.id),
        metadata={"username": username, "roles": [r.code for r in user.roles]},
    )
    return user


def update_admin_user(s: "Session", user: AdminUser, payload: dict, actor: AdminUser) -> AdminUser:
    before = {"is_active": user.is_active, "roles": sorted(r.code for r in user.roles)}
    if "display_name" in payload:
        user.display_name = clean_str(payload.get("display_name"), 150)
    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"), user.is_active)
        if not is_active and user.id == actor.id:
            raise ValueError("No puedes desactivar tu propio usuario")
        user.is_active = is_active
    if "roles" in payload or "primary_role" in payload:
        codes = payload["roles"] if "roles" in payload else [r.code for r in user.roles]
        _set_roles(s, user, codes or [], payload.get("primary_role"))
    user.updated_at = datetime.utcnow()
    s.flush()
    after = {"is_active": user.is_active, "roles": sorted(r.code for r in user.roles)}
    record_event(
        s,
        actor=actor,
        action="admin_user.update",
        entity_type="AdminUser",
        entity_id=str(user.id),
        metadata={"before": before, "after": after},
    )
    return user


def reset_admin_password(s: "Session", user: AdminUser, password: str, actor: AdminUser) -> None:
    user.password_hash = generate_password_hash(password)
    user.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=actor,
        action="admin_user.password_reset",
        entity_type="AdminUser",
        entity_id=str(user.id),
        metadata={"target": user.username, "reset_by": actor.username},
    )
