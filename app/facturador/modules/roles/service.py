from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.facturador.audit import record_event
from app.facturador.models import AdminUser, Permission, Role
from app.facturador.utils import clean_code, clean_str, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def role_to_dict(r: Role) -> dict:
    return {
        "id": r.id,
        "code": r.code,
        "name": r.name,
        "description": r.description,
        "is_active": r.is_active,
        "permissions": sorted(p.key for p in r.permissions),
        "user_count": len(r.users),
    }


def permission_to_dict(p: Permission) -> dict:
    return {"key": p.key, "name": p.name}


def list_roles(s: "Session") -> list[Role]:
    return s.query(Role).order_by(Role.code.asc()).all()


def list_permissions(s: "Session") -> list[Permission]:
    return s.query(Permission).order_by(Permission.key.asc()).all()


def get_role_by_code(s: "Session", code: str | None) -> Role | None:
    code = clean_code(code)
    if not code:
        return None
    return s.query(Role).filter(Role.code == code).one_or_none()


def validate_role_payload(s: "Session", payload: dict, *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating and not clean_code(payload.get("code")):
        errors.append("El código del rol es obligatorio.")
    if (creating or "name" in payload) and not clean_str(payload.get("name")):
        errors.append("El nombre del rol es obligatorio.")
    perms = payload.get("permissions")
    if perms is not None:
        if not isinstance(perms, list) or not all(isinstance(p, str) for p in perms):
            errors.append("Los permisos deben ser una lista de códigos.")
        else:
            known = {p.key.lower() for p in list_permissions(s)}
            unknown = sorted({p.strip() for p in perms if p.strip().lower() not in known})
            if unknown:
                errors.append(f"Permisos desconocidos: {', '.join(unknown)}")
    return errors


def _set_permissions(s: "Session", role: Role, keys: list[str]) -> None:
    wanted = {k.strip().lower() for k in keys if k and k.strip()}
    role.permissions = [p for p in list_permissions(s) if p.key.lower() in wanted]


def create_role(s: "Session", payload: dict, actor: AdminUser) -> Role:
    code = clean_code(payload.get("code"))[:40]
    if get_role_by_code(s, code) is not None:
        raise ValueError("Ya existe un rol con ese código")
    role = Role(
        code=code,
        name=clean_str(payload.get("name"), 120),
        description=clean_str(payload.get("description"), 250),
        is_active=parse_bool(payload.get("is_active"), True),
    )
    s.add(role)
    _set_permissions(s, role, payload.get("permissions") or [])
    s.flush()
    record_event(
        s,
        actor=actor,
        action="role.create",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"code": code, "permissions": sorted(p.key for p in role.permissions)},
    )
    return role


def update_role(s: "Session", role: Role, payload: dict, actor: AdminUser) -> Role:
    if "name" in payload:
        role.name = clean_str(payload.get("name"), 120)
    if "description" in payload:
        role.description = clean_str(payload.get("description"), 250)
    if "is_active" in payload:
        role.is_active = parse_bool(payload.get("is_active"), role.is_active)
    if "permissions" in payload:
        _set_permissions(s, role, payload.get("permissions") or [])
    role.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=actor,
        action="role.update",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"code": role.code, "permissions": sorted(p.key for p in role.permissions)},
    )
    return role


def delete_role(s: "Session", role: Role, actor: AdminUser) -> None:
    if role.users:
        raise ValueError("No puedes eliminar un rol asignado a usuarios")
    record_event(s, actor=actor, action="role.delete", entity_type="Role", entity_id=str(role.id), metadata={"code": role.code})
    s.delete(role)
    s.flush()
