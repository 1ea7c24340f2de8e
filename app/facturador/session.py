"""
Session payload carried in the signed session cookie, and the role/permission
derivations every guard relies on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from flask import current_app, session

from app.facturador.constants import (
    PERM_ADMIN_USERS,
    PERM_CASH_OPEN,
    PERM_INVOICE_ISSUE,
    ROLE_ADMINISTRADOR,
    ROLE_FACTURADOR,
)

SESSION_KEY = "auth"
ROLE_ADMIN = "admin"
ROLE_WAITER = "waiter"


@dataclass(frozen=True)
class SessionInfo:
    sub: str
    role: str
    name: str
    roles: tuple[str, ...] = field(default_factory=tuple)
    permissions: tuple[str, ...] = field(default_factory=tuple)
    created_at: datetime | None = None
    exp: datetime | None = None

    @property
    def user_id(self) -> int | None:
        try:
            return int(self.sub)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "role": self.role,
            "name": self.name,
            "roles": list(self.roles),
            "permissions": list(self.permissions),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "exp": self.exp.isoformat() if self.exp else None,
        }


def normalize_roles(roles: Any) -> tuple[str, ...]:
    if not isinstance(roles, (list, tuple)):
        return ()
    out: list[str] = []
    for role in roles:
        if not isinstance(role, str):
            continue
        code = role.strip().upper()
        if code and code not in out:
            out.append(code)
    return tuple(out)


def normalize_permissions(permissions: Any) -> tuple[str, ...]:
    """Trim and dedupe case-insensitively, keeping the first spelling."""
    if not isinstance(permissions, (list, tuple)):
        return ()
    seen: set[str] = set()
    out: list[str] = []
    for perm in permissions:
        if not isinstance(perm, str):
            continue
        value = perm.strip()
        if not value or value.lower() in seen:
            continue
        seen.add(value.lower())
        out.append(value)
    return tuple(out)


def has_permission(info: SessionInfo | None, code: str) -> bool:
    if info is None:
        return False
    target = code.strip().lower()
    return any(p.lower() == target for p in info.permissions)


def is_administrator(info: SessionInfo | None) -> bool:
    if info is None or info.role != ROLE_ADMIN:
        return False
    if ROLE_ADMINISTRADOR in info.roles:
        return True
    if has_permission(info, PERM_ADMIN_USERS):
        return True
    # Legacy sessions created before roles were stored in the payload.
    return not info.roles and not info.permissions


def is_facturador(info: SessionInfo | None) -> bool:
    return info is not None and ROLE_FACTURADOR in info.roles


def can_access_facturacion(info: SessionInfo | None) -> bool:
    if info is None or info.role != ROLE_ADMIN:
        return False
    return (
        is_administrator(info)
        or is_facturador(info)
        or has_permission(info, PERM_INVOICE_ISSUE)
        or has_permission(info, PERM_CASH_OPEN)
    )


def build_session(*, sub: str, role: str, name: str, roles: Any = (), permissions: Any = ()) -> SessionInfo:
    now = datetime.utcnow().replace(microsecond=0)
    ttl = int(current_app.config.get("SESSION_TTL_HOURS") or 12)
    return SessionInfo(
        sub=str(sub),
        role=role,
        name=name,
        roles=normalize_roles(list(roles)),
        permissions=normalize_permissions(list(permissions)),
        created_at=now,
        exp=now + timedelta(hours=ttl),
    )


def parse_session_payload(raw: Any) -> SessionInfo | None:
    """Payload dict -> SessionInfo. Malformed or expired payloads return None."""
    if not isinstance(raw, dict):
        return None
    sub = raw.get("sub")
    role = raw.get("role")
    if not sub or role not in (ROLE_ADMIN, ROLE_WAITER):
        return None
    try:
        exp = datetime.fromisoformat(raw["exp"]) if raw.get("exp") else None
        created_at = datetime.fromisoformat(raw["created_at"]) if raw.get("created_at") else None
    except (TypeError, ValueError):
        return None
    if exp is None or exp <= datetime.utcnow():
        return None
    return SessionInfo(
        sub=str(sub),
        role=role,
        name=str(raw.get("name") or ""),
        roles=normalize_roles(raw.get("roles")),
        permissions=normalize_permissions(raw.get("permissions")),
        created_at=created_at,
        exp=exp,
    )


def store_session(info: SessionInfo) -> None:
    session.clear()
    session[SESSION_KEY] = info.to_dict()
    session.permanent = True


def clear_session() -> None:
    if SESSION_KEY in session:
        session.pop(SESSION_KEY, None)


def read_session() -> SessionInfo | None:
    return parse_session_payload(session.get(SESSION_KEY))
