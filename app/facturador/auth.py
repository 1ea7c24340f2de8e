from __future__ import annotations

import hashlib
import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request
from werkzeug.security import check_password_hash

from app.facturador.audit import record_event, record_login_attempt
from app.facturador.constants import INVALID_SESSION_MESSAGE, RESTAURANT_DISABLED_MESSAGE
from app.facturador.db import db_session
from app.facturador.errors import (
    AppError,
    ForbiddenError,
    RateLimitedError,
    UnauthorizedError,
    ensure_valid,
    error_response,
    ok,
)
from app.facturador.models import AdminUser, Waiter
from app.facturador.rbac import is_restaurant_mode
from app.facturador.session import (
    ROLE_ADMIN,
    ROLE_WAITER,
    build_session,
    clear_session,
    read_session,
    store_session,
)
from app.facturador.utils import json_body

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

_PIN_RE = re.compile(r"^\d{4,6}$")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def pin_signature(pin: str) -> str:
    return hashlib.sha256(pin.encode("utf-8")).hexdigest()


def admin_roles_and_permissions(user: AdminUser) -> tuple[list[str], list[str]]:
    """Codes of the user's active roles and the permissions they grant."""
    roles: list[str] = []
    permissions: list[str] = []
    for role in user.roles:
        if not role.is_active:
            continue
        roles.append(role.code.strip().upper())
        for perm in role.permissions:
            if perm.key not in permissions:
                permissions.append(perm.key)
    return roles, permissions


def load_current_user() -> None:
    """
    Loads g.session_info / g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.session_info = None
    g.current_user = None

    info = read_session()
    if info is None:
        clear_session()
        return

    try:
        s = db_session()
        user_id = info.user_id
        model = AdminUser if info.role == ROLE_ADMIN else Waiter
        user = s.get(model, user_id) if user_id is not None else None
        if not user or not user.is_active:
            clear_session()
            return
        g.session_info = info
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        clear_session()


def validate_login_payload(payload: dict) -> list[str]:
    errors = []
    role = payload.get("role")
    if role not in (ROLE_ADMIN, ROLE_WAITER):
        errors.append("El rol debe ser admin o waiter.")
        return errors
    if role == ROLE_ADMIN:
        if not (payload.get("username") or "").strip():
            errors.append("El usuario es obligatorio.")
        if not payload.get("password"):
            errors.append("La contraseña es obligatoria.")
    else:
        pin = str(payload.get("pin") or "").strip()
        if not _PIN_RE.match(pin):
            errors.append("El PIN debe tener entre 4 y 6 dígitos.")
    return errors


def _login_admin(payload: dict):
    s = db_session()
    username = (payload.get("username") or "").strip().lower()
    password = payload.get("password") or ""
    user = s.query(AdminUser).filter(AdminUser.username == username).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_login_attempt(s, login_type=ROLE_ADMIN, identifier=username, success=False, notes="Credenciales no válidas")
        s.commit()
        clear_session()
        return error_response("Credenciales no válidas", status=401, code="UNAUTHORIZED")

    roles, permissions = admin_roles_and_permissions(user)
    user.last_login_at = datetime.utcnow()
    record_login_attempt(s, login_type=ROLE_ADMIN, identifier=username, success=True)
    record_event(s, actor=user, action="auth.login", entity_type="AdminUser", entity_id=str(user.id))
    s.commit()

    info = build_session(sub=str(user.id), role=ROLE_ADMIN, name=user.name, roles=roles, permissions=permissions)
    store_session(info)
    return ok(
        user={
            "id": user.id,
            "username": user.username,
            "name": user.name,
            "roles": list(info.roles),
            "permissions": list(info.permissions),
        }
    )


def _login_waiter(payload: dict):
    if not is_restaurant_mode():
        raise ForbiddenError(RESTAURANT_DISABLED_MESSAGE)
    s = db_session()
    pin = str(payload.get("pin") or "").strip()
    signature = pin_signature(pin)
    waiter = s.query(Waiter).filter(Waiter.pin_signature == signature).one_or_none()
    if not waiter or not waiter.is_active or not check_password_hash(waiter.pin_hash, pin):
        record_login_attempt(s, login_type=ROLE_WAITER, identifier=signature[:12], success=False, notes="PIN no válido")
        s.commit()
        clear_session()
        return error_response("PIN no válido", status=401, code="UNAUTHORIZED")

    waiter.last_login_at = datetime.utcnow()
    record_login_attempt(s, login_type=ROLE_WAITER, identifier=waiter.code, success=True)
    record_event(s, actor=waiter, action="auth.login", entity_type="Waiter", entity_id=str(waiter.id))
    s.commit()

    info = build_session(sub=str(waiter.id), role=ROLE_WAITER, name=waiter.full_name, roles=[ROLE_WAITER], permissions=[])
    store_session(info)
    return ok(waiter={"id": waiter.id, "code": waiter.code, "name": waiter.full_name})


@bp.post("/login")
def login_post():
    ip = request.remote_addr or "unknown"
    if _check_rate_limit(ip):
        raise RateLimitedError("Demasiados intentos de inicio de sesión. Espera 5 minutos.")
    _record_attempt(ip)

    payload = json_body()
    ensure_valid(validate_login_payload(payload))
    try:
        if payload["role"] == ROLE_ADMIN:
            resp = _login_admin(payload)
        else:
            resp = _login_waiter(payload)
    except AppError:
        raise
    except Exception:
        current_app.logger.exception("Login POST crashed (role=%s request_id=%s)", payload.get("role"), getattr(g, "request_id", None))
        raise

    if resp[1] == 200:
        _login_attempts[ip].clear()
    return resp


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user is not None:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type=type(user).__name__, entity_id=str(user.id))
        s.commit()
    clear_session()
    return ok(message="Sesión finalizada")


@bp.get("/session")
def session_get():
    info = getattr(g, "session_info", None)
    if info is None:
        raise UnauthorizedError(INVALID_SESSION_MESSAGE)
    return ok(session=info.to_dict())
