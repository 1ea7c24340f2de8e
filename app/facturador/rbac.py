from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g

from app.facturador.constants import (
    ADMIN_ONLY_MESSAGE,
    INVALID_SESSION_MESSAGE,
    RESTAURANT_DISABLED_MESSAGE,
    RETAIL_DISABLED_MESSAGE,
)
from app.facturador.errors import ForbiddenError, UnauthorizedError
from app.facturador.models import AdminUser, Waiter
from app.facturador.session import (
    ROLE_ADMIN,
    ROLE_WAITER,
    SessionInfo,
    can_access_facturacion,
    has_permission,
    is_administrator,
)

View = Callable[..., Any]


def is_restaurant_mode() -> bool:
    return bool(current_app.config.get("RESTAURANT_MODE", True))


def is_retail_mode() -> bool:
    return not is_restaurant_mode()


def current_session() -> SessionInfo | None:
    return getattr(g, "session_info", None)


def current_admin() -> AdminUser:
    user = getattr(g, "current_user", None)
    if not isinstance(user, AdminUser):
        raise UnauthorizedError(INVALID_SESSION_MESSAGE)
    return user


def current_waiter() -> Waiter:
    user = getattr(g, "current_user", None)
    if not isinstance(user, Waiter):
        raise UnauthorizedError(INVALID_SESSION_MESSAGE)
    return user


def current_actor() -> AdminUser | Waiter | None:
    return getattr(g, "current_user", None)


def _require_info(role: str | None = None) -> SessionInfo:
    info = current_session()
    if info is None or getattr(g, "current_user", None) is None:
        raise UnauthorizedError(INVALID_SESSION_MESSAGE)
    if role is not None and info.role != role:
        raise UnauthorizedError(INVALID_SESSION_MESSAGE)
    return info


def user_has_any_permission(info: SessionInfo | None, codes: tuple[str, ...]) -> bool:
    if is_administrator(info):
        return True
    return any(has_permission(info, code) for code in codes)


def require_session(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        _require_info()
        return fn(*args, **kwargs)

    return wrapped


def require_admin_session(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        _require_info(ROLE_ADMIN)
        return fn(*args, **kwargs)

    return wrapped


def require_waiter(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        _require_info(ROLE_WAITER)
        return fn(*args, **kwargs)

    return wrapped


def require_administrator(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        info = _require_info()
        if not is_administrator(info):
            g.missing_permission = "administrator"
            raise ForbiddenError(ADMIN_ONLY_MESSAGE)
        return fn(*args, **kwargs)

    return wrapped


def require_permissions(*codes: str, message: str | None = None) -> Callable[[View], View]:
    """Administrators always pass; otherwise any one of `codes` is enough."""

    def decorator(fn: View) -> View:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            info = _require_info(ROLE_ADMIN)
            if not user_has_any_permission(info, codes):
                g.missing_permission = ",".join(codes)
                raise ForbiddenError(message or "No tienes permisos para realizar esta acción")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_facturacion(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        info = _require_info(ROLE_ADMIN)
        if not can_access_facturacion(info):
            g.missing_permission = "invoice.issue"
            raise ForbiddenError("No tienes permisos para facturar")
        return fn(*args, **kwargs)

    return wrapped


def require_restaurant_mode(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not is_restaurant_mode():
            raise ForbiddenError(RESTAURANT_DISABLED_MESSAGE)
        return fn(*args, **kwargs)

    return wrapped


def require_retail_mode(fn: View) -> View:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not is_retail_mode():
            raise ForbiddenError(RETAIL_DISABLED_MESSAGE)
        return fn(*args, **kwargs)

    return wrapped
