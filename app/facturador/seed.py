"""
Idempotent reference data: permissions, the two built-in roles, an admin user,
payment terms, the default warehouse and the default invoice sequence.

Never overwrites an existing user's password.
"""

from __future__ import annotations

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.facturador.constants import PERMISSION_CATALOG, ROLE_ADMINISTRADOR, SEED_ROLES
from app.facturador.models import AdminUser, AdminUserRole, Permission, Role
from app.facturador.modules.catalog.models import Warehouse
from app.facturador.modules.cxc.models import PaymentTerm
from app.facturador.modules.sequences.models import SequenceDefinition

DEFAULT_PAYMENT_TERMS = [
    ("CONTADO", "Contado", 0),
    ("CRED15", "Crédito 15 días", 15),
    ("CRED30", "Crédito 30 días", 30),
]
DEFAULT_WAREHOUSES = [("PRINCIPAL", "Bodega principal")]
DEFAULT_INVOICE_SEQUENCE = {"code": "FAC", "name": "Facturas", "scope": "INVOICE", "prefix": "FAC-", "padding": 6}


def ensure_permissions(s: Session) -> dict[str, Permission]:
    perms = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSION_CATALOG:
        if key not in perms:
            perms[key] = Permission(key=key, name=name)
            s.add(perms[key])
    s.flush()
    return perms


def ensure_roles(s: Session, perms: dict[str, Permission]) -> dict[str, Role]:
    roles = {}
    for code, role_def in SEED_ROLES.items():
        role = s.query(Role).filter(Role.code == code).one_or_none()
        if role is None:
            role = Role(code=code, name=role_def["name"], description=role_def["description"], is_active=True)
            s.add(role)
        for key in role_def["permissions"]:
            if perms[key] not in role.permissions:
                role.permissions.append(perms[key])
        roles[code] = role
    s.flush()
    return roles


def ensure_admin_user(s: Session, username: str, password: str, role: Role) -> AdminUser:
    username = username.strip().lower()
    user = s.query(AdminUser).filter(AdminUser.username == username).one_or_none()
    if user is None:
        user = AdminUser(username=username, password_hash=generate_password_hash(password), display_name="Administrador", is_active=True)
        s.add(user)
        s.flush()
    if role not in user.roles:
        user.roles.append(role)
        s.flush()
        link = s.get(AdminUserRole, (user.id, role.id))
        if link is not None:
            link.is_primary = True
    return user


def ensure_reference_data(s: Session) -> None:
    for code, name, days in DEFAULT_PAYMENT_TERMS:
        if s.query(PaymentTerm).filter(PaymentTerm.code == code).one_or_none() is None:
            s.add(PaymentTerm(code=code, name=name, days=days, is_active=True))
    for code, name in DEFAULT_WAREHOUSES:
        if s.query(Warehouse).filter(Warehouse.code == code).one_or_none() is None:
            s.add(Warehouse(code=code, name=name, is_active=True))
    seq = DEFAULT_INVOICE_SEQUENCE
    if s.query(SequenceDefinition).filter(SequenceDefinition.code == seq["code"]).one_or_none() is None:
        s.add(SequenceDefinition(**seq, suffix="", start_value=1, step=1, is_active=True))
    s.flush()


def seed_defaults(s: Session, *, admin_username: str, admin_password: str) -> AdminUser:
    perms = ensure_permissions(s)
    roles = ensure_roles(s, perms)
    admin = ensure_admin_user(s, admin_username, admin_password, roles[ROLE_ADMINISTRADOR])
    ensure_reference_data(s)
    return admin
