#!/usr/bin/env python3
"""Grant the ADMINISTRADOR role to an admin user (idempotent).

Usage:
  python scripts/attach_admin_role.py --username cajero1 [--primary]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.facturador.constants import ROLE_ADMINISTRADOR
from app.facturador.models import AdminUser, AdminUserRole, Role
from app.facturador.db import standalone_session
from scripts.init_db import resolve_database_url


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--username", required=True, help="Admin username to grant the role to")
    parser.add_argument("--primary", action="store_true", help="Mark ADMINISTRADOR as the primary role")
    args = parser.parse_args()

    db_url = resolve_database_url()
    username = args.username.strip().lower()
    with standalone_session(db_url) as s:
        user = s.query(AdminUser).filter(AdminUser.username == username).one_or_none()
        if not user:
            print(f"User not found: {username}")
            return
        role = s.query(Role).filter(Role.code == ROLE_ADMINISTRADOR).one_or_none()
        if not role:
            print("ADMINISTRADOR role not found. Run python scripts/init_db.py first.")
            return
        if role not in (user.roles or []):
            user.roles.append(role)
            s.flush()
        if args.primary:
            for link in s.query(AdminUserRole).filter(AdminUserRole.admin_user_id == user.id).all():
                link.is_primary = link.role_id == role.id
        print(f"ADMINISTRADOR role attached to {username}")


if __name__ == "__main__":
    main()
