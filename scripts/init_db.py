#!/usr/bin/env python3
"""
Seed a facturador database: permissions, the ADMINISTRADOR/FACTURADOR roles,
the first admin user, payment terms, warehouse PRINCIPAL and the FAC sequence.

Safe to re-run. An existing admin keeps their password.

Usage:
  python scripts/init_db.py [--database-url URL] [--create-tables]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.facturador.db import build_engine, standalone_session
from app.facturador.models import Base
from app.facturador.seed import seed_defaults

DEFAULT_DATABASE_URL = "sqlite:///facturador.db"


def resolve_database_url(database_url: str | None = None) -> str:
    return (database_url or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL).strip()


def create_tables(db_url: str) -> None:
    """Local development only; deployments go through alembic (scripts/release.py)."""
    engine = build_engine(db_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    db_url = resolve_database_url(database_url)

    with standalone_session(db_url) as s:
        admin = seed_defaults(s, admin_username=admin_username, admin_password=admin_password)
        roles = ", ".join(sorted(r.code for r in admin.roles))

    print("Seed complete.")
    print(f"Admin username: {admin_username} (roles: {roles})")
    if admin_password == "change-me":
        print("WARNING: ADMIN_PASSWORD not set; the admin was created with the default password.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the facturador database")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    parser.add_argument("--create-tables", action="store_true", help="Create tables from the models before seeding")
    args = parser.parse_args()

    db_url = resolve_database_url(args.database_url)
    if args.create_tables:
        create_tables(db_url)
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()
