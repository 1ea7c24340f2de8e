"""
Release phase: alembic upgrade to head, then the idempotent seed.

Refuses to run when DATABASE_URL is missing, and in production when the database
is sqlite or ADMIN_PASSWORD was left unset (the seed would create the first
administrator with the default password).

Usage:
  python scripts/release.py [--skip-seed]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _is_production() -> bool:
    return (os.environ.get("ENV") or "").strip().lower() in ("prod", "production")


def check_release_env() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required for the release phase (set it in the environment or .env).")
    if _is_production():
        if db_url.startswith("sqlite"):
            raise RuntimeError("Refusing to release against sqlite in production; DATABASE_URL must be Postgres.")
        if (os.environ.get("ADMIN_PASSWORD") or "change-me") == "change-me":
            raise RuntimeError("ADMIN_PASSWORD must be set in production before seeding the first administrator.")
    return db_url


def run_migrations(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def run_release(*, seed: bool = True) -> None:
    db_url = check_release_env()
    from app.facturador.config import load_settings

    settings = load_settings()
    mode = "restaurante" if settings.restaurant_mode else "retail"
    print(f"=== Facturador release (env={settings.env}, mode={mode}) ===", flush=True)

    print("Applying migrations...", flush=True)
    run_migrations(db_url)

    if seed:
        print("Seeding reference data...", flush=True)
        from scripts.init_db import seed_only

        seed_only(database_url=db_url)
    print("=== Release done ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run migrations and seed")
    parser.add_argument("--skip-seed", action="store_true", help="Only apply migrations")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
