#!/usr/bin/env python3
"""
Container entrypoint: release phase, then exec into gunicorn serving app.wsgi:app.

Environment:
  PORT              bind port (default 8080)
  WEB_CONCURRENCY   gunicorn workers (default 2)
  GUNICORN_TIMEOUT  worker timeout in seconds (default 60)

Usage:
  python scripts/start.py [--skip-release]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"ERROR: {name}={raw!r} is not an integer.")
    if not low <= value <= high:
        raise SystemExit(f"ERROR: {name}={value} must be between {low} and {high}.")
    return value


def gunicorn_argv(*, port: int, workers: int, timeout: int) -> list[str]:
    # --preload runs create_app() once in the master; the app disposes its engine in each forked worker.
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    parser = argparse.ArgumentParser(description="Release and serve facturador")
    parser.add_argument("--skip-release", action="store_true", help="Start gunicorn without migrating or seeding")
    args = parser.parse_args()

    port = _env_int("PORT", 8080, low=1, high=65535)
    workers = _env_int("WEB_CONCURRENCY", 2, low=1, high=32)
    timeout = _env_int("GUNICORN_TIMEOUT", 60, low=5, high=600)

    if not args.skip_release:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    argv = gunicorn_argv(port=port, workers=workers, timeout=timeout)
    print(f"Starting gunicorn on 0.0.0.0:{port} with {workers} worker(s); probes at /healthz", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
