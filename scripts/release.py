"""
Release phase: migrate the database, then make sure a system admin exists.

Refuses to run against SQLite when ENV is production. Seeding never touches
an existing admin's password.

Usage:
  python scripts/release.py [--revision REV] [--skip-seed]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for the release phase.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL points at sqlite while ENV=production; use Postgres.")
    return db_url


def migrate(db_url: str, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, revision)


def run_release(revision: str = "head", seed: bool = True) -> None:
    db_url = _database_url()
    print(f"[release] upgrading schema to {revision}", flush=True)
    migrate(db_url, revision)
    if seed:
        from scripts import init_db

        print("[release] ensuring system admin", flush=True)
        init_db.seed_only(database_url=db_url)
    print("[release] done", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run migrations and seed the system admin.")
    parser.add_argument("--revision", default="head")
    parser.add_argument("--skip-seed", action="store_true")
    args = parser.parse_args()
    run_release(args.revision, seed=not args.skip_seed)


if __name__ == "__main__":
    main()
