"""
Alembic runner for the planning schema.

The planning tables (runs, recommendations, dependent demand) ship with the package,
so the migration environment is configured in code rather than through an alembic.ini.

Usage:
    python -m mrp_engine.db.run_migrations upgrade head
    python -m mrp_engine.db.run_migrations downgrade -1
    python -m mrp_engine.db.run_migrations current
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List

from alembic import command
from alembic.config import Config

from mrp_engine.db.config import get_settings

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


# PUBLIC_INTERFACE
def build_config() -> Config:
    """Return an Alembic Config pointing at the bundled migrations and the configured database."""
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # env.py swaps in the async URL when running online.
    cfg.set_main_option("sqlalchemy.url", get_settings().sync_database_url)
    return cfg


# PUBLIC_INTERFACE
def upgrade(revision: str = "head") -> None:
    """Apply migrations up to the given revision. Blocking; run it off the event loop."""
    command.upgrade(build_config(), revision)


# PUBLIC_INTERFACE
def main(argv: List[str] | None = None) -> None:
    """Command line entry point: upgrade, downgrade or current."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: run_migrations {upgrade [rev] | downgrade [rev] | current}")
        sys.exit(1)

    cmd, rest = args[0], args[1:]
    if cmd == "upgrade":
        upgrade(*(rest or ["head"]))
    elif cmd == "downgrade":
        command.downgrade(build_config(), *(rest or ["-1"]))
    elif cmd == "current":
        command.current(build_config())
    else:
        print(f"Unsupported migration command: {cmd}")
        sys.exit(2)


if __name__ == "__main__":
    main()
