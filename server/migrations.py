"""Alembic migration helpers for Hearth.

This is the only module in the project that imports alembic directly.
Everything else (CLI, serve) goes through the functions below.
"""

from __future__ import annotations

import shutil
import sqlite3

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from .config import PROJECT_ROOT
from . import database


# ---------------------------------------------------------------------------
# Alembic config object, reused by every public function
# ---------------------------------------------------------------------------

def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig that points at our alembic.ini."""
    ini_path = PROJECT_ROOT / "alembic.ini"
    cfg = AlembicConfig(str(ini_path))
    # Absolute script_location so it works from any working directory.
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _backup_db() -> None:
    """Copy hearth.db to hearth.db.bak (overwrite previous backup)."""
    db_path = database.DB_PATH
    if db_path.exists():
        shutil.copy2(db_path, db_path.with_suffix(".db.bak"))


def _read_version() -> tuple[bool, str | None]:
    """Return (has_version_table, version_num) for the current database."""
    db_path = database.DB_PATH
    if not db_path.exists():
        return False, None
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        if cur.fetchone() is None:
            return False, None
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return True, (row[0] if row else None)
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``.

    If *backup* is True and hearth.db already exists, a copy is made first.
    """
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` (create_all) to the current head.

    Called by ``serve`` on startup. No-op when the database is missing or
    already carries an alembic_version table.
    """
    if not database.DB_PATH.exists():
        return
    has_table, _ = _read_version()
    if has_table:
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> tuple[str | None, str]:
    """Return (current_revision, head_revision).

    current_revision is None when the DB does not exist or has never
    been stamped/migrated.
    """
    script = ScriptDirectory.from_config(_alembic_cfg())
    head_rev: str = script.get_current_head() or "unknown"
    _, current = _read_version()
    return current, head_rev
