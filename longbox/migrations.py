"""Alembic migration helpers for Longbox.

This is the only module in the project that imports alembic directly.
The CLI goes through the functions below.
"""

from __future__ import annotations

import shutil
import sqlite3
from typing import Optional

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from . import database
from .config import PROJECT_ROOT


def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig that points at our alembic.ini."""
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    # Absolute script_location so the CLI works from any directory.
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _backup_db() -> None:
    """Copy library.db -> library.db.bak (overwrite previous backup)."""
    if database.DB_PATH.exists():
        shutil.copy2(database.DB_PATH, database.DB_PATH.with_suffix(".db.bak"))


def _alembic_version_exists() -> bool:
    """Return True when the alembic_version table is present in the DB."""
    if not database.DB_PATH.exists():
        return False
    conn = sqlite3.connect(database.DB_PATH)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        return cur.fetchone() is not None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``, copying library.db first when *backup* is set."""
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by init_db() to the current head.

    No-op when the DB does not exist yet or already carries a version.
    """
    if not database.DB_PATH.exists():
        return
    if _alembic_version_exists():
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> tuple[Optional[str], str]:
    """Return (current_revision, head_revision).

    current_revision is None when the DB does not exist or has never
    been stamped/migrated.
    """
    cfg = _alembic_cfg()
    head_rev: str = ScriptDirectory.from_config(cfg).get_current_head() or "unknown"

    if not database.DB_PATH.exists() or not _alembic_version_exists():
        return None, head_rev

    conn = sqlite3.connect(database.DB_PATH)
    try:
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return (row[0] if row else None), head_rev
    finally:
        conn.close()
