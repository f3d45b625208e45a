"""Database connection and session management using SQLModel."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from .config import DATA_DIR

DB_PATH = DATA_DIR / "library.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"


def make_engine(url: str):
    """Create an engine whose connections enforce foreign keys.

    check_same_thread=False: scan phases hand sessions to worker threads.
    """
    new_engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(new_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return new_engine


engine = make_engine(SQLITE_URL)


def init_db() -> None:
    """Create database tables."""
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models  # noqa: F401

    with get_engine().connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(get_engine())


def reset_database() -> None:
    """Delete the database file and recreate it."""
    get_engine().dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()
    init_db()


def get_engine():
    """Return the global engine instance."""
    return engine


@contextmanager
def db_connection() -> Iterator[sqlite3.Connection]:
    """Raw sqlite3 connection with dict-like rows. Auto-closes on exit."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()
