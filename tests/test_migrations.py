"""Tests for the Alembic migration helpers."""

from longbox import database
from longbox.migrations import get_status, run_migrations, stamp_if_needed


def test_fresh_database_migrates_to_head(tmp_path, monkeypatch):
    db_file = tmp_path / "library.db"
    monkeypatch.setattr(database, "DB_PATH", db_file, raising=True)
    monkeypatch.setattr(
        database, "engine", database.make_engine(f"sqlite:///{db_file}"), raising=True
    )

    current, head = get_status()
    assert current is None

    run_migrations(backup=False)
    current, head = get_status()
    assert current == head

    with database.db_connection() as conn:
        names = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master")}
    assert {"libraries", "files", "file_metadata", "series"} <= names
    database.engine.dispose()


def test_init_db_database_is_stamped(db):
    current, head = get_status()
    assert current is None

    stamp_if_needed()
    current, head = get_status()
    assert current == head
