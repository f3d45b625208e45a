import sqlite3

from longbox import database
from longbox.database import db_connection, init_db, reset_database
from longbox.scan_types import ScanOptions
from longbox.scanner import ensure_library, scan_library

from conftest import comicinfo_xml, make_cbz


def test_init_db_creates_schema(db):
    init_db()
    with db_connection() as conn:
        cur = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        table_names = {row["name"] for row in cur.fetchall()}
    assert {"libraries", "files", "file_metadata", "series"} <= table_names


def test_ensure_library_is_stable(db, config):
    first = ensure_library(config)
    second = ensure_library(config)
    assert first.id == second.id
    assert first.root_path == str(config.library_path.resolve())


def test_scan_library_smoke(db, config, engine, library_root):
    make_cbz(library_root / "Series" / "issue01.cbz")
    make_cbz(library_root / "Other" / "x.cbz", comicinfo=comicinfo_xml(Series="Tagged", Number="1"))

    events = []
    library = ensure_library(config)
    result = scan_library(library, ScanOptions(on_progress=events.append), config, engine)

    assert result.success
    assert not result.cancelled
    assert result.discovery.new_files == 2
    assert result.metadata.from_folder == 1
    assert result.metadata.from_sidecar == 1
    assert result.covers.extracted == 2

    phases = [e.phase for e in events]
    assert phases[0] == "discovery"
    assert phases[-1] == "complete"
    assert phases.index("metadata") < phases.index("covers")

    conn = sqlite3.connect(database.DB_PATH)
    try:
        conn.row_factory = sqlite3.Row
        rows = conn.execute("SELECT relative_path, status, series_name_raw FROM files").fetchall()
        files = {row["relative_path"]: row for row in rows}
        assert files["Series/issue01.cbz"]["status"] == "indexed"
        assert files["Series/issue01.cbz"]["series_name_raw"] == "Series"
        assert files["Other/x.cbz"]["series_name_raw"] == "Tagged"

        series = {row["name"] for row in conn.execute("SELECT name FROM series").fetchall()}
        assert series == {"Series", "Tagged"}
    finally:
        conn.close()


def test_scan_library_single_phase(db, config, engine, library_root):
    make_cbz(library_root / "Series" / "issue01.cbz")
    library = ensure_library(config)

    result = scan_library(library, config=config, engine=engine, phases=("discovery",))
    assert result.discovery.new_files == 1
    assert result.metadata is None
    assert result.covers is None


def test_cancelled_scan_stops_after_phase(db, config, engine, library_root):
    make_cbz(library_root / "Series" / "issue01.cbz")
    events = []
    library = ensure_library(config)

    result = scan_library(
        library,
        ScanOptions(on_progress=events.append, should_cancel=lambda: True),
        config,
        engine,
    )
    assert result.cancelled
    assert result.metadata is None
    assert "complete" not in [e.phase for e in events]


def test_rescan_is_a_noop(db, config, engine, library_root):
    make_cbz(library_root / "Series" / "issue01.cbz")
    library = ensure_library(config)
    scan_library(library, config=config, engine=engine)

    result = scan_library(library, config=config, engine=engine)
    assert result.discovery.unchanged_files == 1
    assert result.metadata.processed == 0
    assert result.covers.processed == 0


def test_reset_database_starts_empty(db, config):
    ensure_library(config)
    reset_database()
    with db_connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM libraries").fetchone()[0] == 0
