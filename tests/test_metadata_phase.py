"""Tests for series naming in the metadata phase."""

import pytest
from sqlmodel import Session, select

from longbox import database
from longbox.comicinfo import ComicInfoParsed
from longbox.discovery import run_discovery
from longbox.metadata_phase import (
    issue_from_filename,
    run_metadata_phase,
    series_from_folder,
    series_name_for,
)
from longbox.models import FileMetadata, FileStatus, MetadataSource, Series, TrackedFile
from longbox.repository import Repository
from longbox.scanner import ensure_library

from conftest import comicinfo_xml, make_cbz


@pytest.mark.parametrize(
    "folder, expected",
    [
        ("Saga", "Saga"),
        ("Saga (2012)", "Saga"),
        ("Saga (2012-2018)", "Saga"),
        ("Hawkeye by Matt Fraction (2012)", "Hawkeye"),
        ("Ms_Marvel", "Ms Marvel"),
        ("The.Walking.Dead", "The Walking Dead"),
        ("Year (of the Dragon)", "Year (of the Dragon)"),
    ],
)
def test_series_from_folder(folder, expected):
    assert series_from_folder(folder) == expected


def test_issue_from_filename():
    assert issue_from_filename("Saga 001") == "001"
    assert issue_from_filename("Saga #12 (2013)") == "12"
    assert issue_from_filename("Batman 161.5 [digital]") == "161.5"
    assert issue_from_filename("Watchmen") is None


def test_series_name_precedence():
    sidecar = ComicInfoParsed(series="  Saga  ")
    assert series_name_for("Folder/x.cbz", sidecar) == ("Saga", MetadataSource.COMICINFO)
    assert series_name_for("Saga (2012)/x.cbz", ComicInfoParsed(series=" ")) == (
        "Saga",
        MetadataSource.FOLDER,
    )
    assert series_name_for("Watchmen.cbz", None) == ("Watchmen", MetadataSource.FILENAME)


def _scan(config, engine):
    library = ensure_library(config)
    run_discovery(library, config=config)
    return library, run_metadata_phase(library, config=config, engine=engine)


def test_metadata_phase_names_every_file(db, config, engine, library_root):
    make_cbz(
        library_root / "Misc" / "tagged.cbz",
        comicinfo=comicinfo_xml(Series="Saga", Number="3", Writer="Brian K. Vaughan"),
    )
    make_cbz(library_root / "Paper Girls (2015-2019)" / "Paper Girls 002.cbz")
    make_cbz(library_root / "Watchmen.cbz")

    library, result = _scan(config, engine)
    assert result.processed == 3
    assert result.errors == 0
    assert (result.from_sidecar, result.from_folder, result.from_filename) == (1, 1, 1)

    with Session(database.get_engine()) as session:
        files = {f.filename: f for f in session.exec(select(TrackedFile)).all()}
        assert files["tagged.cbz"].series_name_raw == "Saga"
        assert files["Paper Girls 002.cbz"].series_name_raw == "Paper Girls"
        assert files["Watchmen.cbz"].series_name_raw == "Watchmen"
        assert all(f.status == FileStatus.INDEXED for f in files.values())

        series = {s.name for s in session.exec(select(Series)).all()}
        assert series == {"Saga", "Paper Girls", "Watchmen"}

        tagged = session.exec(
            select(FileMetadata).where(FileMetadata.file_id == files["tagged.cbz"].id)
        ).one()
        assert tagged.source == MetadataSource.COMICINFO
        assert tagged.issue_number == "3"
        assert tagged.issue_number_sort == 3.0
        assert tagged.writer == "Brian K. Vaughan"

        folder = session.exec(
            select(FileMetadata).where(FileMetadata.file_id == files["Paper Girls 002.cbz"].id)
        ).one()
        assert folder.issue_number == "002"
        assert folder.issue_number_sort == 2.0


def test_metadata_phase_skips_named_files(db, config, engine, library_root):
    make_cbz(library_root / "Saga" / "Saga 001.cbz")
    library, first = _scan(config, engine)
    assert first.processed == 1

    second = run_metadata_phase(library, config=config, engine=engine)
    assert second.processed == 0


def test_unreadable_archive_counts_as_error(db, config, engine, library_root):
    broken = library_root / "Saga" / "broken.cbz"
    broken.parent.mkdir(parents=True)
    broken.write_bytes(b"PK\x03\x04 truncated")
    make_cbz(library_root / "Saga" / "Saga 001.cbz")

    library, result = _scan(config, engine)
    assert result.processed == 2
    assert result.errors == 1
    assert result.from_folder == 1

    with Session(database.get_engine()) as session:
        bad = session.exec(select(TrackedFile).where(TrackedFile.filename == "broken.cbz")).one()
        assert bad.series_name_raw is None
        assert bad.status == FileStatus.PENDING


def test_failed_metadata_cache_keeps_series_names(db, config, engine, library_root, monkeypatch):
    make_cbz(library_root / "Saga" / "Saga 001.cbz")
    make_cbz(library_root / "Saga" / "Saga 002.cbz")

    def broken_upsert(self, records):
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(Repository, "upsert_metadata", broken_upsert)
    library, result = _scan(config, engine)
    assert result.errors == 0
    assert result.from_folder == 2

    with Session(database.get_engine()) as session:
        files = session.exec(select(TrackedFile)).all()
        assert {f.series_name_raw for f in files} == {"Saga"}
        assert all(f.status == FileStatus.INDEXED for f in files)
        assert session.exec(select(FileMetadata)).first() is None
        assert session.exec(select(Series)).one().name == "Saga"


def test_failed_series_flush_drops_only_its_batch(db, config, engine, library_root, monkeypatch):
    make_cbz(library_root / "Saga" / "Saga 001.cbz")
    make_cbz(library_root / "Saga" / "Saga 002.cbz")
    config.scanner.flush_threshold = 1

    calls = []

    def broken_updates(self, updates):
        calls.append(len(updates))
        raise RuntimeError("database is locked")

    monkeypatch.setattr(Repository, "apply_file_updates", broken_updates)
    library, result = _scan(config, engine)
    assert calls == [1, 1]
    assert result.processed == 2
    assert result.errors == 2
    monkeypatch.undo()

    with Session(database.get_engine()) as session:
        assert all(f.series_name_raw is None for f in session.exec(select(TrackedFile)).all())

    retry = run_metadata_phase(library, config=config, engine=engine)
    assert retry.processed == 2
    assert retry.errors == 0


def test_restored_file_returns_to_indexed(db, config, engine, library_root, tmp_path):
    comic = make_cbz(library_root / "Saga" / "Saga 001.cbz")
    library, _ = _scan(config, engine)

    parked = tmp_path / "parked.cbz"
    comic.rename(parked)
    run_discovery(library, config=config)
    parked.rename(comic)
    run_discovery(library, config=config)

    result = run_metadata_phase(library, config=config, engine=engine)
    assert result.processed == 1
    with Session(database.get_engine()) as session:
        tracked = session.exec(select(TrackedFile)).one()
        assert tracked.status == FileStatus.INDEXED
        assert tracked.series_name_raw == "Saga"
