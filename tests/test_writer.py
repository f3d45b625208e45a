"""Tests for CBZ creation and mutation."""

import zipfile

from longbox import writer
from longbox.archive_models import ArchiveCreationResult

from conftest import make_cbz, png_bytes


def _names(path):
    with zipfile.ZipFile(path) as zf:
        return sorted(zf.namelist())


def test_create_archive_stores_relative_entries(tmp_path):
    source = tmp_path / "src"
    (source / "pages").mkdir(parents=True)
    (source / "pages" / "001.png").write_bytes(png_bytes())
    (source / "ComicInfo.xml").write_text("<ComicInfo/>")

    out = tmp_path / "new.cbz"
    result = writer.create_archive(source, out)
    assert result.success
    assert result.file_count == 2
    assert result.size == out.stat().st_size
    assert _names(out) == ["ComicInfo.xml", "pages/001.png"]
    with zipfile.ZipFile(out) as zf:
        assert all(i.compress_type == zipfile.ZIP_STORED for i in zf.infolist())


def test_create_archive_rejects_empty_or_missing_source(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    result = writer.create_archive(empty, tmp_path / "x.cbz")
    assert not result.success
    assert result.error == "Source directory is empty"

    missing = writer.create_archive(tmp_path / "missing", tmp_path / "y.cbz")
    assert not missing.success
    assert "Cannot read source directory" in missing.error


def test_non_zip_archives_are_read_only(engine, tmp_path):
    rar = tmp_path / "issue.cbr"
    rar.write_bytes(b"Rar!\x1a\x07\x00rest")
    result = engine.delete_pages(rar, ["001.png"])
    assert not result.success
    assert "Convert to CBZ first" in result.error
    assert "RAR format is read-only" in result.error

    seven = tmp_path / "issue.cb7"
    seven.write_bytes(b"7z\xbc\xaf\x27\x1c\x00\x04")
    update = engine.update_entry(seven, "ComicInfo.xml", b"<ComicInfo/>")
    assert not update.success
    assert update.error == "Cannot modify 7z archives. Convert to CBZ first."


def test_update_entry_replaces_sidecar(engine, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz", comicinfo="<ComicInfo><Series>Older</Series></ComicInfo>")
    engine.list(cbz)

    result = engine.update_entry(cbz, "ComicInfo.xml", b"<ComicInfo><Series>New</Series></ComicInfo>")
    assert result.success
    assert _names(cbz) == ["ComicInfo.xml", "page001.png"]
    assert b"New" in engine.read_entry(cbz, "ComicInfo.xml")


def test_add_or_replace_entry_adds_at_root(engine, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz")
    extra = tmp_path / "extra.png"
    extra.write_bytes(png_bytes("green"))

    result = engine.add_or_replace_entry(cbz, extra)
    assert result.success
    assert _names(cbz) == ["extra.png", "page001.png"]


def test_delete_pages(engine, tmp_path):
    cbz = make_cbz(
        tmp_path / "issue.cbz",
        pages={"pages/001.png": png_bytes(), "pages/002.png": png_bytes(), "003.png": png_bytes()},
    )
    result = engine.delete_pages(cbz, ["pages/002.png", "003.png", "missing.png"])
    assert result.success
    assert result.deleted_count == 2
    assert _names(cbz) == ["pages/001.png"]
    assert not (tmp_path / "issue.cbz.bak").exists()


def test_delete_pages_nothing_found(engine, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz")
    before = cbz.read_bytes()
    result = engine.delete_pages(cbz, ["missing.png"])
    assert not result.success
    assert result.error == "No pages were found to delete"
    assert cbz.read_bytes() == before


def test_delete_pages_restores_backup_on_failed_rebuild(engine, tmp_path, monkeypatch):
    cbz = make_cbz(
        tmp_path / "issue.cbz", pages={"001.png": png_bytes(), "002.png": png_bytes()}
    )
    before = cbz.read_bytes()

    def failing_create(source_dir, output_path):
        output_path.write_bytes(b"partial")
        return ArchiveCreationResult(
            success=False, archive_path=str(output_path), file_count=0, size=0, error="boom"
        )

    monkeypatch.setattr(writer, "create_archive", failing_create)
    result = engine.delete_pages(cbz, ["002.png"])

    assert not result.success
    assert "boom" in result.error
    assert cbz.read_bytes() == before
    assert not (tmp_path / "issue.cbz.bak").exists()
