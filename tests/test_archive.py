"""Tests for archive listing, extraction and validation."""

import zipfile

import pytest

from longbox.archive import locate_extracted_file
from longbox.archive_models import ArchiveEntry, ArchiveError, find_cover_entry
from longbox.backends import RarBackend
from longbox.engine import ArchiveEngine
from longbox.formats import ArchiveFormat

from conftest import comicinfo_xml, make_cbr, make_cbz, png_bytes


def _entry(path, is_directory=False):
    return ArchiveEntry(path=path, size=1, packed_size=1, is_directory=is_directory)


def test_list_reports_cover_and_sidecar(engine, tmp_path):
    cbz = make_cbz(
        tmp_path / "issue.cbz",
        pages={"pages/002.png": png_bytes(), "pages/001.png": png_bytes()},
        comicinfo=comicinfo_xml(Series="Saga"),
    )
    info = engine.list(cbz)
    assert info.format is ArchiveFormat.ZIP
    assert info.file_count == 3
    assert info.has_embedded_metadata
    assert info.cover_entry_path == "pages/001.png"
    assert [e.path for e in info.image_entries] == ["pages/002.png", "pages/001.png"]


def test_list_uses_cache(engine, zip_tool, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz")
    engine.list(cbz)
    engine.list(cbz)
    assert zip_tool.list_calls == 1
    assert engine.cache_stats()["size"] == 1

    engine.clear_cache()
    engine.list(cbz)
    assert zip_tool.list_calls == 2


def test_list_missing_file_raises(engine, tmp_path):
    with pytest.raises(FileNotFoundError):
        engine.list(tmp_path / "missing.cbz")


def test_find_cover_entry_prefers_named_cover():
    entries = [_entry("001.jpg"), _entry("extras/Cover.jpg"), _entry("notes.txt")]
    assert find_cover_entry(entries) == "extras/Cover.jpg"
    assert find_cover_entry([_entry("folder.png"), _entry("000.png")]) == "folder.png"
    assert find_cover_entry([_entry("ComicInfo.xml")]) is None


def test_extract_entry_writes_file(engine, tmp_path):
    page = png_bytes("blue")
    cbz = make_cbz(tmp_path / "issue.cbz", pages={"sub/page 01.png": page})
    out = tmp_path / "out" / "cover.png"

    result = engine.extract_entry(cbz, "sub/page 01.png", out)
    assert result.success
    assert out.read_bytes() == page


def test_extract_entry_existing_output_short_circuits(engine, zip_tool, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz")
    out = tmp_path / "already.png"
    out.write_bytes(b"x")

    result = engine.extract_entry(cbz, "page001.png", out)
    assert result.success
    assert result.output_path == str(out)
    assert zip_tool.extract_calls == 0


def test_extract_entry_missing_entry(engine, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz")
    result = engine.extract_entry(cbz, "nope.png", tmp_path / "nope.png")
    assert not result.success
    assert "nope.png" in result.error


def test_read_entry_returns_bytes(engine, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz", comicinfo=comicinfo_xml(Series="Saga"))
    data = engine.read_entry(cbz, "ComicInfo.xml")
    assert b"<Series>Saga</Series>" in data
    assert engine.read_entry(cbz, "missing.xml") is None


def test_extract_to_buffer_is_rar_only(engine, tmp_path):
    cbz = make_cbz(tmp_path / "issue.cbz")
    with pytest.raises(ArchiveError):
        engine.extract_to_buffer(cbz, "page001.png")


def test_locate_extracted_file(tmp_path):
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "a" / "b" / "Page.png").write_bytes(b"deep")
    (tmp_path / "a" / "page.png").write_bytes(b"shallow")

    assert locate_extracted_file(tmp_path, "a/b/Page.png").read_bytes() == b"deep"
    assert locate_extracted_file(tmp_path, "a\\b\\Page.png").read_bytes() == b"deep"
    # Basename fallback prefers the shallowest match, case-insensitively.
    assert locate_extracted_file(tmp_path, "x/PAGE.PNG").read_bytes() == b"shallow"
    assert locate_extracted_file(tmp_path, "other.png") is None


def test_validate_ok(engine, tmp_path):
    result = engine.validate(make_cbz(tmp_path / "ok.cbz"))
    assert result.valid
    assert result.error is None
    assert result.info.file_count == 1


def test_validate_missing(engine, tmp_path):
    result = engine.validate(tmp_path / "missing.cbz")
    assert not result.valid
    assert "not found" in result.error


def test_validate_empty_archive(engine, tmp_path):
    empty = tmp_path / "empty.cbz"
    with zipfile.ZipFile(empty, "w"):
        pass
    result = engine.validate(empty)
    assert not result.valid
    assert result.error == "Archive is empty"


def test_validate_without_images(engine, tmp_path):
    cbz = make_cbz(tmp_path / "text.cbz", pages={"readme.txt": b"hello"})
    result = engine.validate(cbz)
    assert not result.valid
    assert result.error == "Archive contains no image files"


def test_validate_unreadable_archive(engine, tmp_path):
    broken = tmp_path / "broken.cbz"
    broken.write_bytes(b"PK\x03\x04 truncated")
    result = engine.validate(broken)
    assert not result.valid
    assert result.error


def test_test_extraction(engine, tmp_path):
    result = engine.test_extraction(make_cbz(tmp_path / "ok.cbz"))
    assert result.valid


def test_stats(engine, tmp_path):
    cbz = make_cbz(
        tmp_path / "issue.cbz",
        pages={"001.png": png_bytes(), "002.png": png_bytes()},
        comicinfo=comicinfo_xml(Series="Saga"),
    )
    stats = engine.stats(cbz)
    assert stats.format is ArchiveFormat.ZIP
    assert stats.file_count == 3
    assert stats.image_count == 2
    assert stats.has_embedded_metadata
    assert stats.cover_entry_path == "001.png"
    assert engine.stats(tmp_path / "missing.cbz") is None


def test_extract_with_filter_moves_only_requested_entries(engine, tmp_path):
    cbz = make_cbz(
        tmp_path / "issue.cbz",
        pages={"pages/001 [v2].png": png_bytes(), "pages/002.png": png_bytes()},
    )
    out = tmp_path / "out"

    result = engine.extract(cbz, out, ["pages/001 [v2].png"])
    assert result.success
    assert result.file_count == 1
    assert (out / "pages" / "001 [v2].png").exists()
    assert not (out / "pages" / "002.png").exists()

    missing = engine.extract(cbz, tmp_path / "out2", ["nope.png"])
    assert not missing.success
    assert "nope.png" in missing.error


class FakeRar:
    def __init__(self, members):
        self.members = members

    def list(self, path):
        return [_entry(name) for name in self.members]

    def extract_to_buffer(self, path, entry_path):
        return self.members.get(entry_path)


def test_rar_archives_use_the_rar_backend(zip_tool, tmp_path):
    cbr = tmp_path / "issue.cbr"
    cbr.write_bytes(b"Rar!\x1a\x07\x00 body")
    rar = FakeRar({"001.jpg": b"page", "Cover.jpg": b"cover", "ComicInfo.xml": b"<ComicInfo/>"})
    engine = ArchiveEngine(rar_backend=rar, general_backend=zip_tool, tool=zip_tool)

    info = engine.list(cbr)
    assert info.format is ArchiveFormat.RAR
    assert info.cover_entry_path == "Cover.jpg"
    assert info.has_embedded_metadata
    assert zip_tool.list_calls == 0

    assert engine.extract_to_buffer(cbr, "001.jpg") == b"page"
    assert engine.read_entry(cbr, "ComicInfo.xml") == b"<ComicInfo/>"

    out = tmp_path / "cover.jpg"
    assert engine.extract_entry(cbr, "Cover.jpg", out).success
    assert out.read_bytes() == b"cover"

    missing = engine.extract_entry(cbr, "nope.jpg", tmp_path / "nope.jpg")
    assert not missing.success
    assert missing.error == "File not found in RAR archive: nope.jpg"


def test_rar_backend_reads_real_archive(tmp_path):
    cbr = make_cbr(
        tmp_path / "issue.cbr",
        {"pages/001.png": png_bytes("red"), "pages/002.png": png_bytes("blue")},
    )
    rar = RarBackend()

    assert sorted(e.path for e in rar.list(cbr)) == ["pages/001.png", "pages/002.png"]
    assert rar.extract_to_buffer(cbr, "002.png") == png_bytes("blue")

    full = rar.extract(cbr, tmp_path / "all")
    assert full.success
    assert full.file_count == 2
    assert (tmp_path / "all" / "pages" / "001.png").read_bytes() == png_bytes("red")

    some = rar.extract(cbr, tmp_path / "some", ["pages/002.png"])
    assert some.success
    assert some.file_count == 1
    assert not (tmp_path / "some" / "pages" / "001.png").exists()

    none = rar.extract(cbr, tmp_path / "none", ["nope.png"])
    assert not none.success
    assert none.error == "No files extracted. Requested: nope.png"


def test_engine_extracts_rar_through_lock(zip_tool, tmp_path):
    cbr = make_cbr(tmp_path / "issue.cbr", {"001.png": png_bytes()})
    engine = ArchiveEngine(rar_backend=RarBackend(), general_backend=zip_tool, tool=zip_tool)

    result = engine.extract(cbr, tmp_path / "out", ["001.png"])
    assert result.success
    assert (tmp_path / "out" / "001.png").exists()

    locked = engine.extract_with_lock("issue-1", cbr, tmp_path / "locked").result()
    assert locked.success
    assert (tmp_path / "locked" / "001.png").exists()
    assert zip_tool.extract_calls == 0
