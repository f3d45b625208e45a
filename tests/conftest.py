"""Shared fixtures: a throwaway database, tiny CBZ files and a zipfile-backed
stand-in for the 7-Zip tool so tests do not need 7z installed."""

import io
import struct
import zipfile
import zlib
from pathlib import Path
from typing import Dict, Optional

import pytest
from PIL import Image

from longbox import database
from longbox.archive_models import ArchiveEntry, ExtractionResult
from longbox.backends import SevenZipListing, ToolRun
from longbox.config import LibraryConfig, LongboxConfig, ScannerConfig
from longbox.engine import ArchiveEngine
from longbox.formats import ArchiveFormat


def png_bytes(color: str = "red", size=(10, 10)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def make_cbz(
    path: Path,
    pages: Optional[Dict[str, bytes]] = None,
    comicinfo: Optional[str] = None,
) -> Path:
    """Create a CBZ with the given pages (default: one red PNG)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if pages is None:
        pages = {"page001.png": png_bytes()}
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in pages.items():
            zf.writestr(name, data)
        if comicinfo is not None:
            zf.writestr("ComicInfo.xml", comicinfo)
    return path


def comicinfo_xml(**tags: str) -> str:
    body = "".join(f"  <{tag}>{value}</{tag}>\n" for tag, value in tags.items())
    return f'<?xml version="1.0"?>\n<ComicInfo>\n{body}</ComicInfo>'


def _rar3_block(head_type: int, flags: int, body: bytes) -> bytes:
    head = struct.pack("<BHH", head_type, flags, 7 + len(body)) + body
    return struct.pack("<H", zlib.crc32(head) & 0xFFFF) + head


def make_cbr(path: Path, pages: Optional[Dict[str, bytes]] = None) -> Path:
    """Write a RAR 2.9 archive holding stored (uncompressed) pages.

    Stored members are read by rarfile directly, so no unrar tool is needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if pages is None:
        pages = {"page001.png": png_bytes()}
    dos_stamp = (((2020 - 1980) << 9 | 1 << 5 | 1) << 16)
    out = bytearray(b"Rar!\x1a\x07\x00")
    out += _rar3_block(0x73, 0x0000, b"\x00" * 6)
    for name, data in pages.items():
        encoded = name.encode("utf-8")
        fields = struct.pack(
            "<IIBIIBBHI",
            len(data),
            len(data),
            3,
            zlib.crc32(data) & 0xFFFFFFFF,
            dos_stamp,
            29,
            0x30,
            len(encoded),
            0o100644,
        )
        out += _rar3_block(0x74, 0x8000, fields + encoded)
        out += data
    out += _rar3_block(0x7B, 0x4000, b"")
    path.write_bytes(bytes(out))
    return path


class ZipTool:
    """Stand-in for SevenZipBackend built on zipfile.

    Implements the list/extract/add surface the engine uses.
    """

    def __init__(self):
        self.list_calls = 0
        self.extract_calls = 0

    def list(self, path: Path) -> SevenZipListing:
        self.list_calls += 1
        with zipfile.ZipFile(path) as zf:
            infos = zf.infolist()
        entries = [
            ArchiveEntry(
                path=info.filename.rstrip("/"),
                size=info.file_size,
                packed_size=info.compress_size,
                is_directory=info.is_dir(),
                is_encrypted=bool(info.flag_bits & 0x1),
            )
            for info in infos
        ]
        return SevenZipListing(format=ArchiveFormat.ZIP, entries=entries)

    def extract(self, path: Path, out_dir: Path) -> ExtractionResult:
        self.extract_calls += 1
        out_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(path) as zf:
                names = [n for n in zf.namelist() if not n.endswith("/")]
                for name in names:
                    zf.extract(name, out_dir)
        except (zipfile.BadZipFile, OSError) as exc:
            return ExtractionResult(
                success=False, extracted_path=str(out_dir), file_count=0, error=str(exc)
            )
        return ExtractionResult(success=True, extracted_path=str(out_dir), file_count=len(names))

    def add(self, archive_path: Path, source_file: Path) -> ToolRun:
        with zipfile.ZipFile(archive_path) as zf:
            kept = [
                (info, zf.read(info))
                for info in zf.infolist()
                if info.filename != source_file.name
            ]
        with zipfile.ZipFile(archive_path, "w") as zf:
            for info, data in kept:
                zf.writestr(info, data)
            zf.write(source_file, arcname=source_file.name)
        return ToolRun(returncode=0)


@pytest.fixture
def zip_tool():
    return ZipTool()


@pytest.fixture
def engine(zip_tool, tmp_path):
    return ArchiveEngine(general_backend=zip_tool, tool=zip_tool, temp_dir=tmp_path / "tmp")


@pytest.fixture
def db(tmp_path):
    """Point the module-level engine at a fresh SQLite file."""
    db_file = tmp_path / "library.db"
    # Own MonkeyPatch so a test's ``monkeypatch.undo()`` leaves the database in place.
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(database, "DB_PATH", db_file, raising=True)
        mp.setattr(
            database, "engine", database.make_engine(f"sqlite:///{db_file}"), raising=True
        )
        database.init_db()
        yield db_file
        database.engine.dispose()


@pytest.fixture
def library_root(tmp_path) -> Path:
    root = tmp_path / "comics"
    root.mkdir()
    return root


@pytest.fixture
def config(tmp_path, library_root) -> LongboxConfig:
    return LongboxConfig(
        library=LibraryConfig(path=library_root, name="Test Library"),
        scanner=ScannerConfig(),
        data_dir=tmp_path / "data",
    )
