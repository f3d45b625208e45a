"""Archive format detection for Longbox.

The header bytes decide the container format, not the extension: a `.cbr`
that is really a ZIP is handled as a ZIP.
"""

from __future__ import annotations

import enum
from pathlib import Path

HEADER_SIZE = 8

RAR_MAGIC = b"Rar!"
SEVEN_ZIP_MAGIC = b"7z\xbc\xaf\x27\x1c"
ZIP_MAGIC = b"PK"

COMIC_EXTENSIONS = {".cbz", ".cbr", ".cb7", ".cbt"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}


class ArchiveFormat(str, enum.Enum):
    ZIP = "zip"
    RAR = "rar"
    SEVEN_ZIP = "7z"
    TAR = "tar"
    UNKNOWN = "unknown"


_EXTENSION_FORMATS = {
    ".cbz": ArchiveFormat.ZIP,
    ".zip": ArchiveFormat.ZIP,
    ".cbr": ArchiveFormat.RAR,
    ".rar": ArchiveFormat.RAR,
    ".cb7": ArchiveFormat.SEVEN_ZIP,
    ".7z": ArchiveFormat.SEVEN_ZIP,
    ".cbt": ArchiveFormat.TAR,
    ".tar": ArchiveFormat.TAR,
}


def sniff_bytes(header: bytes) -> ArchiveFormat:
    """Match a header against the known signatures, most specific first."""
    if header[:4] == RAR_MAGIC:
        return ArchiveFormat.RAR
    if header[:6] == SEVEN_ZIP_MAGIC:
        return ArchiveFormat.SEVEN_ZIP
    if header[:2] == ZIP_MAGIC:
        return ArchiveFormat.ZIP
    return ArchiveFormat.UNKNOWN


def detect_format(path: Path) -> ArchiveFormat:
    """Return the container format from the first bytes of the file.

    Unreadable files report UNKNOWN rather than raising.
    """
    try:
        with open(path, "rb") as handle:
            header = handle.read(HEADER_SIZE)
    except OSError:
        return ArchiveFormat.UNKNOWN
    return sniff_bytes(header)


def format_from_extension(path: Path) -> ArchiveFormat:
    return _EXTENSION_FORMATS.get(Path(path).suffix.lower(), ArchiveFormat.UNKNOWN)


def resolve_format(path: Path) -> ArchiveFormat:
    """Sniffed format, falling back to the extension when no signature matches."""
    fmt = detect_format(path)
    if fmt is ArchiveFormat.UNKNOWN:
        return format_from_extension(path)
    return fmt


def is_comic_file(path: Path) -> bool:
    """Return True if the path looks like a supported comic archive."""
    return Path(path).suffix.lower() in COMIC_EXTENSIONS


def is_image(filename: str) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTENSIONS
