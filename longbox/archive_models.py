"""Value types and errors shared by the archive engine."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from pathlib import PurePosixPath
from typing import List, Optional

from .formats import ArchiveFormat, is_image

COMICINFO_FILENAME = "comicinfo.xml"
FOLDER_IMAGE_NAMES = {"folder.jpg", "folder.jpeg", "folder.png"}


class ArchiveError(Exception):
    """Raised when an archive cannot be opened or read."""


class ArchiveToolError(ArchiveError):
    """Raised when the external archive tool fails or is missing."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


@dataclasses.dataclass(frozen=True)
class ArchiveEntry:
    path: str
    size: int
    packed_size: int
    is_directory: bool
    modified_date: Optional[datetime] = None
    is_encrypted: bool = False

    @property
    def basename(self) -> str:
        return entry_basename(self.path)


@dataclasses.dataclass
class ArchiveInfo:
    archive_path: str
    format: ArchiveFormat
    file_count: int
    total_size: int
    entries: List[ArchiveEntry]
    has_embedded_metadata: bool
    cover_entry_path: Optional[str]

    @classmethod
    def from_entries(
        cls, archive_path: str, fmt: ArchiveFormat, entries: List[ArchiveEntry]
    ) -> "ArchiveInfo":
        files = [e for e in entries if not e.is_directory]
        return cls(
            archive_path=archive_path,
            format=fmt,
            file_count=len(files),
            total_size=sum(e.size for e in files),
            entries=list(entries),
            has_embedded_metadata=any(
                e.basename.lower() == COMICINFO_FILENAME for e in files
            ),
            cover_entry_path=find_cover_entry(entries),
        )

    @property
    def image_entries(self) -> List[ArchiveEntry]:
        return [e for e in self.entries if not e.is_directory and is_image(e.path)]

    @property
    def is_encrypted(self) -> bool:
        return any(e.is_encrypted for e in self.entries)


@dataclasses.dataclass
class ExtractionResult:
    success: bool
    extracted_path: str
    file_count: int
    error: Optional[str] = None


@dataclasses.dataclass
class EntryExtractionResult:
    success: bool
    output_path: Optional[str] = None
    error: Optional[str] = None


@dataclasses.dataclass
class ArchiveCreationResult:
    success: bool
    archive_path: str
    file_count: int
    size: int
    error: Optional[str] = None


@dataclasses.dataclass
class WriteResult:
    success: bool
    error: Optional[str] = None


@dataclasses.dataclass
class DeletePagesResult:
    success: bool
    deleted_count: int
    error: Optional[str] = None


@dataclasses.dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    info: Optional[ArchiveInfo] = None


@dataclasses.dataclass
class ArchiveStats:
    format: ArchiveFormat
    file_count: int
    image_count: int
    total_size: int
    has_embedded_metadata: bool
    cover_entry_path: Optional[str]


def normalize_entry_path(path: str) -> str:
    return path.replace("\\", "/")


def entry_basename(path: str) -> str:
    return PurePosixPath(normalize_entry_path(path)).name


def find_cover_entry(entries: List[ArchiveEntry]) -> Optional[str]:
    """Pick the cover image: an explicit cover/folder image, else the first image by path."""
    images = sorted(
        (e for e in entries if not e.is_directory and is_image(e.path)),
        key=lambda e: e.path,
    )
    if not images:
        return None

    for entry in images:
        name = entry.basename.lower()
        if name.startswith("cover") or name in FOLDER_IMAGE_NAMES:
            return entry.path

    return images[0].path
