"""SQLModel database models for Longbox."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus:
    PENDING = "pending"
    INDEXED = "indexed"
    ORPHANED = "orphaned"


class MetadataSource:
    COMICINFO = "comicinfo"
    FOLDER = "folder"
    FILENAME = "filename"


class CoverSource:
    AUTO = "auto"
    USER = "user"


class ResolvedCoverSource:
    USER = "user"
    FIRST_ISSUE = "first_issue"
    NONE = "none"


class Library(SQLModel, table=True):
    __tablename__ = "libraries"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    root_path: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class TrackedFile(SQLModel, table=True):
    __tablename__ = "files"

    id: Optional[int] = Field(default=None, primary_key=True)
    library_id: int = Field(foreign_key="libraries.id", index=True)
    absolute_path: str = Field(unique=True, index=True)
    relative_path: str
    filename: str
    extension: str
    size_bytes: int
    # Naive UTC so values compare equal after a round trip through SQLite.
    modified_at: datetime
    content_hash: Optional[str] = Field(default=None, index=True)
    status: str = Field(default=FileStatus.PENDING, index=True)
    # NULL until the metadata phase names the series.
    series_name_raw: Optional[str] = Field(default=None, index=True)
    # NULL until the cover phase has written the cover images.
    cover_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    last_scanned_at: Optional[datetime] = None


class FileMetadata(SQLModel, table=True):
    __tablename__ = "file_metadata"

    id: Optional[int] = Field(default=None, primary_key=True)
    file_id: int = Field(foreign_key="files.id", unique=True)
    series: Optional[str] = None
    title: Optional[str] = None
    issue_number: Optional[str] = None
    issue_number_sort: Optional[float] = None
    volume: Optional[int] = None
    publisher: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    writer: Optional[str] = None
    penciller: Optional[str] = None
    summary: Optional[str] = None
    notes: Optional[str] = None
    web: Optional[str] = None
    language_iso: Optional[str] = None
    genre: Optional[str] = None
    page_count: Optional[int] = None
    source: str = MetadataSource.FILENAME


class Series(SQLModel, table=True):
    __tablename__ = "series"
    __table_args__ = (UniqueConstraint("library_id", "name", name="uq_series_library_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    library_id: int = Field(foreign_key="libraries.id", index=True)
    name: str
    cover_source: str = CoverSource.AUTO
    cover_file_id: Optional[int] = None
    resolved_cover_hash: Optional[str] = None
    resolved_cover_source: str = ResolvedCoverSource.NONE
    resolved_cover_file_id: Optional[int] = None
    resolved_cover_updated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
