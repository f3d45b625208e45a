"""Data Access Layer for Longbox.

Encapsulates database operations using SQLModel/SQLAlchemy. Methods stage
changes and flush; callers decide when to commit so a phase can group its
writes into one transaction.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from sqlalchemy import nulls_last
from sqlmodel import Session, col, func, or_, select

from .models import (
    CoverSource,
    FileMetadata,
    FileStatus,
    Library,
    ResolvedCoverSource,
    Series,
    TrackedFile,
)
from .path_utils import as_utc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackedSnapshot(NamedTuple):
    file_id: int
    status: str
    modified_at: datetime


@dataclasses.dataclass
class FileChange:
    """New on-disk facts for a tracked file that must be reprocessed."""

    file_id: int
    size_bytes: int
    modified_at: datetime
    content_hash: Optional[str] = None


@dataclasses.dataclass
class FileUpdate:
    file_id: int
    series_name_raw: str


class Repository:
    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        """Commit the current transaction. Callers control when to commit."""
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # --- Libraries ---

    def get_or_create_library(self, root_path: Path, name: str) -> Library:
        root = str(Path(root_path).resolve())
        library = self.session.exec(select(Library).where(Library.root_path == root)).first()
        if library:
            return library

        library = Library(name=name, root_path=root)
        self.session.add(library)
        self.session.flush()
        self.session.refresh(library)
        return library

    # --- Discovery ---

    def files_by_path(self, library_id: int) -> Dict[str, TrackedSnapshot]:
        statement = select(
            TrackedFile.id, TrackedFile.absolute_path, TrackedFile.status, TrackedFile.modified_at
        ).where(TrackedFile.library_id == library_id)
        return {
            path: TrackedSnapshot(file_id, status, as_utc(modified_at))
            for file_id, path, status, modified_at in self.session.exec(statement).all()
        }

    def insert_files(self, files: Sequence[TrackedFile]) -> int:
        """Stage a batch of new files in one flush."""
        self.session.add_all(files)
        self.session.flush()
        return len(files)

    def insert_file(self, tracked: TrackedFile) -> None:
        self.session.add(tracked)
        self.session.flush()

    def mark_orphaned(self, file_ids: Iterable[int]) -> int:
        ids = list(file_ids)
        if not ids:
            return 0
        statement = select(TrackedFile).where(
            col(TrackedFile.id).in_(ids), TrackedFile.status != FileStatus.ORPHANED
        )
        changed = 0
        for tracked in self.session.exec(statement).all():
            tracked.status = FileStatus.ORPHANED
            self.session.add(tracked)
            changed += 1
        self.session.flush()
        return changed

    def reset_files(self, changes: Sequence[FileChange]) -> int:
        """Send files back to `pending` with fresh size/mtime and hash.

        Clears series_name_raw and cover_hash and drops the cached
        FileMetadata row so every later phase runs again.
        """
        if not changes:
            return 0
        by_id = {change.file_id: change for change in changes}
        now = _utcnow()

        files = self.session.exec(
            select(TrackedFile).where(col(TrackedFile.id).in_(list(by_id)))
        ).all()
        for tracked in files:
            change = by_id[tracked.id]
            tracked.size_bytes = change.size_bytes
            tracked.modified_at = change.modified_at
            if change.content_hash:
                tracked.content_hash = change.content_hash
            tracked.series_name_raw = None
            tracked.cover_hash = None
            tracked.status = FileStatus.PENDING
            tracked.last_scanned_at = now
            self.session.add(tracked)

        stale = self.session.exec(
            select(FileMetadata).where(col(FileMetadata.file_id).in_(list(by_id)))
        ).all()
        for meta in stale:
            self.session.delete(meta)

        self.session.flush()
        return len(files)

    def restore_files(self, file_ids: Iterable[int]) -> int:
        """Flip orphaned files whose content is unchanged back to `pending`.

        Series name, cover and cached metadata are kept.
        """
        ids = list(file_ids)
        if not ids:
            return 0
        now = _utcnow()
        statement = select(TrackedFile).where(col(TrackedFile.id).in_(ids))
        restored = 0
        for tracked in self.session.exec(statement).all():
            tracked.status = FileStatus.PENDING
            tracked.last_scanned_at = now
            self.session.add(tracked)
            restored += 1
        self.session.flush()
        return restored

    # --- Metadata phase ---

    def metadata_candidates(
        self, library_id: int, after_id: int, limit: int
    ) -> List[TrackedFile]:
        statement = (
            select(TrackedFile)
            .where(
                TrackedFile.library_id == library_id,
                TrackedFile.id > after_id,
                or_(
                    col(TrackedFile.series_name_raw).is_(None),
                    TrackedFile.status == FileStatus.PENDING,
                ),
                TrackedFile.status != FileStatus.ORPHANED,
            )
            .order_by(TrackedFile.id)
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def apply_file_updates(self, updates: Sequence[FileUpdate]) -> int:
        if not updates:
            return 0
        by_id = {u.file_id: u for u in updates}
        now = _utcnow()
        files = self.session.exec(
            select(TrackedFile).where(col(TrackedFile.id).in_(list(by_id)))
        ).all()
        for tracked in files:
            tracked.series_name_raw = by_id[tracked.id].series_name_raw
            tracked.status = FileStatus.INDEXED
            tracked.last_scanned_at = now
            self.session.add(tracked)
        self.session.flush()
        return len(files)

    def upsert_metadata(self, records: Sequence[dict]) -> int:
        """Insert or update FileMetadata rows keyed by file_id."""
        if not records:
            return 0
        by_file = {record["file_id"]: record for record in records}
        existing = {
            meta.file_id: meta
            for meta in self.session.exec(
                select(FileMetadata).where(col(FileMetadata.file_id).in_(list(by_file)))
            ).all()
        }
        for file_id, record in by_file.items():
            meta = existing.get(file_id) or FileMetadata(file_id=file_id)
            for key, value in record.items():
                setattr(meta, key, value)
            self.session.add(meta)
        self.session.flush()
        return len(by_file)

    # --- Cover phase ---

    def cover_candidates(
        self, library_id: int, after_id: int, limit: int
    ) -> List[TrackedFile]:
        statement = (
            select(TrackedFile)
            .where(
                TrackedFile.library_id == library_id,
                TrackedFile.id > after_id,
                TrackedFile.status == FileStatus.INDEXED,
                col(TrackedFile.cover_hash).is_(None),
            )
            .order_by(TrackedFile.id)
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def set_cover_hash(self, file_id: int, cover_hash: str) -> None:
        tracked = self.session.get(TrackedFile, file_id)
        if tracked:
            tracked.cover_hash = cover_hash
            self.session.add(tracked)
            self.session.flush()

    def valid_cover_hashes(self) -> set[str]:
        """Cover hashes still referenced by a tracked file (for orphan cleanup)."""
        hashes = self.session.exec(
            select(TrackedFile.cover_hash).where(col(TrackedFile.cover_hash).is_not(None))
        ).all()
        return set(hashes)

    # --- Series ---

    def get_series(self, library_id: int, name: str) -> Optional[Series]:
        return self.session.exec(
            select(Series).where(Series.library_id == library_id, Series.name == name)
        ).first()

    def get_or_create_series(self, library_id: int, name: str) -> Series:
        series = self.get_series(library_id, name)
        if series:
            return series
        series = Series(library_id=library_id, name=name)
        self.session.add(series)
        self.session.flush()
        self.session.refresh(series)
        return series

    def first_issue(self, library_id: int, series_name: str) -> Optional[TrackedFile]:
        """Lowest issue number (missing numbers last), then filename."""
        statement = (
            select(TrackedFile)
            .outerjoin(FileMetadata, col(FileMetadata.file_id) == TrackedFile.id)
            .where(
                TrackedFile.library_id == library_id,
                TrackedFile.series_name_raw == series_name,
                TrackedFile.status != FileStatus.ORPHANED,
            )
            .order_by(
                nulls_last(col(FileMetadata.issue_number_sort).asc()),
                col(TrackedFile.filename).asc(),
            )
            .limit(1)
        )
        return self.session.exec(statement).first()

    def recalculate_series_cover(self, series_id: int) -> Optional[Series]:
        """Resolve the series cover: user choice, then first issue, then none."""
        series = self.session.get(Series, series_id)
        if not series:
            return None

        source = ResolvedCoverSource.NONE
        cover_hash: Optional[str] = None
        cover_file_id: Optional[int] = None

        if series.cover_source in (CoverSource.USER, CoverSource.AUTO) and series.cover_file_id:
            chosen = self.session.get(TrackedFile, series.cover_file_id)
            if chosen and chosen.status != FileStatus.ORPHANED:
                source = ResolvedCoverSource.USER
                cover_file_id = chosen.id
                cover_hash = chosen.cover_hash or chosen.content_hash

        if source == ResolvedCoverSource.NONE:
            first = self.first_issue(series.library_id, series.name)
            if first:
                source = ResolvedCoverSource.FIRST_ISSUE
                cover_file_id = first.id
                cover_hash = first.cover_hash or first.content_hash

        series.resolved_cover_source = source
        series.resolved_cover_hash = cover_hash
        series.resolved_cover_file_id = cover_file_id
        series.resolved_cover_updated_at = _utcnow()
        self.session.add(series)
        self.session.flush()
        return series

    # --- Stats ---

    def status_counts(self, library_id: int) -> Dict[str, int]:
        statement = (
            select(TrackedFile.status, func.count())
            .where(TrackedFile.library_id == library_id)
            .group_by(TrackedFile.status)
        )
        counts = {FileStatus.PENDING: 0, FileStatus.INDEXED: 0, FileStatus.ORPHANED: 0}
        for status, count in self.session.exec(statement).all():
            counts[status] = count
        return counts

    def series_count(self, library_id: int) -> int:
        statement = select(func.count()).select_from(Series).where(Series.library_id == library_id)
        return self.session.exec(statement).one()
