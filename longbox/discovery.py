"""Discovery phase of a library scan.

Walks the library root and reconciles what is on disk with the tracked
files, keyed by absolute path:

- new file           -> inserted as `pending` with a partial content hash
- unchanged mtime    -> untouched (an orphaned record flips back to `pending`)
- changed mtime      -> rehashed and reset to `pending`, later phases run again
- tracked but absent -> `orphaned`

Nothing is ever deleted.
"""

from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlmodel import Session

from .config import LongboxConfig, get_config
from .database import get_engine
from .logging_config import get_logger
from .models import FileStatus, Library, TrackedFile
from .path_utils import mtime_of, to_relative
from .repository import FileChange, Repository
from .scan_types import DiscoveryResult, ScanOptions
from .utils import optimal_concurrency, partial_hash, short_path

logger = get_logger(__name__)


def _should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Skip dot-names (macOS `._*` AppleDouble files included) and ignore patterns."""
    if name.startswith("."):
        return True
    return name in ignore_patterns


def walk_library(
    root: Path,
    ignore_patterns: Tuple[str, ...],
    extensions: set[str],
    errors: Optional[List[str]] = None,
) -> Iterator[Tuple[Path, List[Path]]]:
    """Yield (directory, comic_files) depth-first, children in name order.

    An unreadable root raises; an unreadable subdirectory is logged, noted in
    `errors` and skipped.
    """
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            if current == root:
                raise
            logger.error(f"✗ Cannot read directory {current}: {exc}")
            if errors is not None:
                errors.append(str(current))
            continue

        subdirs: List[Path] = []
        files: List[Path] = []
        for entry in entries:
            if _should_ignore(entry.name, ignore_patterns):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(Path(entry.path))
                elif entry.is_file() and Path(entry.name).suffix.lower() in extensions:
                    files.append(Path(entry.path))
            except OSError as exc:
                logger.error(f"✗ Cannot stat {entry.path}: {exc}")

        stack.extend(reversed(subdirs))
        yield current, files


def _hash_or_none(path: Path) -> Optional[str]:
    try:
        return partial_hash(path)
    except OSError as exc:
        logger.error(f"✗ Failed to hash {short_path(path)}: {exc}")
        return None


class _Reconciler:
    """Accumulates inserts and resets and writes them in batches."""

    def __init__(
        self,
        session: Session,
        library_id: int,
        root: Path,
        batch_size: int,
        pool: ThreadPoolExecutor,
        result: DiscoveryResult,
    ):
        self.session = session
        self.repo = Repository(session)
        self.library_id = library_id
        self.root = root
        self.batch_size = batch_size
        self.pool = pool
        self.result = result
        self.new_files: List[Tuple[Path, os.stat_result]] = []
        self.changes: List[Tuple[Path, FileChange]] = []
        self.restores: List[int] = []

    def add_new(self, path: Path, st: os.stat_result) -> None:
        self.new_files.append((path, st))
        if len(self.new_files) >= self.batch_size:
            self.flush_new()

    def add_change(self, path: Path, change: FileChange) -> None:
        self.changes.append((path, change))
        if len(self.changes) >= self.batch_size:
            self.flush_changes()

    def add_restore(self, file_id: int) -> None:
        self.restores.append(file_id)
        if len(self.restores) >= self.batch_size:
            self.flush_restores()

    def flush(self) -> None:
        self.flush_new()
        self.flush_changes()
        self.flush_restores()

    def flush_new(self) -> None:
        if not self.new_files:
            return
        batch, self.new_files = self.new_files, []

        hashes = list(self.pool.map(_hash_or_none, [path for path, _ in batch]))
        records: List[TrackedFile] = []
        for (path, st), content_hash in zip(batch, hashes):
            if content_hash is None:
                self.result.errors += 1
                continue
            records.append(self._record(path, st, content_hash))
        if not records:
            return

        try:
            self.repo.insert_files(records)
            self.repo.commit()
            self.result.new_files += len(records)
            return
        except Exception as exc:
            self.repo.rollback()
            logger.warning(f"Bulk insert of {len(records)} files failed, retrying one by one: {exc}")

        # Rebuild from the computed hashes; the rolled-back objects are unusable.
        for (path, st), content_hash in zip(batch, hashes):
            if content_hash is None:
                continue
            try:
                self.repo.insert_file(self._record(path, st, content_hash))
                self.repo.commit()
                self.result.new_files += 1
            except Exception as exc:
                self.repo.rollback()
                self.result.errors += 1
                logger.error(f"✗ Failed to record {short_path(path)}: {exc}")

    def flush_changes(self) -> None:
        if not self.changes:
            return
        batch, self.changes = self.changes, []

        hashes = list(self.pool.map(_hash_or_none, [path for path, _ in batch]))
        changes: List[FileChange] = []
        for (path, change), content_hash in zip(batch, hashes):
            if content_hash is None:
                self.result.errors += 1
                continue
            change.content_hash = content_hash
            changes.append(change)
        if not changes:
            return

        try:
            self.repo.reset_files(changes)
            self.repo.commit()
        except Exception as exc:
            self.repo.rollback()
            self.result.errors += len(changes)
            logger.error(f"✗ Failed to reset {len(changes)} modified files: {exc}")

    def flush_restores(self) -> None:
        if not self.restores:
            return
        batch, self.restores = self.restores, []
        try:
            self.repo.restore_files(batch)
            self.repo.commit()
        except Exception as exc:
            self.repo.rollback()
            self.result.errors += len(batch)
            logger.error(f"✗ Failed to restore {len(batch)} files: {exc}")

    def _record(self, path: Path, st: os.stat_result, content_hash: str) -> TrackedFile:
        return TrackedFile(
            library_id=self.library_id,
            absolute_path=str(path),
            relative_path=to_relative(path, self.root),
            filename=path.name,
            extension=path.suffix.lower().lstrip("."),
            size_bytes=st.st_size,
            modified_at=mtime_of(st.st_mtime),
            content_hash=content_hash,
            status=FileStatus.PENDING,
        )


def run_discovery(
    library: Library,
    options: Optional[ScanOptions] = None,
    config: Optional[LongboxConfig] = None,
) -> DiscoveryResult:
    """Walk the library and reconcile it with the tracked files."""
    options = options or ScanOptions()
    config = config or get_config()
    started = time.monotonic()
    result = DiscoveryResult()

    root = Path(library.root_path)
    batch_size = options.batch_size or config.scanner.insert_batch_size
    dir_errors: List[str] = []
    seen: set[str] = set()

    logger.info(f"[SCAN] Discovery in {root}")

    with Session(get_engine()) as session, ThreadPoolExecutor(
        max_workers=optimal_concurrency("io")
    ) as pool:
        repo = Repository(session)
        tracked = repo.files_by_path(library.id)
        reconciler = _Reconciler(session, library.id, root, batch_size, pool, result)

        for dir_path, comic_files in walk_library(
            root, tuple(config.scanner.ignore_patterns), config.scanner.extensions, dir_errors
        ):
            if options.should_cancel():
                result.cancelled = True
                break

            if comic_files:
                logger.debug(f"[SCAN] {to_relative(dir_path, root) or '.'} ({len(comic_files)} files)")

            for path in comic_files:
                key = str(path)
                seen.add(key)
                result.total_files += 1
                result.processed += 1
                try:
                    st = path.stat()
                except OSError as exc:
                    result.errors += 1
                    logger.error(f"✗ Cannot stat {short_path(path)}: {exc}")
                    continue

                existing = tracked.get(key)
                if existing is None:
                    reconciler.add_new(path, st)
                    continue

                modified_at = mtime_of(st.st_mtime)
                changed = options.force_full_scan or existing.modified_at != modified_at
                if existing.status == FileStatus.ORPHANED:
                    result.restored_files += 1
                elif changed:
                    result.modified_files += 1
                else:
                    result.unchanged_files += 1
                    continue

                if changed:
                    change = FileChange(
                        file_id=existing.file_id, size_bytes=st.st_size, modified_at=modified_at
                    )
                    reconciler.add_change(path, change)
                else:
                    reconciler.add_restore(existing.file_id)

            options.report("discovery", result.processed, message=str(dir_path))

        reconciler.flush()

        if not result.cancelled:
            missing = [
                f.file_id
                for path, f in tracked.items()
                if path not in seen and f.status != FileStatus.ORPHANED
            ]
            if missing:
                result.orphaned_files = repo.mark_orphaned(missing)
                repo.commit()

    result.errors += len(dir_errors)
    result.duration = time.monotonic() - started
    logger.info(
        f"✓ Discovery: {result.total_files} files "
        f"({result.new_files} new, {result.modified_files} modified, "
        f"{result.restored_files} restored, {result.orphaned_files} orphaned)"
    )
    return result
