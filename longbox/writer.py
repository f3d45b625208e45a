"""Archive mutation for Longbox.

Only ZIP containers (CBZ) are ever written. RAR and 7z archives are
read-only; callers get an explicit "convert to CBZ first" error instead of a
failure deep inside the write path.

There is no internal locking: two code paths must not mutate the same
archive concurrently.
"""

from __future__ import annotations

import os
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from .archive import ArchiveReader
from .archive_models import (
    ArchiveCreationResult,
    ArchiveToolError,
    DeletePagesResult,
    WriteResult,
    entry_basename,
    normalize_entry_path,
)
from .backends import SevenZipBackend
from .formats import ArchiveFormat
from .logging_config import get_logger
from .utils import cleanup_temp_dir, create_temp_dir

logger = get_logger(__name__)

BACKUP_SUFFIX = ".bak"


def read_only_error(fmt: ArchiveFormat) -> str:
    if fmt is ArchiveFormat.RAR:
        return (
            "Cannot modify CBR/RAR archives. RAR format is read-only. "
            "Convert to CBZ first."
        )
    return f"Cannot modify {fmt.value} archives. Convert to CBZ first."


def create_archive(source_dir: Path, output_path: Path) -> ArchiveCreationResult:
    """Build a CBZ from every file under source_dir.

    Entries are stored uncompressed (page images are already compressed) and
    named relative to source_dir.
    """
    source_dir, output_path = Path(source_dir), Path(output_path)
    logger.debug(f"Creating CBZ {output_path.name} from {source_dir}")

    if not source_dir.is_dir():
        return ArchiveCreationResult(
            success=False,
            archive_path=str(output_path),
            file_count=0,
            size=0,
            error=f"Cannot read source directory: {source_dir}",
        )

    try:
        files = sorted(p for p in source_dir.rglob("*") if p.is_file())
    except OSError as exc:
        return ArchiveCreationResult(
            success=False,
            archive_path=str(output_path),
            file_count=0,
            size=0,
            error=f"Cannot read source directory: {exc}",
        )
    if not files:
        return ArchiveCreationResult(
            success=False,
            archive_path=str(output_path),
            file_count=0,
            size=0,
            error="Source directory is empty",
        )

    file_count = 0
    try:
        with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_STORED) as zf:
            for file_path in files:
                zf.write(file_path, arcname=file_path.relative_to(source_dir).as_posix())
                file_count += 1
    except (OSError, zipfile.BadZipFile) as exc:
        logger.error(f"✗ CBZ creation failed for {output_path.name}: {exc}")
        return ArchiveCreationResult(
            success=False,
            archive_path=str(output_path),
            file_count=file_count,
            size=0,
            error=str(exc),
        )

    size = output_path.stat().st_size
    logger.debug(f"✓ {output_path.name} ({file_count} entries, {size} bytes)")
    return ArchiveCreationResult(
        success=True, archive_path=str(output_path), file_count=file_count, size=size
    )


class ArchiveWriter:
    def __init__(
        self,
        reader: ArchiveReader,
        tool: Optional[SevenZipBackend] = None,
        temp_dir: Optional[Path] = None,
    ):
        self.reader = reader
        self.tool = tool or SevenZipBackend()
        self.temp_dir = temp_dir

    def _check_writable(self, path: Path) -> Optional[str]:
        fmt = self.reader.format_of(path)
        if fmt is not ArchiveFormat.ZIP:
            return read_only_error(fmt)
        return None

    def create_archive(self, source_dir: Path, output_path: Path) -> ArchiveCreationResult:
        return create_archive(source_dir, output_path)

    def add_or_replace_entry(
        self, path: Path, source_file: Path, entry_name: Optional[str] = None
    ) -> WriteResult:
        """Add source_file at the archive root, replacing a same-named entry.

        7-Zip reports some benign conditions as warnings, so success is only
        declared once a fresh listing shows the entry.
        """
        path, source_file = Path(path), Path(source_file)
        error = self._check_writable(path)
        if error:
            return WriteResult(success=False, error=error)

        expected = (entry_name or source_file.name).lower()
        try:
            run = self.tool.add(path, source_file)
        except ArchiveToolError as exc:
            return WriteResult(success=False, error=str(exc))
        if run.warning:
            logger.warning(f"7-Zip warning while adding to {path.name}: {run.warning}")

        try:
            info = self.reader.list(path)
        except Exception as exc:
            logger.warning(
                f"Could not verify {expected} in {path.name}, assuming success: {exc}"
            )
            return WriteResult(success=True)

        if any(e.basename.lower() == entry_basename(expected) for e in info.entries):
            return WriteResult(success=True)
        return WriteResult(
            success=False,
            error=f"File '{expected}' was not found in archive after add operation",
        )

    def update_entry(self, path: Path, entry_path: str, content: bytes) -> WriteResult:
        """Replace an entry's bytes (written to a same-named temp file, then added)."""
        error = self._check_writable(Path(path))
        if error:
            return WriteResult(success=False, error=error)

        temp_dir = create_temp_dir("update-", self.temp_dir)
        try:
            temp_file = temp_dir / entry_basename(entry_path)
            temp_file.write_bytes(content)
            return self.add_or_replace_entry(path, temp_file)
        except OSError as exc:
            return WriteResult(success=False, error=str(exc))
        finally:
            cleanup_temp_dir(temp_dir)

    def delete_pages(self, path: Path, entry_paths: Iterable[str]) -> DeletePagesResult:
        """Remove entries by rebuilding the archive.

        1. extract everything to a temp directory
        2. unlink each entry (full relative path, else flattened basename)
        3. rename the original to <name>.bak
        4. rebuild the archive at the original path
        5. drop the backup, or restore it if step 4 failed
        """
        path = Path(path)
        error = self._check_writable(path)
        if error:
            return DeletePagesResult(success=False, deleted_count=0, error=error)

        entry_paths = list(entry_paths)
        temp_dir = create_temp_dir("delete-pages-", self.temp_dir)
        try:
            extracted = self.reader.extract(path, temp_dir)
            if not extracted.success:
                return DeletePagesResult(
                    success=False,
                    deleted_count=0,
                    error=f"Failed to extract archive: {extracted.error}",
                )

            deleted = 0
            for entry in entry_paths:
                if self._unlink_entry(temp_dir, entry):
                    deleted += 1
                else:
                    logger.warning(f"Could not find {entry} in {path.name} to delete")

            if deleted == 0:
                return DeletePagesResult(
                    success=False, deleted_count=0, error="No pages were found to delete"
                )

            backup = path.with_name(path.name + BACKUP_SUFFIX)
            os.replace(path, backup)
            try:
                created = self.create_archive(temp_dir, path)
            except Exception:
                self._restore(backup, path)
                raise

            if not created.success:
                self._restore(backup, path)
                return DeletePagesResult(
                    success=False,
                    deleted_count=0,
                    error=f"Failed to create new archive: {created.error}",
                )

            backup.unlink()
            logger.info(f"✓ Deleted {deleted} pages from {path.name}")
            return DeletePagesResult(success=True, deleted_count=deleted)
        finally:
            cleanup_temp_dir(temp_dir)

    @staticmethod
    def _unlink_entry(root: Path, entry: str) -> bool:
        relative = PurePosixPath(normalize_entry_path(entry).lstrip("/"))
        for candidate in (root / relative, root / relative.name):
            try:
                candidate.unlink()
                return True
            except (FileNotFoundError, IsADirectoryError):
                continue
        return False

    @staticmethod
    def _restore(backup: Path, path: Path) -> None:
        if path.exists():
            path.unlink()
        os.replace(backup, path)
        logger.warning(f"Restored {path.name} from backup after failed rebuild")
