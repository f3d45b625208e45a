"""Archive reading for Longbox.

Provides a unified interface for listing and extracting CBZ/CBR/CB7 archives.
The container format is sniffed from header bytes and dispatched to the RAR
backend (in-process) or the 7-Zip backend (subprocess) accordingly.
"""

from __future__ import annotations

import shutil
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol, Sequence

from .archive_models import (
    ArchiveError,
    ArchiveInfo,
    ArchiveStats,
    EntryExtractionResult,
    ExtractionResult,
    ValidationResult,
    entry_basename,
    normalize_entry_path,
)
from .backends import RarBackend, SevenZipBackend, SevenZipListing
from .formats import ArchiveFormat, format_from_extension, resolve_format
from .listing_cache import ArchiveListingCache
from .logging_config import get_logger
from .utils import cleanup_temp_dir, create_temp_dir

logger = get_logger(__name__)


class GeneralBackend(Protocol):
    def list(self, path: Path) -> SevenZipListing:
        ...

    def extract(self, path: Path, out_dir: Path) -> ExtractionResult:
        ...


def locate_extracted_file(root: Path, entry_path: str) -> Optional[Path]:
    """Find an extracted entry under root.

    Exact relative path first (either separator style), then a
    case-insensitive basename match preferring the shallowest directory.
    """
    target = normalize_entry_path(entry_path).lstrip("/")
    direct = root / target
    if direct.is_file():
        return direct

    files = [p for p in root.rglob("*") if p.is_file()]
    for candidate in files:
        if candidate.relative_to(root).as_posix() == target:
            return candidate

    target_name = entry_basename(entry_path).lower()
    matches = [p for p in files if p.name.lower() == target_name]
    if not matches:
        return None
    matches.sort(key=lambda p: len(p.relative_to(root).parts))
    return matches[0]


class ArchiveReader:
    """List and extract comic archives.

    The listing cache is optional so the reader can be used standalone; the
    ArchiveEngine wires a shared one in.
    """

    def __init__(
        self,
        rar_backend: Optional[RarBackend] = None,
        general_backend: Optional[GeneralBackend] = None,
        cache: Optional[ArchiveListingCache] = None,
        temp_dir: Optional[Path] = None,
    ):
        self.rar = rar_backend or RarBackend()
        self.general = general_backend or SevenZipBackend()
        self.cache = cache
        self.temp_dir = temp_dir

    def format_of(self, path: Path) -> ArchiveFormat:
        return resolve_format(path)

    def list(self, path: Path) -> ArchiveInfo:
        """List archive contents. Results are cached by file fingerprint."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        if self.cache is not None:
            cached = self.cache.get(path)
            if cached is not None:
                logger.debug(f"Using cached listing for {path.name}")
                return cached

        fmt = self.format_of(path)
        if fmt is ArchiveFormat.RAR:
            entries = self.rar.list(path)
        else:
            listing = self.general.list(path)
            entries = listing.entries
            if fmt is ArchiveFormat.UNKNOWN:
                fmt = listing.format

        info = ArchiveInfo.from_entries(str(path), fmt, entries)

        if self.cache is not None:
            self.cache.put(path, info)
        return info

    def extract(
        self, path: Path, out_dir: Path, entry_filter: Sequence[str] = ()
    ) -> ExtractionResult:
        """Extract the whole archive (or the entries in entry_filter) to out_dir.

        Filtered extraction from non-RAR archives extracts everything to a
        temp directory and moves the located entries into out_dir.
        """
        path, out_dir = Path(path), Path(out_dir)
        logger.debug(
            f"Extracting {path.name} -> {out_dir} "
            f"({len(entry_filter) if entry_filter else 'all'} entries)"
        )
        if self.format_of(path) is ArchiveFormat.RAR:
            return self.rar.extract(path, out_dir, entry_filter)
        if not entry_filter:
            return self.general.extract(path, out_dir)

        temp_dir = create_temp_dir("extract-", self.temp_dir)
        try:
            result = self.general.extract(path, temp_dir)
            if not result.success:
                return ExtractionResult(
                    success=False, extracted_path=str(out_dir), file_count=0, error=result.error
                )

            moved = 0
            for entry_path in entry_filter:
                found = locate_extracted_file(temp_dir, entry_path)
                if found is None:
                    logger.debug(f"Entry {entry_path} missing from extraction of {path.name}")
                    continue
                target = out_dir / normalize_entry_path(entry_path).lstrip("/")
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(found), str(target))
                moved += 1
        finally:
            cleanup_temp_dir(temp_dir)

        if moved == 0:
            return ExtractionResult(
                success=False,
                extracted_path=str(out_dir),
                file_count=0,
                error=f"No files extracted. Requested: {', '.join(entry_filter)}",
            )
        return ExtractionResult(success=True, extracted_path=str(out_dir), file_count=moved)

    def extract_to_buffer(self, path: Path, entry_path: str) -> Optional[bytes]:
        """Read a single RAR entry into memory; None when it is absent."""
        path = Path(path)
        if self.format_of(path) is not ArchiveFormat.RAR:
            raise ArchiveError(f"In-memory extraction is RAR-only: {path.name}")
        return self.rar.extract_to_buffer(path, entry_path)

    def extract_entry(
        self, path: Path, entry_path: str, output_path: Path
    ) -> EntryExtractionResult:
        """Extract one entry to output_path.

        An existing output_path counts as already extracted. Non-RAR archives
        are extracted whole into a temp directory and the entry is located by
        scanning, since filtered 7-Zip extraction misbehaves with unusual
        characters in entry names.
        """
        path, output_path = Path(path), Path(output_path)
        if output_path.exists():
            return EntryExtractionResult(success=True, output_path=str(output_path))

        if self.format_of(path) is ArchiveFormat.RAR:
            data = self.rar.extract_to_buffer(path, entry_path)
            if data is None:
                return EntryExtractionResult(
                    success=False, error=f"File not found in RAR archive: {entry_path}"
                )
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(data)
            return EntryExtractionResult(success=True, output_path=str(output_path))

        temp_dir = create_temp_dir("extract-", self.temp_dir)
        try:
            result = self.general.extract(path, temp_dir)
            if not result.success:
                return EntryExtractionResult(success=False, error=result.error)

            found = locate_extracted_file(temp_dir, entry_path)
            if found is None:
                logger.debug(
                    f"Entry {entry_path} missing from extraction of {path.name}"
                )
                return EntryExtractionResult(
                    success=False,
                    error=f"Extracted file not found. Looking for: {entry_path}",
                )

            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(found), str(output_path))
            return EntryExtractionResult(success=True, output_path=str(output_path))
        finally:
            cleanup_temp_dir(temp_dir)

    def read_entry(self, path: Path, entry_path: str) -> Optional[bytes]:
        """Return the bytes of one entry, or None when it cannot be found."""
        path = Path(path)
        if self.format_of(path) is ArchiveFormat.RAR:
            return self.rar.extract_to_buffer(path, entry_path)

        temp_dir = create_temp_dir("read-", self.temp_dir)
        try:
            target = temp_dir / "entry"
            result = self.extract_entry(path, entry_path, target)
            if not result.success:
                return None
            return target.read_bytes()
        finally:
            cleanup_temp_dir(temp_dir)

    def validate(self, path: Path) -> ValidationResult:
        """Check an archive is listable, non-empty, unencrypted and has images."""
        path = Path(path)
        if not path.exists():
            return ValidationResult(valid=False, error=f"Archive not found: {path}")

        try:
            info = self.list(path)
        except Exception as exc:
            logger.error(f"✗ {path.name} - validation failed: {exc}")
            return ValidationResult(valid=False, error=str(exc))

        if info.file_count == 0:
            return ValidationResult(valid=False, error="Archive is empty", info=info)
        if info.is_encrypted:
            return ValidationResult(
                valid=False, error="Archive is password-protected", info=info
            )
        if not info.image_entries:
            return ValidationResult(
                valid=False, error="Archive contains no image files", info=info
            )
        return ValidationResult(valid=True, info=info)

    def test_extraction(self, path: Path) -> ValidationResult:
        """Validate by actually extracting the first file entry."""
        path = Path(path)
        temp_dir = create_temp_dir("test-", self.temp_dir)
        try:
            info = self.list(path)
            first = next((e for e in info.entries if not e.is_directory), None)
            if first is None:
                return ValidationResult(valid=False, error="No extractable files found", info=info)

            result = self.extract_entry(path, first.path, temp_dir / PurePosixPath(first.path).name)
            if not result.success:
                return ValidationResult(
                    valid=False,
                    error=result.error or "Extraction failed with no error message",
                    info=info,
                )
            return ValidationResult(valid=True, info=info)
        except Exception as exc:
            logger.error(f"✗ {path.name} - extraction test failed: {exc}")
            return ValidationResult(valid=False, error=str(exc))
        finally:
            cleanup_temp_dir(temp_dir)

    def stats(self, path: Path) -> Optional[ArchiveStats]:
        try:
            info = self.list(path)
        except Exception as exc:
            logger.debug(f"Unable to read stats for {Path(path).name}: {exc}")
            return None

        fmt = info.format
        if fmt is ArchiveFormat.UNKNOWN:
            fmt = format_from_extension(Path(path))
        return ArchiveStats(
            format=fmt,
            file_count=info.file_count,
            image_count=len(info.image_entries),
            total_size=info.total_size,
            has_embedded_metadata=info.has_embedded_metadata,
            cover_entry_path=info.cover_entry_path,
        )
