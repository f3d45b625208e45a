"""The archive engine: one explicitly constructed bundle of reader, writer,
listing cache and extraction coordinator.

Nothing here is a module-level singleton. Whoever needs archive access builds
an ArchiveEngine (usually via `from_config`) and passes it down, so the cache
and the in-flight extraction table live exactly as long as that object.
"""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .archive import ArchiveReader, GeneralBackend
from .archive_models import (
    ArchiveCreationResult,
    ArchiveInfo,
    ArchiveStats,
    DeletePagesResult,
    EntryExtractionResult,
    ExtractionResult,
    ValidationResult,
    WriteResult,
)
from .backends import RarBackend, SevenZipBackend
from .config import LongboxConfig
from .extraction import ExtractionCoordinator
from .listing_cache import ArchiveListingCache
from .writer import ArchiveWriter


class ArchiveEngine:
    def __init__(
        self,
        rar_backend: Optional[RarBackend] = None,
        general_backend: Optional[GeneralBackend] = None,
        tool: Optional[SevenZipBackend] = None,
        cache: Optional[ArchiveListingCache] = None,
        temp_dir: Optional[Path] = None,
    ):
        seven_zip = tool or SevenZipBackend()
        self.cache = cache if cache is not None else ArchiveListingCache()
        self.reader = ArchiveReader(
            rar_backend=rar_backend,
            general_backend=general_backend or seven_zip,
            cache=self.cache,
            temp_dir=temp_dir,
        )
        self.writer = ArchiveWriter(self.reader, tool=seven_zip, temp_dir=temp_dir)
        self.coordinator = ExtractionCoordinator(self.reader)

    @classmethod
    def from_config(cls, config: LongboxConfig) -> "ArchiveEngine":
        settings = config.archive
        return cls(
            tool=SevenZipBackend(settings.seven_zip_path or None),
            cache=ArchiveListingCache(
                max_entries=settings.cache_max_entries,
                ttl_seconds=float(settings.cache_ttl_seconds),
            ),
            temp_dir=settings.temp_dir,
        )

    # Reading

    def list(self, path: Path) -> ArchiveInfo:
        return self.reader.list(path)

    def extract(
        self, path: Path, out_dir: Path, entry_filter: Sequence[str] = ()
    ) -> ExtractionResult:
        return self.reader.extract(path, out_dir, entry_filter)

    def extract_entry(
        self, path: Path, entry_path: str, output_path: Path
    ) -> EntryExtractionResult:
        return self.reader.extract_entry(path, entry_path, output_path)

    def extract_to_buffer(self, path: Path, entry_path: str) -> Optional[bytes]:
        return self.reader.extract_to_buffer(path, entry_path)

    def read_entry(self, path: Path, entry_path: str) -> Optional[bytes]:
        return self.reader.read_entry(path, entry_path)

    def extract_with_lock(
        self, archive_id: str, path: Path, out_dir: Path
    ) -> "Future[ExtractionResult]":
        return self.coordinator.extract_with_lock(archive_id, path, out_dir)

    def validate(self, path: Path) -> ValidationResult:
        return self.reader.validate(path)

    def test_extraction(self, path: Path) -> ValidationResult:
        return self.reader.test_extraction(path)

    def stats(self, path: Path) -> Optional[ArchiveStats]:
        return self.reader.stats(path)

    # Writing

    def add_or_replace_entry(
        self, path: Path, source_file: Path, entry_name: Optional[str] = None
    ) -> WriteResult:
        return self.writer.add_or_replace_entry(path, source_file, entry_name)

    def update_entry(self, path: Path, entry_path: str, content: bytes) -> WriteResult:
        return self.writer.update_entry(path, entry_path, content)

    def delete_pages(self, path: Path, entry_paths: Iterable[str]) -> DeletePagesResult:
        return self.writer.delete_pages(path, entry_paths)

    def create_archive(self, source_dir: Path, output_path: Path) -> ArchiveCreationResult:
        return self.writer.create_archive(source_dir, output_path)

    # Cache

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> dict:
        return self.cache.stats()
