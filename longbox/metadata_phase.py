"""Metadata phase of a library scan.

Names the series of every tracked file that does not have one yet. The name
comes from, in order:

1. the <Series> tag of an embedded ComicInfo.xml
2. the parent folder name with year ranges and "by Author" suffixes removed
3. the file stem, when the file sits directly in the library root

Files are selected with keyset pagination so a restarted run simply picks up
whatever still has a NULL series name.
"""

from __future__ import annotations

import dataclasses
import re
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

from sqlmodel import Session

from .archive import ArchiveReader
from .comicinfo import ComicInfoParsed, issue_sort_key, read_comicinfo
from .config import LongboxConfig, get_config
from .database import get_engine
from .engine import ArchiveEngine
from .logging_config import get_logger
from .models import Library, MetadataSource
from .repository import FileUpdate, Repository
from .scan_types import MetadataResult, ScanOptions
from .utils import optimal_concurrency

logger = get_logger(__name__)

_YEAR_SUFFIX = re.compile(r"^(.+?)\s*\((\d{4})(?:-(\d{4}))?\)$")
_BY_AUTHOR = re.compile(r"^(.+?)\s+by\s+(.+)$", re.IGNORECASE)
_SEPARATORS = re.compile(r"[_.]+")
_SPACES = re.compile(r"\s+")
_FILENAME_ISSUE = re.compile(r"(?:#\s*|\s)(\d{1,4}(?:\.\d+)?)(?=\s*(?:\(|\[|$))")


def series_from_folder(folder_name: str) -> str:
    """Series name from a decorated folder name.

    "Saga (2012-2018)" -> "Saga"; "Hawkeye by Fraction (2012)" -> "Hawkeye";
    "Ms_Marvel" -> "Ms Marvel".
    """
    cleaned = _SPACES.sub(" ", _SEPARATORS.sub(" ", folder_name)).strip()
    match = _YEAR_SUFFIX.match(cleaned)
    if match:
        cleaned = match.group(1).strip()
    match = _BY_AUTHOR.match(cleaned)
    if match:
        cleaned = match.group(1).strip()
    return cleaned or folder_name


def issue_from_filename(stem: str) -> Optional[str]:
    match = _FILENAME_ISSUE.search(stem)
    return match.group(1) if match else None


def series_name_for(
    relative_path: str, sidecar: Optional[ComicInfoParsed]
) -> Tuple[str, str]:
    """Return (series name, source) for a file at relative_path."""
    if sidecar is not None and sidecar.series and sidecar.series.strip():
        return sidecar.series.strip(), MetadataSource.COMICINFO

    rel = PurePosixPath(relative_path)
    if len(rel.parts) > 1:
        return series_from_folder(rel.parent.name), MetadataSource.FOLDER
    return rel.stem, MetadataSource.FILENAME


@dataclasses.dataclass
class _FileJob:
    file_id: int
    absolute_path: Path
    relative_path: str


@dataclasses.dataclass
class _Outcome:
    file_id: int
    series_name: Optional[str] = None
    source: Optional[str] = None
    record: Optional[dict] = None
    error: Optional[str] = None


def _metadata_record(
    job: _FileJob, series_name: str, source: str, sidecar: Optional[ComicInfoParsed]
) -> dict:
    if sidecar is not None:
        record = sidecar.model_dump()
    else:
        # No sidecar: synthesize the minimum later phases rely on.
        record = {"issue_number": issue_from_filename(PurePosixPath(job.relative_path).stem)}
    record["file_id"] = job.file_id
    record["series"] = series_name
    record["source"] = source
    record["issue_number_sort"] = issue_sort_key(record.get("issue_number"))
    return record


def _process(job: _FileJob, reader: ArchiveReader) -> _Outcome:
    try:
        sidecar = read_comicinfo(job.absolute_path, reader)
        series_name, source = series_name_for(job.relative_path, sidecar)
        return _Outcome(
            file_id=job.file_id,
            series_name=series_name,
            source=source,
            record=_metadata_record(job, series_name, source, sidecar),
        )
    except Exception as exc:
        logger.error(f"✗ {job.relative_path} - metadata failed: {exc}")
        return _Outcome(file_id=job.file_id, error=str(exc))


class _Accumulator:
    def __init__(self, repo: Repository, library_id: int, result: MetadataResult):
        self.repo = repo
        self.library_id = library_id
        self.result = result
        self.outcomes: List[_Outcome] = []

    def __len__(self) -> int:
        return len(self.outcomes)

    def add(self, outcome: _Outcome) -> None:
        self.outcomes.append(outcome)

    def flush(self) -> None:
        if not self.outcomes:
            return
        batch, self.outcomes = self.outcomes, []

        try:
            self.repo.apply_file_updates(
                [FileUpdate(file_id=o.file_id, series_name_raw=o.series_name) for o in batch]
            )
            for name in sorted({o.series_name for o in batch}):
                self.repo.get_or_create_series(self.library_id, name)
            self.repo.commit()
        except Exception as exc:
            self.repo.rollback()
            self.result.errors += len(batch)
            logger.error(f"✗ Failed to save series names for {len(batch)} files: {exc}")
            return

        for outcome in batch:
            if outcome.source == MetadataSource.COMICINFO:
                self.result.from_sidecar += 1
            elif outcome.source == MetadataSource.FOLDER:
                self.result.from_folder += 1
            else:
                self.result.from_filename += 1

        try:
            self.repo.upsert_metadata([o.record for o in batch])
            self.repo.commit()
        except Exception as exc:
            self.repo.rollback()
            logger.error(f"✗ Failed to cache metadata for {len(batch)} files: {exc}")


def run_metadata_phase(
    library: Library,
    options: Optional[ScanOptions] = None,
    config: Optional[LongboxConfig] = None,
    engine: Optional[ArchiveEngine] = None,
) -> MetadataResult:
    """Name the series of every file still missing one."""
    options = options or ScanOptions()
    config = config or get_config()
    engine = engine or ArchiveEngine.from_config(config)
    started = time.monotonic()
    result = MetadataResult()

    library_id = library.id
    batch_size = options.batch_size or config.scanner.metadata_batch_size
    flush_threshold = config.scanner.flush_threshold
    work = partial(_process, reader=engine.reader)

    logger.info("[SCAN] Metadata phase")

    with Session(get_engine()) as session, ThreadPoolExecutor(
        max_workers=optimal_concurrency("io")
    ) as pool:
        repo = Repository(session)
        pending = _Accumulator(repo, library_id, result)
        after_id = 0

        while True:
            if options.should_cancel():
                result.cancelled = True
                break

            batch = repo.metadata_candidates(library_id, after_id, batch_size)
            if not batch:
                break
            jobs = [
                _FileJob(f.id, Path(f.absolute_path), f.relative_path) for f in batch
            ]
            after_id = jobs[-1].file_id

            for outcome in pool.map(work, jobs):
                result.processed += 1
                if outcome.error:
                    result.errors += 1
                    continue
                pending.add(outcome)
                if len(pending) >= flush_threshold:
                    pending.flush()

            options.report("metadata", result.processed)

        pending.flush()

    result.duration = time.monotonic() - started
    logger.info(
        f"✓ Metadata: {result.processed} files "
        f"({result.from_sidecar} sidecar, {result.from_folder} folder, "
        f"{result.from_filename} filename, {result.errors} errors)"
    )
    return result
