"""Cover phase of a library scan.

Generates cover images for indexed files that do not have one yet, then
recomputes the resolved cover of every series those files belong to.
"""

from __future__ import annotations

import dataclasses
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import List, Optional

from sqlmodel import Session

from .config import LongboxConfig, get_config
from .covers import extract_cover
from .database import get_engine
from .engine import ArchiveEngine
from .logging_config import get_logger
from .models import Library
from .repository import Repository
from .scan_types import CoverPhaseResult, ScanOptions
from .utils import optimal_concurrency, partial_hash

logger = get_logger(__name__)


@dataclasses.dataclass
class _CoverJob:
    file_id: int
    absolute_path: Path
    relative_path: str
    content_hash: Optional[str]
    series_name: Optional[str]


@dataclasses.dataclass
class _CoverOutcome:
    job: _CoverJob
    cover_hash: Optional[str] = None
    from_cache: bool = False
    error: Optional[str] = None


def _process(
    job: _CoverJob,
    engine: ArchiveEngine,
    library_id: int,
    config: LongboxConfig,
) -> _CoverOutcome:
    try:
        cover_hash = job.content_hash or partial_hash(job.absolute_path)
        cover = extract_cover(
            engine.reader,
            job.absolute_path,
            config.covers_dir,
            library_id,
            cover_hash,
            config.covers,
            temp_dir=config.archive.temp_dir,
        )
    except Exception as exc:
        logger.error(f"✗ {job.relative_path} - cover failed: {exc}")
        return _CoverOutcome(job=job, error=str(exc))

    if not cover.success:
        logger.error(f"✗ {job.relative_path} - cover failed: {cover.error}")
        return _CoverOutcome(job=job, error=cover.error)
    return _CoverOutcome(job=job, cover_hash=cover_hash, from_cache=cover.from_cache)


def _recalculate_series(
    repo: Repository, library_id: int, names: List[str], result: CoverPhaseResult
) -> None:
    for name in names:
        try:
            series = repo.get_or_create_series(library_id, name)
            repo.recalculate_series_cover(series.id)
            repo.commit()
            result.series_updated += 1
        except Exception as exc:
            repo.rollback()
            logger.error(f"✗ Failed to update cover for series {name}: {exc}")


def run_cover_phase(
    library: Library,
    options: Optional[ScanOptions] = None,
    config: Optional[LongboxConfig] = None,
    engine: Optional[ArchiveEngine] = None,
) -> CoverPhaseResult:
    """Extract covers for indexed files and refresh affected series covers."""
    options = options or ScanOptions()
    config = config or get_config()
    engine = engine or ArchiveEngine.from_config(config)
    started = time.monotonic()
    result = CoverPhaseResult()

    library_id = library.id
    batch_size = options.cover_batch_size or config.scanner.cover_batch_size
    work = partial(_process, engine=engine, library_id=library_id, config=config)
    touched: dict[str, None] = {}

    logger.info("[SCAN] Cover phase")

    with Session(get_engine()) as session, ThreadPoolExecutor(
        max_workers=optimal_concurrency("cpu")
    ) as pool:
        repo = Repository(session)
        after_id = 0

        while True:
            if options.should_cancel():
                result.cancelled = True
                break

            batch = repo.cover_candidates(library_id, after_id, batch_size)
            if not batch:
                break
            jobs = [
                _CoverJob(
                    file_id=f.id,
                    absolute_path=Path(f.absolute_path),
                    relative_path=f.relative_path,
                    content_hash=f.content_hash,
                    series_name=f.series_name_raw,
                )
                for f in batch
            ]
            after_id = jobs[-1].file_id
            result.processed += len(jobs)

            try:
                outcomes = list(pool.map(work, jobs))
                done = [o for o in outcomes if o.error is None]
                for outcome in done:
                    repo.set_cover_hash(outcome.job.file_id, outcome.cover_hash)
                repo.commit()
            except Exception as exc:
                repo.rollback()
                result.failed += len(jobs)
                logger.error(f"✗ Cover batch after file {jobs[0].file_id} failed: {exc}")
                continue

            result.failed += len(outcomes) - len(done)
            for outcome in done:
                if outcome.from_cache:
                    result.cached += 1
                else:
                    result.extracted += 1
                if outcome.job.series_name:
                    touched[outcome.job.series_name] = None

            options.report("covers", result.processed)

        _recalculate_series(repo, library_id, list(touched), result)

    result.errors = result.failed
    result.duration = time.monotonic() - started
    logger.info(
        f"✓ Covers: {result.extracted} extracted, {result.cached} cached, "
        f"{result.failed} failed, {result.series_updated} series updated"
    )
    return result
