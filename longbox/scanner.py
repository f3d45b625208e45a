"""Library scan orchestration for Longbox.

A scan runs three phases in order, each resumable on its own:

- discovery: filesystem walk reconciled against tracked files
- metadata:  series naming from ComicInfo.xml, folder or filename
- covers:    cover extraction and series cover resolution

Progress is reported as phases `discovery`, `metadata`, `covers` and finally
`complete`. A cancelled phase stops the scan; nothing is rolled back and the
next scan re-queries whatever still needs work.
"""

from __future__ import annotations

import time
from typing import Optional

from sqlmodel import Session

from .config import LongboxConfig, get_config
from .cover_phase import run_cover_phase
from .database import get_engine, init_db
from .discovery import run_discovery
from .engine import ArchiveEngine
from .logging_config import get_logger
from .metadata_phase import run_metadata_phase
from .models import Library
from .repository import Repository
from .scan_types import ScanLibraryResult, ScanOptions

logger = get_logger(__name__)

PHASES = ("discovery", "metadata", "covers")


def ensure_library(config: LongboxConfig) -> Library:
    """Return the Library row for the configured root, creating it if needed.

    The returned object is detached with its attributes loaded.
    """
    init_db()
    with Session(get_engine()) as session:
        repo = Repository(session)
        library = repo.get_or_create_library(config.library_path, config.library.name)
        repo.commit()
        session.refresh(library)
        session.expunge(library)
    return library


def scan_library(
    library: Library,
    options: Optional[ScanOptions] = None,
    config: Optional[LongboxConfig] = None,
    engine: Optional[ArchiveEngine] = None,
    phases: tuple[str, ...] = PHASES,
) -> ScanLibraryResult:
    """Run the requested phases against one library."""
    options = options or ScanOptions()
    config = config or get_config()
    engine = engine or ArchiveEngine.from_config(config)
    started = time.monotonic()
    result = ScanLibraryResult(library_id=library.id)

    logger.info(f"[SCAN] {library.name} ({library.root_path})")

    if "discovery" in phases:
        options.report("discovery", 0)
        result.discovery = run_discovery(library, options, config)

    if "metadata" in phases and not result.cancelled:
        options.report("metadata", 0)
        result.metadata = run_metadata_phase(library, options, config, engine)

    if "covers" in phases and not result.cancelled:
        options.report("covers", 0)
        result.covers = run_cover_phase(library, options, config, engine)

    result.duration = time.monotonic() - started
    if result.cancelled:
        logger.warning(f"Scan of {library.name} cancelled after {result.duration:.1f}s")
    else:
        options.report("complete", 0, message=f"{result.duration:.1f}s")
        logger.info(f"✓ Scan of {library.name} complete in {result.duration:.1f}s")
    return result
