"""Longbox CLI entry point."""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional

import typer
from sqlmodel import Session

from longbox import __version__
from longbox.config import DEFAULT_CONFIG_PATH, LongboxConfig, load_config, write_default_config
from longbox.covers import cleanup_orphaned_covers
from longbox.database import get_engine, init_db, reset_database
from longbox.engine import ArchiveEngine
from longbox.logging_config import setup_logging
from longbox.migrations import get_status, run_migrations, stamp_if_needed
from longbox.monitor import phases_for, start_file_monitoring
from longbox.repository import Repository
from longbox.scan_types import ScanOptions
from longbox.scanner import PHASES, ensure_library, scan_library

app = typer.Typer(add_completion=False, help="Longbox comic archive library CLI")
logger = logging.getLogger("longbox")
_state = {"verbose": False}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
) -> None:
    _state["verbose"] = verbose


def _logging(config: Optional[LongboxConfig] = None) -> None:
    """Console logging always; the file log once a config.ini exists."""
    if config is None:
        try:
            config = load_config()
        except FileNotFoundError:
            setup_logging(verbose=_state["verbose"])
            return
    setup_logging(config.logging, config.log_path, verbose=_state["verbose"])


def _ensure_config() -> LongboxConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: longbox init --library /path/to/comics")
        raise typer.Exit(code=1)


def _engine(config: Optional[LongboxConfig] = None) -> ArchiveEngine:
    if config is None:
        try:
            config = load_config()
        except FileNotFoundError:
            return ArchiveEngine()
    return ArchiveEngine.from_config(config)


def _prepare_database() -> None:
    init_db()
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your comics folder"),
    name: str = typer.Option("My Comic Library", "--name", help="Library name"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = write_default_config(library, name, DEFAULT_CONFIG_PATH)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def scan(
    force: bool = typer.Option(False, "--force", help="Reprocess every file, not just changed ones"),
    phase: Optional[str] = typer.Option(
        None, "--phase", help="Run a single phase: discovery, metadata or covers"
    ),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", help="Override the discovery and metadata batch size"
    ),
    cover_batch_size: Optional[int] = typer.Option(
        None, "--cover-batch-size", help="Override the cover batch size"
    ),
) -> None:
    """Scan the library and update the database."""
    _logging()

    if phase is not None and phase not in PHASES:
        typer.echo(f"[ERROR] Unknown phase '{phase}'. Choose from: {', '.join(PHASES)}")
        raise typer.Exit(code=1)

    config = _ensure_config()
    _prepare_database()
    library = ensure_library(config)
    options = ScanOptions(
        batch_size=batch_size, cover_batch_size=cover_batch_size, force_full_scan=force
    )
    result = scan_library(
        library,
        options,
        config,
        _engine(config),
        phases=(phase,) if phase else PHASES,
    )

    if result.discovery:
        d = result.discovery
        typer.echo(
            f"✓ Discovery: {d.total_files} files, {d.new_files} new, "
            f"{d.modified_files} modified, {d.restored_files} restored, "
            f"{d.orphaned_files} orphaned, {d.unchanged_files} unchanged."
        )
    if result.metadata:
        m = result.metadata
        typer.echo(
            f"✓ Metadata: {m.processed} files ({m.from_sidecar} from ComicInfo, "
            f"{m.from_folder} from folder, {m.from_filename} from filename), {m.errors} errors."
        )
    if result.covers:
        c = result.covers
        typer.echo(
            f"✓ Covers: {c.extracted} extracted, {c.cached} cached, {c.failed} failed, "
            f"{c.series_updated} series updated."
        )
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def watch() -> None:
    """Scan once, then rescan whenever the library changes."""
    _logging()

    config = _ensure_config()
    _prepare_database()
    library = ensure_library(config)
    engine = _engine(config)

    def run_scan(changes=None):
        phases = phases_for(changes) if changes else PHASES
        return scan_library(library, ScanOptions(), config, engine, phases=phases)

    run_scan()
    monitor = start_file_monitoring(config, run_scan)
    if monitor is None:
        typer.echo("[ERROR] File monitoring is disabled or the library path is missing.")
        raise typer.Exit(code=1)

    try:
        while monitor.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        monitor.stop()


@app.command("list")
def list_archive(archive: Path = typer.Argument(..., help="Comic archive")) -> None:
    """List the entries of an archive."""
    _logging()

    info = _engine().list(archive)
    for entry in info.entries:
        if entry.is_directory:
            continue
        flags = " (encrypted)" if entry.is_encrypted else ""
        typer.echo(f"{entry.size:>12}  {entry.path}{flags}")
    typer.echo(
        f"{info.format.value}: {info.file_count} files, {info.total_size} bytes, "
        f"cover: {info.cover_entry_path or '-'}, "
        f"ComicInfo.xml: {'yes' if info.has_embedded_metadata else 'no'}"
    )


@app.command()
def info(archive: Path = typer.Argument(..., help="Comic archive")) -> None:
    """Show summary statistics for one archive."""
    _logging()

    stats = _engine().stats(archive)
    if stats is None:
        typer.echo(f"[ERROR] Unable to read {archive}")
        raise typer.Exit(code=1)
    typer.echo(f"Format: {stats.format.value}")
    typer.echo(f"Files: {stats.file_count} ({stats.image_count} images)")
    typer.echo(f"Size: {stats.total_size} bytes")
    typer.echo(f"Cover: {stats.cover_entry_path or '-'}")
    typer.echo(f"ComicInfo.xml: {'yes' if stats.has_embedded_metadata else 'no'}")


@app.command()
def validate(
    archive: Path = typer.Argument(..., help="Comic archive"),
    extract: bool = typer.Option(False, "--extract", help="Also test-extract the first entry"),
) -> None:
    """Check that an archive is readable, unencrypted and has images."""
    _logging()

    engine = _engine()
    result = engine.validate(archive)
    if result.valid and extract:
        result = engine.test_extraction(archive)

    if result.valid:
        typer.echo(f"[OK] {archive.name} is valid")
    else:
        typer.echo(f"[ERROR] {archive.name}: {result.error}")
        raise typer.Exit(code=1)


@app.command()
def extract(
    archive: Path = typer.Argument(..., help="Comic archive"),
    out: Path = typer.Argument(..., help="Output directory (or file with --entry)"),
    entry: Optional[str] = typer.Option(None, "--entry", help="Extract a single entry to OUT"),
) -> None:
    """Extract an archive, or a single entry of it."""
    _logging()

    engine = _engine()
    if entry:
        single = engine.extract_entry(archive, entry, out)
        if not single.success:
            typer.echo(f"[ERROR] {single.error}")
            raise typer.Exit(code=1)
        typer.echo(f"[OK] {entry} -> {single.output_path}")
        return

    out.mkdir(parents=True, exist_ok=True)
    result = engine.extract_with_lock(str(archive.resolve()), archive, out).result()
    if not result.success:
        typer.echo(f"[ERROR] {result.error}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Extracted {result.file_count} files to {result.extracted_path}")


@app.command("delete-pages")
def delete_pages(
    archive: Path = typer.Argument(..., help="CBZ archive"),
    pages: List[str] = typer.Argument(..., help="Entry paths to remove"),
) -> None:
    """Remove pages from a CBZ archive."""
    _logging()

    result = _engine().delete_pages(archive, pages)
    if not result.success:
        typer.echo(f"[ERROR] {result.error}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Deleted {result.deleted_count} pages from {archive.name}")


@app.command()
def stats() -> None:
    """Show library statistics."""
    config = _ensure_config()
    library = ensure_library(config)

    with Session(get_engine()) as session:
        repo = Repository(session)
        counts = repo.status_counts(library.id)
        series_count = repo.series_count(library.id)

    total = sum(counts.values())
    typer.echo("Library Statistics:")
    typer.echo(f"  Library: {library.name} ({library.root_path})")
    typer.echo(f"  Tracked files: {total}")
    for status, count in counts.items():
        typer.echo(f"    {status}: {count}")
    typer.echo(f"  Series: {series_count}")


@app.command()
def cleanup() -> None:
    """Remove cover images no tracked file references."""
    config = _ensure_config()
    init_db()

    with Session(get_engine()) as session:
        valid = Repository(session).valid_cover_hashes()
    deleted = cleanup_orphaned_covers(config.covers_dir, valid)
    typer.echo(f"[INFO] Removed {deleted} orphaned cover files")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _logging()

    _ensure_config()
    init_db()

    current, head = get_status()
    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind, current: {current}, head: {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Reset database and covers, then rescan the library."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database and covers. Use --confirm.")
        raise typer.Exit(code=1)

    _logging()
    config = _ensure_config()

    reset_database()
    stamp_if_needed()
    if config.covers_dir.exists():
        shutil.rmtree(config.covers_dir)

    typer.echo("[INFO] Database and covers reset. Rescanning library...")
    library = ensure_library(config)
    result = scan_library(library, ScanOptions(force_full_scan=True), config, _engine(config))
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Print the Longbox version."""
    typer.echo(__version__)


if __name__ == "__main__":
    app()
