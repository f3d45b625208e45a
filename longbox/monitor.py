"""Filesystem monitoring for Longbox.

Uses Watchdog to notice comics being added, changed, moved or removed and
runs a delta scan of the library once a burst of events has settled.
"""

from __future__ import annotations

import queue
import time
from pathlib import Path
from threading import Event, Thread
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import LongboxConfig
from .formats import COMIC_EXTENSIONS
from .logging_config import get_logger
from .scanner import PHASES

logger = get_logger(__name__)

BATCH_WINDOW = 1.0


class MonitorTask(NamedTuple):
    action: str  # created | modified | deleted | moved
    path: Path
    is_directory: bool = False
    dest_path: Optional[Path] = None


def _is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def _is_relevant(path: Path, is_directory: bool, extensions: set[str]) -> bool:
    if _is_hidden(path):
        return False
    return is_directory or path.suffix.lower() in extensions


class ComicLibraryHandler(FileSystemEventHandler):
    """Handle filesystem events and push them to a processing queue."""

    def __init__(
        self,
        task_queue: queue.Queue,
        debounce_seconds: int = 2,
        extensions: Optional[set[str]] = None,
    ):
        super().__init__()
        self.task_queue = task_queue
        self.debounce_seconds = debounce_seconds
        self.extensions = extensions or set(COMIC_EXTENSIONS)
        self._last_modified: Dict[str, float] = {}

    def on_created(self, event: FileSystemEvent) -> None:
        path = Path(event.src_path)
        if _is_relevant(path, event.is_directory, self.extensions):
            self.task_queue.put(MonitorTask("created", path, event.is_directory))

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = Path(event.src_path)
        if _is_relevant(path, event.is_directory, self.extensions):
            self.task_queue.put(MonitorTask("deleted", path, event.is_directory))

    def on_moved(self, event: FileSystemEvent) -> None:
        src_path = Path(event.src_path)
        dest_path = Path(event.dest_path)
        if _is_relevant(src_path, event.is_directory, self.extensions) or _is_relevant(
            dest_path, event.is_directory, self.extensions
        ):
            self.task_queue.put(
                MonitorTask("moved", src_path, event.is_directory, dest_path=dest_path)
            )

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        path = Path(event.src_path)
        if not _is_relevant(path, False, self.extensions):
            return

        # Copies in progress fire a stream of modify events.
        now = time.time()
        key = str(path)
        if now - self._last_modified.get(key, 0) < self.debounce_seconds:
            return

        self._last_modified[key] = now
        self.task_queue.put(MonitorTask("modified", path))

        cutoff = now - self.debounce_seconds * 2
        self._last_modified = {k: v for k, v in self._last_modified.items() if v > cutoff}


def optimize_tasks(tasks: list[MonitorTask]) -> list[MonitorTask]:
    """Deduplicate a batch of events.

    Keeps the last event per path and drops file events that fall inside a
    directory that itself has an event in the batch.
    """
    latest: Dict[Path, MonitorTask] = {}
    for task in tasks:
        latest[task.path] = task

    directories = sorted(p for p, t in latest.items() if t.is_directory)
    top_dirs: list[Path] = []
    for path in directories:
        if not any(path != parent and path.is_relative_to(parent) for parent in top_dirs):
            top_dirs.append(path)

    optimized = [latest[p] for p in top_dirs]
    for path, task in latest.items():
        if task.is_directory:
            continue
        if any(path.is_relative_to(d) for d in top_dirs):
            continue
        optimized.append(task)
    return optimized


def phases_for(tasks: Sequence[MonitorTask]) -> Tuple[str, ...]:
    """Pick the scan phases a batch of changes needs.

    Removals only orphan records, so discovery alone covers them; anything
    that can bring new content on disk needs the full pipeline.
    """
    if tasks and all(task.action == "deleted" for task in tasks):
        return ("discovery",)
    return PHASES


def process_queue(
    task_queue: queue.Queue,
    run_scan: Callable[[List[MonitorTask]], object],
    stop_event: Event,
    batch_window: float = BATCH_WINDOW,
) -> None:
    """Collect events into batches and run one delta scan per batch."""
    while not stop_event.is_set():
        try:
            first_task = task_queue.get(timeout=1.0)
        except queue.Empty:
            continue

        batch = [first_task]
        start_time = time.time()
        while (time.time() - start_time) < batch_window:
            try:
                batch.append(task_queue.get_nowait())
            except queue.Empty:
                time.sleep(0.1)

        for _ in batch:
            task_queue.task_done()

        optimized = optimize_tasks(batch)
        if not optimized:
            continue

        for task in optimized:
            logger.debug(f"[WATCH] {task.action}: {task.path}")
        logger.info(f"[WATCH] {len(optimized)} changes detected, running delta scan")

        try:
            run_scan(optimized)
        except Exception as exc:
            logger.error(f"✗ Delta scan failed: {exc}")


class LibraryMonitor:
    """A running observer plus the worker thread that drains its queue."""

    def __init__(self, observer: Observer, worker: Thread, stop_event: Event):
        self.observer = observer
        self.worker = worker
        self.stop_event = stop_event

    def is_alive(self) -> bool:
        return self.observer.is_alive() and self.worker.is_alive()

    def stop(self, timeout: float = 5.0) -> None:
        self.observer.stop()
        self.observer.join(timeout)
        self.stop_event.set()
        self.worker.join(timeout)
        if self.worker.is_alive():
            logger.warning("[WATCH] Worker still busy with a scan; leaving it to finish")


def start_file_monitoring(
    config: LongboxConfig, run_scan: Callable[[List[MonitorTask]], object]
) -> Optional[LibraryMonitor]:
    """Start filesystem monitoring if enabled in config.

    `run_scan` is called on the worker thread with the deduplicated changes
    of each settled burst of events.
    """
    if not config.monitoring.enabled:
        return None

    library_path = config.library_path
    if not library_path.exists():
        logger.error(f"Library path does not exist: {library_path}")
        return None

    task_queue: queue.Queue = queue.Queue()
    stop_event = Event()

    worker = Thread(
        target=process_queue,
        args=(task_queue, run_scan, stop_event),
        daemon=True,
        name="LongboxMonitorWorker",
    )
    worker.start()

    event_handler = ComicLibraryHandler(
        task_queue, config.monitoring.debounce_seconds, config.scanner.extensions
    )
    observer = Observer()
    observer.schedule(event_handler, str(library_path), recursive=True)
    observer.start()
    logger.info(f"Watching {library_path} for changes")

    return LibraryMonitor(observer, worker, stop_event)
