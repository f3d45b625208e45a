"""Single-flight coordination of full-archive extractions.

Concurrent requests for the same archive id share one underlying extraction
and observe the same result object. The registry only holds extractions that
are in flight; an entry is dropped as soon as its extraction settles, before
observers are woken. Distinct archive ids never wait on each other.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Dict

from .archive import ArchiveReader
from .archive_models import ExtractionResult
from .logging_config import get_logger

logger = get_logger(__name__)


class ExtractionCoordinator:
    def __init__(self, reader: ArchiveReader):
        self.reader = reader
        self._pending: Dict[str, "Future[ExtractionResult]"] = {}
        self._lock = threading.Lock()

    def extract_with_lock(
        self, archive_id: str, path: Path, out_dir: Path
    ) -> "Future[ExtractionResult]":
        """Extract path into out_dir unless the same archive id is already running.

        The first caller performs the extraction on its own thread and gets
        back a completed future; later callers get the in-flight future
        immediately and can block on `.result()`.
        """
        with self._lock:
            pending = self._pending.get(archive_id)
            if pending is not None:
                logger.debug(f"Joining in-flight extraction for {archive_id}")
                return pending
            future: "Future[ExtractionResult]" = Future()
            future.set_running_or_notify_cancel()
            self._pending[archive_id] = future

        try:
            result = self.reader.extract(Path(path), Path(out_dir))
        except Exception as exc:
            self._release(archive_id)
            logger.error(f"✗ Extraction failed for {archive_id}: {exc}")
            future.set_exception(exc)
            return future

        self._release(archive_id)
        future.set_result(result)
        return future

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def is_pending(self, archive_id: str) -> bool:
        with self._lock:
            return archive_id in self._pending

    def _release(self, archive_id: str) -> None:
        with self._lock:
            self._pending.pop(archive_id, None)
