"""In-memory cache for archive listings.

Entries are keyed by archive path and validated against a cheap
(mtime, size) fingerprint on every read, so any write that changes either
value invalidates the cached listing without an explicit call. The cache is
process-local and starts empty; an ArchiveEngine owns one instance.
"""

from __future__ import annotations

import dataclasses
import os
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .archive_models import ArchiveInfo
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ENTRIES = 500
DEFAULT_TTL_SECONDS = 300.0

Fingerprint = Tuple[int, int]


def file_fingerprint(path: Path) -> Optional[Fingerprint]:
    """Return (mtime_ns, size), or None when the file cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    return st.st_mtime_ns, st.st_size


@dataclasses.dataclass
class CacheEntry:
    value: ArchiveInfo
    fingerprint: Fingerprint
    last_accessed: float
    expires_at: float


class ArchiveListingCache:
    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, path: Path) -> Optional[ArchiveInfo]:
        key = str(path)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        current = file_fingerprint(path)
        if now > entry.expires_at or current is None or current != entry.fingerprint:
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            return None

        entry.last_accessed = now
        return entry.value

    def put(self, path: Path, info: ArchiveInfo) -> None:
        fingerprint = file_fingerprint(path)
        if fingerprint is None:
            return

        now = self._clock()
        with self._lock:
            self._entries[str(path)] = CacheEntry(
                value=info,
                fingerprint=fingerprint,
                last_accessed=now,
                expires_at=now + self.ttl_seconds,
            )
            self._evict()

    def invalidate(self, path: Path) -> None:
        with self._lock:
            self._entries.pop(str(path), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Archive listing cache cleared")

    def stats(self) -> dict:
        with self._lock:
            size = len(self._entries)
        return {
            "size": size,
            "max_size": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].last_accessed)
        for key, _ in oldest[:overflow]:
            del self._entries[key]
