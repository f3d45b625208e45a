"""Utility functions for Longbox."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

PARTIAL_HASH_CHUNK = 64 * 1024


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + filename.

    Example: /very/long/path/to/folder/file.cbz -> folder/file.cbz
    """
    return f"{path.parent.name}/{path.name}"


def create_temp_dir(prefix: str = "longbox-", base_dir: Optional[Path] = None) -> Path:
    """Create a fresh temporary directory for archive work."""
    if base_dir is not None:
        base_dir.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None))


def cleanup_temp_dir(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def partial_hash(path: Path, chunk_size: int = PARTIAL_HASH_CHUNK) -> str:
    """Hash the file size plus its first and last chunk.

    Cheap enough to run on every new file during discovery while still
    distinguishing files that share a name.
    """
    size = path.stat().st_size
    digest = hashlib.sha256()
    digest.update(str(size).encode("ascii"))
    with open(path, "rb") as handle:
        digest.update(handle.read(chunk_size))
        if size > chunk_size * 2:
            handle.seek(-chunk_size, os.SEEK_END)
            digest.update(handle.read(chunk_size))
    return digest.hexdigest()[:32]


def optimal_concurrency(kind: str = "io") -> int:
    """Worker count for a bounded pool.

    io: min(2 * cpus, 16); cpu: max(cpus - 1, 2).
    """
    cpus = os.cpu_count() or 2
    if kind == "io":
        return min(cpus * 2, 16)
    return max(cpus - 1, 2)
