"""Path helpers for tracked files.

Tracked files keep both their absolute path (the reconciliation key) and a
POSIX-style path relative to the library root (used for display and for
series naming).
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path


def to_relative(absolute_path: Path, library_root: Path) -> str:
    """Convert an absolute path to a relative POSIX path string.

    Example:
        >>> to_relative(Path("/library/Comics/Marvel/X-Men.cbz"), Path("/library/Comics"))
        "Marvel/X-Men.cbz"
    """
    try:
        return absolute_path.relative_to(library_root).as_posix()
    except ValueError:
        return absolute_path.as_posix()


def mtime_of(stat_mtime: float) -> datetime:
    """File mtime as an aware UTC datetime, the form stored in the database."""
    return datetime.fromtimestamp(stat_mtime, tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored timestamp to aware UTC.

    Depending on the SQLModel release, DateTime columns on SQLite come back
    either naive (UTC by convention) or aware.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
