"""Extraction backends for the archive engine.

- RarBackend: in-process RAR reading through `rarfile`.
- SevenZipBackend: the `7z` executable driven as a subprocess; handles ZIP,
  7z, TAR and anything else 7-Zip understands.

Both return plain lists/results; iteration over archive headers is
materialized eagerly so callers always see a stable, ordered sequence.
"""

from __future__ import annotations

import dataclasses
import io
import shutil
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

import rarfile

from .archive_models import (
    ArchiveEntry,
    ArchiveError,
    ArchiveToolError,
    ExtractionResult,
    entry_basename,
    normalize_entry_path,
)
from .formats import ArchiveFormat
from .logging_config import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# RAR
# ---------------------------------------------------------------------------

def _rar_entry(info: "rarfile.RarInfo") -> ArchiveEntry:
    modified = None
    try:
        if info.date_time:
            modified = datetime(*info.date_time)
    except (TypeError, ValueError):
        modified = None

    return ArchiveEntry(
        path=info.filename,
        size=info.file_size or 0,
        packed_size=info.compress_size or 0,
        is_directory=info.is_dir(),
        modified_date=modified,
        is_encrypted=bool(info.needs_password()),
    )


class RarBackend:
    """Read-only RAR access. RAR containers are never written."""

    def list(self, path: Path) -> List[ArchiveEntry]:
        try:
            with rarfile.RarFile(str(path)) as rf:
                infos = list(rf.infolist())
        except rarfile.Error as exc:
            raise ArchiveError(f"Failed to list RAR archive {path.name}: {exc}") from exc
        return [_rar_entry(info) for info in infos]

    def extract(
        self, path: Path, out_dir: Path, entry_filter: Sequence[str] = ()
    ) -> ExtractionResult:
        """Extract the archive (or the entries in entry_filter) to out_dir."""
        out_dir.mkdir(parents=True, exist_ok=True)
        try:
            with rarfile.RarFile(str(path)) as rf:
                infos = list(rf.infolist())
                if entry_filter:
                    wanted = {normalize_entry_path(f) for f in entry_filter}
                    members = [
                        i for i in infos if normalize_entry_path(i.filename) in wanted
                    ]
                    if not members:
                        return ExtractionResult(
                            success=False,
                            extracted_path=str(out_dir),
                            file_count=0,
                            error=f"No files extracted. Requested: {', '.join(entry_filter)}",
                        )
                else:
                    members = infos
                rf.extractall(path=str(out_dir), members=members)
        except (rarfile.Error, OSError) as exc:
            return ExtractionResult(
                success=False,
                extracted_path=str(out_dir),
                file_count=0,
                error=str(exc),
            )

        count = sum(1 for m in members if not m.is_dir())
        return ExtractionResult(success=True, extracted_path=str(out_dir), file_count=count)

    def extract_to_buffer(self, path: Path, entry_path: str) -> Optional[bytes]:
        """Load the archive into memory and return one entry's bytes, or None."""
        target = normalize_entry_path(entry_path)
        target_name = entry_basename(entry_path)

        data = path.read_bytes()
        try:
            with rarfile.RarFile(io.BytesIO(data)) as rf:
                infos = [i for i in rf.infolist() if not i.is_dir()]
                exact = next(
                    (i for i in infos if normalize_entry_path(i.filename) == target),
                    None,
                )
                match = exact or next(
                    (i for i in infos if entry_basename(i.filename) == target_name),
                    None,
                )
                if match is None:
                    logger.debug(
                        f"No match for {entry_path} in {path.name} "
                        f"(sample: {[i.filename for i in infos[:5]]})"
                    )
                    return None
                return rf.read(match)
        except rarfile.Error as exc:
            logger.error(f"✗ RAR buffer extraction failed for {path.name}: {exc}")
            return None


# ---------------------------------------------------------------------------
# 7-Zip
# ---------------------------------------------------------------------------

SEVEN_ZIP_CANDIDATES = ("7z", "7zz", "7za")

# 7-Zip exit codes: 0 ok, 1 warning (non fatal), >=2 fatal.
EXIT_WARNING = 1

_SEVEN_ZIP_TYPES = {
    "zip": ArchiveFormat.ZIP,
    "7z": ArchiveFormat.SEVEN_ZIP,
    "rar": ArchiveFormat.RAR,
    "rar5": ArchiveFormat.RAR,
    "tar": ArchiveFormat.TAR,
}


@dataclasses.dataclass
class ToolRun:
    returncode: int
    stderr: str = ""

    @property
    def warning(self) -> Optional[str]:
        if self.returncode == EXIT_WARNING:
            return self.stderr or "7-Zip reported a warning"
        return None


@dataclasses.dataclass
class SevenZipListing:
    format: ArchiveFormat
    entries: List[ArchiveEntry]


def _parse_modified(value: str) -> Optional[datetime]:
    value = value.strip()
    if not value:
        return None
    try:
        return datetime.strptime(value[:19], "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


def _parse_int(value: str) -> int:
    try:
        return int(value.strip() or 0)
    except ValueError:
        return 0


class _SltParser:
    """Incremental parser for `7z l -slt` output.

    The archive's own property block precedes a dashed separator line; each
    entry afterwards is a block of `Key = Value` lines ended by a blank line.
    """

    def __init__(self) -> None:
        self.entries: List[ArchiveEntry] = []
        self.archive_type: Optional[str] = None
        self._in_entries = False
        self._block: dict[str, str] = {}

    def feed(self, line: str) -> None:
        stripped = line.strip()
        if not self._in_entries:
            if stripped.startswith("Type = ") and self.archive_type is None:
                self.archive_type = stripped.split("=", 1)[1].strip().lower()
            elif stripped.startswith("----------"):
                self._in_entries = True
            return

        if not stripped:
            self._flush()
            return
        if " = " in stripped:
            key, value = stripped.split(" = ", 1)
            self._block[key.strip()] = value
        elif stripped.endswith(" ="):
            self._block[stripped[:-2].strip()] = ""

    def close(self) -> None:
        self._flush()

    def _flush(self) -> None:
        block, self._block = self._block, {}
        path = block.get("Path")
        if not path:
            return
        attributes = block.get("Attributes", "")
        is_dir = block.get("Folder", "-") == "+" or attributes.startswith("D")
        self.entries.append(
            ArchiveEntry(
                path=normalize_entry_path(path),
                size=_parse_int(block.get("Size", "0")),
                packed_size=_parse_int(block.get("Packed Size", "0")),
                is_directory=is_dir,
                modified_date=_parse_modified(block.get("Modified", "")),
                is_encrypted=block.get("Encrypted", "-") == "+",
            )
        )


def _drain(stream, sink: List[str]) -> None:
    for chunk in stream:
        sink.append(chunk)


class SevenZipBackend:
    """General multi-format backend wrapping the 7-Zip command line tool.

    Output is streamed line by line; stderr is drained on a helper thread so
    that a chatty tool can never dead-lock the pipe. Every call is a single
    blocking operation returning a typed result or raising ArchiveToolError.
    """

    def __init__(self, executable: Optional[str] = None):
        self._configured = executable or None
        self._resolved: Optional[str] = None

    @property
    def executable(self) -> str:
        if self._resolved:
            return self._resolved
        candidates: Iterable[str] = (
            (self._configured,) if self._configured else SEVEN_ZIP_CANDIDATES
        )
        for name in candidates:
            found = shutil.which(name)
            if found:
                self._resolved = found
                return found
        raise ArchiveToolError(
            "7-Zip executable not found; install p7zip/7-Zip or set "
            "[archive] seven_zip_path in config.ini"
        )

    def is_available(self) -> bool:
        try:
            self.executable
        except ArchiveToolError:
            return False
        return True

    def _run(self, args: Sequence[str], on_line: Optional[Callable[[str], None]] = None) -> ToolRun:
        cmd = [self.executable, *args]
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise ArchiveToolError(f"Failed to start 7-Zip: {exc}") from exc

        stderr_lines: List[str] = []
        drain = threading.Thread(
            target=_drain, args=(proc.stderr, stderr_lines), daemon=True
        )
        drain.start()

        for line in proc.stdout:
            if on_line is not None:
                on_line(line.rstrip("\r\n"))

        returncode = proc.wait()
        drain.join()
        stderr = "".join(stderr_lines).strip()

        if returncode > EXIT_WARNING:
            raise ArchiveToolError(
                f"7-Zip exited with code {returncode}: {stderr or 'no error output'}",
                returncode=returncode,
                stderr=stderr,
            )
        return ToolRun(returncode=returncode, stderr=stderr)

    def list(self, path: Path) -> SevenZipListing:
        parser = _SltParser()
        try:
            self._run(["l", "-slt", "-sccUTF-8", str(path)], on_line=parser.feed)
        except ArchiveToolError as exc:
            raise ArchiveToolError(
                f"Failed to list archive {path.name}: {exc}",
                returncode=exc.returncode,
                stderr=exc.stderr,
            ) from exc
        parser.close()

        fmt = _SEVEN_ZIP_TYPES.get(parser.archive_type or "", ArchiveFormat.UNKNOWN)
        return SevenZipListing(format=fmt, entries=parser.entries)

    def extract(self, path: Path, out_dir: Path) -> ExtractionResult:
        """Extract the whole archive to out_dir, counting the reported files."""
        out_dir.mkdir(parents=True, exist_ok=True)
        extracted: List[str] = []

        def on_line(line: str) -> None:
            if line.startswith("- "):
                extracted.append(line[2:])

        args = ["x", "-y", "-bb1", "-bsp0", "-sccUTF-8", f"-o{out_dir}", str(path)]
        try:
            self._run(args, on_line=on_line)
        except ArchiveToolError as exc:
            logger.error(f"✗ 7-Zip extraction failed for {path.name}: {exc}")
            return ExtractionResult(
                success=False,
                extracted_path=str(out_dir),
                file_count=len(extracted),
                error=str(exc),
            )

        logger.debug(f"Extracted {len(extracted)} entries from {path.name}")
        return ExtractionResult(
            success=True, extracted_path=str(out_dir), file_count=len(extracted)
        )

    def add(self, archive_path: Path, source_file: Path) -> ToolRun:
        """Add (or replace) a file at the archive root using ZIP format."""
        return self._run(
            ["a", "-tzip", "-y", "-bsp0", "-sccUTF-8", str(archive_path), str(source_file)]
        )
