"""Options, progress events and phase results shared by the scan pipeline."""

from __future__ import annotations

import dataclasses
from typing import Callable, Optional


@dataclasses.dataclass
class ScanProgress:
    phase: str  # discovery | metadata | covers | complete
    processed: int = 0
    total: Optional[int] = None
    message: str = ""


def _never() -> bool:
    return False


@dataclasses.dataclass
class ScanOptions:
    on_progress: Optional[Callable[[ScanProgress], None]] = None
    should_cancel: Callable[[], bool] = _never
    batch_size: Optional[int] = None  # discovery and metadata
    cover_batch_size: Optional[int] = None
    force_full_scan: bool = False

    def report(self, phase: str, processed: int, total: Optional[int] = None, message: str = "") -> None:
        if self.on_progress is not None:
            self.on_progress(ScanProgress(phase=phase, processed=processed, total=total, message=message))


@dataclasses.dataclass
class PhaseResult:
    success: bool = True
    processed: int = 0
    errors: int = 0
    duration: float = 0.0
    cancelled: bool = False
    error: Optional[str] = None


@dataclasses.dataclass
class DiscoveryResult(PhaseResult):
    new_files: int = 0
    modified_files: int = 0
    unchanged_files: int = 0
    orphaned_files: int = 0
    restored_files: int = 0
    total_files: int = 0


@dataclasses.dataclass
class MetadataResult(PhaseResult):
    from_sidecar: int = 0
    from_folder: int = 0
    from_filename: int = 0


@dataclasses.dataclass
class CoverPhaseResult(PhaseResult):
    extracted: int = 0
    cached: int = 0
    failed: int = 0
    series_updated: int = 0


@dataclasses.dataclass
class ScanLibraryResult:
    library_id: int
    discovery: Optional[DiscoveryResult] = None
    metadata: Optional[MetadataResult] = None
    covers: Optional[CoverPhaseResult] = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        phases = [p for p in (self.discovery, self.metadata, self.covers) if p is not None]
        return all(p.success for p in phases)

    @property
    def cancelled(self) -> bool:
        phases = [p for p in (self.discovery, self.metadata, self.covers) if p is not None]
        return any(p.cancelled for p in phases)
