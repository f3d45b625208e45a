"""Cover image generation for Longbox.

Extracts the cover page of an archive and stores it under
`covers/<library_id>/<hash>.webp`, with a JPEG fallback (`.jpg`) and a tiny
blurred placeholder (`.blur`, a base64 data URL) beside it.
"""

from __future__ import annotations

import base64
import dataclasses
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image, ImageFilter

from .archive import ArchiveReader
from .config import CoverConfig
from .logging_config import get_logger
from .utils import cleanup_temp_dir, create_temp_dir, short_path

logger = get_logger(__name__)

BLUR_PLACEHOLDER_WIDTH = 20
BLUR_PLACEHOLDER_QUALITY = 30
BLUR_RADIUS = 2


@dataclasses.dataclass
class CoverPaths:
    webp: Path
    jpeg: Path
    blur: Path


@dataclasses.dataclass
class CoverResult:
    success: bool
    from_cache: bool = False
    cover_path: Optional[Path] = None
    blur_placeholder: Optional[str] = None
    error: Optional[str] = None


def cover_paths(covers_dir: Path, library_id: int, cover_hash: str) -> CoverPaths:
    base = covers_dir / str(library_id)
    return CoverPaths(
        webp=base / f"{cover_hash}.webp",
        jpeg=base / f"{cover_hash}.jpg",
        blur=base / f"{cover_hash}.blur",
    )


def _read_blur(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return None


def _resize_to_width(im: Image.Image, width: int) -> Image.Image:
    """Shrink to width keeping aspect ratio; never enlarge."""
    if im.width <= width:
        return im
    height = max(1, round(im.height * width / im.width))
    return im.resize((width, height), Image.Resampling.LANCZOS)


def _save_cover_images(img_bytes: bytes, paths: CoverPaths, settings: CoverConfig) -> str:
    paths.webp.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(BytesIO(img_bytes)) as im:
        im = im.convert("RGB")
        resized = _resize_to_width(im, settings.width)
        resized.save(paths.webp, format="WEBP", quality=settings.quality_webp)
        resized.save(paths.jpeg, format="JPEG", quality=settings.quality_jpeg, optimize=True)

        tiny = _resize_to_width(im, BLUR_PLACEHOLDER_WIDTH).filter(
            ImageFilter.GaussianBlur(BLUR_RADIUS)
        )
        buffer = BytesIO()
        tiny.save(buffer, format="JPEG", quality=BLUR_PLACEHOLDER_QUALITY)

    placeholder = "data:image/jpeg;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
    paths.blur.write_text(placeholder, encoding="utf-8")
    return placeholder


def extract_cover(
    reader: ArchiveReader,
    archive_path: Path,
    covers_dir: Path,
    library_id: int,
    cover_hash: str,
    settings: CoverConfig,
    temp_dir: Optional[Path] = None,
) -> CoverResult:
    """Extract, shrink and cache the cover of one archive.

    An existing WebP for cover_hash short-circuits with from_cache=True.
    """
    paths = cover_paths(covers_dir, library_id, cover_hash)
    if paths.webp.exists():
        return CoverResult(
            success=True,
            from_cache=True,
            cover_path=paths.webp,
            blur_placeholder=_read_blur(paths.blur),
        )

    info = reader.list(archive_path)
    if not info.cover_entry_path:
        return CoverResult(success=False, error="No cover image found in archive")

    work_dir = create_temp_dir("cover-", temp_dir)
    try:
        target = work_dir / ("cover" + Path(info.cover_entry_path).suffix.lower())
        extracted = reader.extract_entry(archive_path, info.cover_entry_path, target)
        if not extracted.success:
            return CoverResult(success=False, error=extracted.error or "Failed to extract cover")

        placeholder = _save_cover_images(target.read_bytes(), paths, settings)
    finally:
        cleanup_temp_dir(work_dir)

    logger.debug(f"✓ Cover saved for {short_path(Path(archive_path))}")
    return CoverResult(success=True, cover_path=paths.webp, blur_placeholder=placeholder)


def delete_covers(cover_hashes: list[str], covers_dir: Path) -> int:
    """Delete cached cover files (webp, jpg, blur) for the given hashes.

    Returns count of deleted files.
    """
    deleted = 0
    for cover_hash in cover_hashes:
        for suffix in (".webp", ".jpg", ".blur"):
            for cover_file in covers_dir.glob(f"*/{cover_hash}{suffix}"):
                try:
                    cover_file.unlink()
                    deleted += 1
                except OSError as exc:
                    logger.error(f"Failed to delete cover {cover_file}: {exc}")
    return deleted


def cleanup_orphaned_covers(covers_dir: Path, valid_hashes: set[str]) -> int:
    """Remove cover files whose hash no tracked file references.

    Returns count of deleted files.
    """
    if not covers_dir.exists():
        return 0
    orphaned = sorted(
        {p.stem for p in covers_dir.glob("*/*.webp") if p.stem not in valid_hashes}
    )
    if not orphaned:
        return 0
    deleted = delete_covers(orphaned, covers_dir)
    logger.info(f"Removed {deleted} orphaned cover files")
    return deleted
