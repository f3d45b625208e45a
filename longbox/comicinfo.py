"""ComicInfo.xml parsing for Longbox.

Reads the ComicInfo.xml sidecar from inside CBZ/CBR/CB7 archives through the
archive engine and extracts metadata.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from .archive_models import COMICINFO_FILENAME
from .logging_config import get_logger

if TYPE_CHECKING:
    from .archive import ArchiveReader

logger = get_logger(__name__)

# ComicInfo tag names (case-insensitive in XML).
TAG_MAP = {
    "series": "series",
    "title": "title",
    "number": "issue_number",
    "issue": "issue_number",
    "volume": "volume",
    "writer": "writer",
    "penciller": "penciller",
    "month": "month",
    "year": "year",
    "notes": "notes",
    "summary": "summary",
    "web": "web",
    "languageiso": "language_iso",
    "genre": "genre",
    "publisher": "publisher",
    "pagecount": "page_count",
}

INT_FIELDS = ("volume", "month", "year", "page_count")

_LEADING_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


class ComicInfoParsed(BaseModel):
    """Metadata parsed from ComicInfo.xml (all optional)."""

    model_config = {"extra": "ignore"}

    series: Optional[str] = None
    title: Optional[str] = None
    issue_number: Optional[str] = None
    volume: Optional[int] = None
    publisher: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    writer: Optional[str] = None
    penciller: Optional[str] = None
    summary: Optional[str] = None
    notes: Optional[str] = None
    web: Optional[str] = None
    language_iso: Optional[str] = None
    genre: Optional[str] = None
    page_count: Optional[int] = None


def _text(elem: Optional[ET.Element]) -> Optional[str]:
    if elem is None or elem.text is None:
        return None
    t = elem.text.strip()
    return t or None


def _int_or_none(s: Optional[str]) -> Optional[int]:
    if s is None:
        return None
    try:
        return int(s.strip())
    except ValueError:
        return None


def _local_name(tag: str) -> str:
    """Return tag without namespace (e.g. '{http://...}Issue' -> 'issue')."""
    return tag.split("}")[-1].lower() if "}" in tag else tag.lower()


def issue_sort_key(issue_number: Optional[str]) -> Optional[float]:
    """Numeric ordering key for an issue number ("12" -> 12.0, "1.5" -> 1.5)."""
    if not issue_number:
        return None
    match = _LEADING_NUMBER.search(issue_number)
    if not match:
        return None
    return float(match.group(0))


def parse_comicinfo_xml(xml_bytes: bytes) -> ComicInfoParsed:
    """Parse ComicInfo.xml content into a validated Pydantic model."""
    raw: dict[str, object] = {}
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError:
        return ComicInfoParsed()

    by_lower = {_local_name(elem.tag): elem for elem in root}

    for xml_tag_lower, our_key in TAG_MAP.items():
        if our_key in raw:
            continue
        text = _text(by_lower.get(xml_tag_lower))
        if text is None:
            continue
        if our_key in INT_FIELDS:
            val = _int_or_none(text)
            if val is not None:
                raw[our_key] = val
        else:
            raw[our_key] = text

    return ComicInfoParsed.model_validate(raw)


def read_comicinfo(archive_path: Path, reader: "ArchiveReader") -> Optional[ComicInfoParsed]:
    """Read ComicInfo.xml from a comic archive and return the parsed model.

    Returns None when the archive has no sidecar or the sidecar is empty.
    Listing and extraction errors propagate to the caller.
    """
    info = reader.list(archive_path)
    if not info.has_embedded_metadata:
        return None

    entry = next(
        e for e in info.entries if e.basename.lower() == COMICINFO_FILENAME and not e.is_directory
    )
    raw = reader.read_entry(archive_path, entry.path)
    if raw is None or not raw.strip():
        logger.debug(f"Empty ComicInfo.xml in {Path(archive_path).name}")
        return None
    return parse_comicinfo_xml(raw)
