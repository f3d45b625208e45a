"""Config management for Longbox.

Reads `config.ini` from DATA_DIR (beside main.py unless the DATA_DIR
environment variable points elsewhere).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import DEFAULT_QUIET, get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, library.db, covers/).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    name: str


@dataclasses.dataclass
class ScannerConfig:
    supported_formats: tuple[str, ...] = ("cbz", "cbr", "cb7")
    ignore_patterns: tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")
    insert_batch_size: int = 100
    metadata_batch_size: int = 100
    flush_threshold: int = 100
    cover_batch_size: int = 20

    @property
    def extensions(self) -> set[str]:
        return {f".{fmt.lower().lstrip('.')}" for fmt in self.supported_formats}


@dataclasses.dataclass
class ArchiveConfig:
    seven_zip_path: str = ""  # empty: look up 7z/7zz/7za on PATH
    cache_max_entries: int = 500
    cache_ttl_seconds: int = 300
    temp_dir: Optional[pathlib.Path] = None


@dataclasses.dataclass
class CoverConfig:
    width: int = 320
    quality_webp: int = 80
    quality_jpeg: int = 85


@dataclasses.dataclass
class MonitoringConfig:
    enabled: bool = True
    debounce_seconds: int = 2


@dataclasses.dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "longbox.log"  # relative to DATA_DIR; empty disables the file log
    max_size_mb: int = 10
    backup_count: int = 5
    quiet_loggers: tuple[str, ...] = DEFAULT_QUIET


@dataclasses.dataclass
class LongboxConfig:
    library: LibraryConfig
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    archive: ArchiveConfig = dataclasses.field(default_factory=ArchiveConfig)
    covers: CoverConfig = dataclasses.field(default_factory=CoverConfig)
    monitoring: MonitoringConfig = dataclasses.field(default_factory=MonitoringConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)
    data_dir: pathlib.Path = DATA_DIR

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path

    @property
    def database_path(self) -> pathlib.Path:
        return self.data_dir / "library.db"

    @property
    def covers_dir(self) -> pathlib.Path:
        return self.data_dir / "covers"

    @property
    def log_path(self) -> Optional[pathlib.Path]:
        if not self.logging.file:
            return None
        return self.data_dir / self.logging.file


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> LongboxConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    lib_path = pathlib.Path(
        parser.get("library", "path", fallback="/path/to/comics")
    ).expanduser()
    lib_name = parser.get("library", "name", fallback="My Comic Library")

    scanner = ScannerConfig(
        supported_formats=_parse_list(
            parser.get("scanner", "supported_formats", fallback="cbz,cbr,cb7")
        ),
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=".DS_Store,Thumbs.db,@eaDir",
            )
        ),
        insert_batch_size=parser.getint("scanner", "insert_batch_size", fallback=100),
        metadata_batch_size=parser.getint("scanner", "metadata_batch_size", fallback=100),
        flush_threshold=parser.getint("scanner", "flush_threshold", fallback=100),
        cover_batch_size=parser.getint("scanner", "cover_batch_size", fallback=20),
    )

    temp_dir = parser.get("archive", "temp_dir", fallback="").strip()
    archive = ArchiveConfig(
        seven_zip_path=parser.get("archive", "seven_zip_path", fallback="").strip(),
        cache_max_entries=parser.getint("archive", "cache_max_entries", fallback=500),
        cache_ttl_seconds=parser.getint("archive", "cache_ttl_seconds", fallback=300),
        temp_dir=pathlib.Path(temp_dir).expanduser() if temp_dir else None,
    )

    covers = CoverConfig(
        width=parser.getint("covers", "width", fallback=320),
        quality_webp=parser.getint("covers", "quality_webp", fallback=80),
        quality_jpeg=parser.getint("covers", "quality_jpeg", fallback=85),
    )

    monitoring = MonitoringConfig(
        enabled=_parse_bool(
            parser.get("monitoring", "enabled", fallback="true"), True
        ),
        debounce_seconds=parser.getint(
            "monitoring", "debounce_seconds", fallback=2
        ),
    )

    log_settings = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO").strip() or "INFO",
        file=parser.get("logging", "file", fallback="longbox.log").strip(),
        max_size_mb=parser.getint("logging", "max_size_mb", fallback=10),
        backup_count=parser.getint("logging", "backup_count", fallback=5),
        quiet_loggers=_parse_list(
            parser.get("logging", "quiet_loggers", fallback=",".join(DEFAULT_QUIET))
        ),
    )

    return LongboxConfig(
        library=LibraryConfig(path=lib_path, name=lib_name),
        scanner=scanner,
        archive=archive,
        covers=covers,
        monitoring=monitoring,
        logging=log_settings,
    )


_cached_config: Optional[LongboxConfig] = None


def get_config() -> LongboxConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None


def write_default_config(
    library_path: pathlib.Path,
    library_name: str,
    config_path: Optional[pathlib.Path] = None,
) -> pathlib.Path:
    """Write a config.ini with default settings for the given library."""
    path = config_path or DEFAULT_CONFIG_PATH
    parser = configparser.ConfigParser()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "name": library_name,
    }
    parser["scanner"] = {
        "supported_formats": "cbz,cbr,cb7",
        "ignore_patterns": ".DS_Store,Thumbs.db,@eaDir",
        "insert_batch_size": "100",
        "metadata_batch_size": "100",
        "flush_threshold": "100",
        "cover_batch_size": "20",
    }
    parser["archive"] = {
        "seven_zip_path": "",
        "cache_max_entries": "500",
        "cache_ttl_seconds": "300",
        "temp_dir": "",
    }
    parser["covers"] = {
        "width": "320",
        "quality_webp": "80",
        "quality_jpeg": "85",
    }
    parser["monitoring"] = {
        "enabled": "true",
        "debounce_seconds": "2",
    }
    parser["logging"] = {
        "level": "INFO",
        "file": "longbox.log",
        "max_size_mb": "10",
        "backup_count": "5",
        "quiet_loggers": ",".join(DEFAULT_QUIET),
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as handle:
        parser.write(handle)

    (path.parent / "covers").mkdir(parents=True, exist_ok=True)
    logger.debug(f"Wrote default config to {path}")
    return path
