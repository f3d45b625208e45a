"""Logging for Longbox.

Two handlers hang off the root logger:

- a Rich console handler on stderr, so command output on stdout stays clean
- a rotating file handler in DATA_DIR, enabled once a config is loaded

Both are driven by the `[logging]` section of config.ini. Calling
`setup_logging` again (e.g. after the config is loaded) swaps the Longbox
handlers instead of stacking duplicates.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

if TYPE_CHECKING:
    from .config import LoggingConfig

CONSOLE_HANDLER = "longbox.console"
FILE_HANDLER = "longbox.file"

FILE_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log per file or per event at INFO/DEBUG.
DEFAULT_QUIET = ("watchdog", "PIL", "rarfile", "sqlalchemy.engine")

_THEME = Theme(
    {
        "logging.level.debug": "dim",
        "logging.level.info": "bold cyan",
        "logging.level.warning": "bold yellow",
        "logging.level.error": "bold red",
    }
)


def _level(name: str, default: int = logging.INFO) -> int:
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


def _drop_handler(root: logging.Logger, name: str) -> None:
    for handler in [h for h in root.handlers if h.get_name() == name]:
        root.removeHandler(handler)
        handler.close()


def _console_handler(level: int) -> RichHandler:
    handler = RichHandler(
        console=Console(theme=_THEME, stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_path=level <= logging.DEBUG,
        markup=False,
    )
    handler.set_name(CONSOLE_HANDLER)
    handler.setLevel(level)
    return handler


def _file_handler(log_path: Path, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.set_name(FILE_HANDLER)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    settings: Optional["LoggingConfig"] = None,
    log_path: Optional[Path] = None,
    verbose: bool = False,
) -> None:
    """Install (or replace) the Longbox console and file handlers.

    Args:
        settings: the `[logging]` config section; defaults apply when None
        log_path: where the rotating log goes; no file log when None
        verbose: force DEBUG on the console regardless of settings
    """
    level_name = settings.level if settings else "INFO"
    console_level = logging.DEBUG if verbose else _level(level_name)
    quiet: Iterable[str] = settings.quiet_loggers if settings else DEFAULT_QUIET

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    _drop_handler(root, CONSOLE_HANDLER)
    root.addHandler(_console_handler(console_level))

    _drop_handler(root, FILE_HANDLER)
    if log_path is not None:
        max_bytes = (settings.max_size_mb if settings else 10) * 1024 * 1024
        backups = settings.backup_count if settings else 5
        root.addHandler(_file_handler(log_path, max_bytes, backups))

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    # alembic's fileConfig installs its own handlers; route through ours.
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
