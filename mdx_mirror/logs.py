"""Console and dated file logging for command-line runs."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Optional

from .config import SyncConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVEL_ALIASES = {"WARN": "WARNING"}


def resolve_level(name: str) -> int:
    level = logging.getLevelName(_LEVEL_ALIASES.get(name.upper(), name.upper()))
    return level if isinstance(level, int) else logging.INFO


def log_file_path(log_dir: Path, prefix: str, today: Optional[dt.date] = None) -> Path:
    """Return ``<log_dir>/<prefix>-YYYY-MM-DD.log``."""
    today = today or dt.date.today()
    return log_dir / f"{prefix}-{today.isoformat()}.log"


def configure_logging(config: SyncConfig, prefix: str, verbose: bool = False) -> Optional[Path]:
    """Configure the root logger; returns the log file path when file logging is on."""
    level = logging.DEBUG if verbose else resolve_level(config.log_level)
    handlers = [logging.StreamHandler()]
    log_path: Optional[Path] = None
    file_error: Optional[OSError] = None

    if config.enable_file_logging:
        log_path = log_file_path(config.log_dir, prefix)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
        except OSError as exc:
            file_error = exc
            log_path = None

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    if file_error:
        logging.getLogger("mdx_mirror").warning(
            "Could not open log file in %s, logging to console only: %s",
            config.log_dir,
            file_error,
        )
    return log_path
