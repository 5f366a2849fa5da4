"""Centralized logging configuration for the Teletext Archive application."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging import Logger
from pathlib import Path
from typing import Any, Dict, Iterable


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger with sensible defaults."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    return logger


def get_log_file_path(log_root: Path) -> Path:
    """Return the default path for the application log file."""

    return log_root / "teletext_archive.log"


def get_error_log_path(log_root: Path, *, now: datetime | None = None) -> Path:
    """Return the daily error log file, e.g. ``error-2024-05-01.log``."""

    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return log_root / f"error-{stamp}.log"


def append_error_log(log_root: Path, entry: Dict[str, Any], *, now: datetime | None = None) -> Path:
    """Append *entry* as an indented JSON record to today's error log."""

    moment = now or datetime.now(timezone.utc)
    record = {"timestamp": moment.isoformat(), **entry}
    target = get_error_log_path(log_root, now=moment)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, indent=2, ensure_ascii=False, default=str) + "\n")
    return target


__all__ = [
    "append_error_log",
    "configure_logging",
    "get_error_log_path",
    "get_log_file_path",
    "DEFAULT_LOG_FORMAT",
]
