"""Centralized logging configuration for the VidLearn application."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_NOISY_LOGGERS = ("uvicorn.access", "asyncio")


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger; handlers already attached are not added twice."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]
    for handler in handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "vidlearn.log"


def build_handlers(storage_root: Path, *, console_level: int = logging.WARNING) -> List[logging.Handler]:
    """Return a file handler for the full log and a quieter console handler.

    Progress output of the CLI goes to stdout, so the console only shows
    warnings and errors by default.
    """

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(get_log_file_path(storage_root), encoding="utf-8")
    file_handler.setFormatter(formatter)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(console_level)
    return [file_handler, console_handler]


def quiet_subprocess_loggers(level: int = logging.WARNING) -> None:
    """Raise the threshold of chatty loggers while the server is running."""

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "build_handlers",
    "configure_logging",
    "get_log_file_path",
    "quiet_subprocess_loggers",
]
