"""Bootstrap logic that prepares runtime directories and the SQLite database."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config
from .services.jobs import ErrorClass

LOGGER = logging.getLogger(__name__)


INTERRUPTED_MESSAGE = "Interrupted by application restart"
INTERRUPTED_ERROR_TYPE = ErrorClass.PROCESS_ERROR.value


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig, *, reconcile_jobs: bool = True) -> None:
        self._config = config
        self._reconcile_jobs = reconcile_jobs

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_database()
        if self._reconcile_jobs:
            self._reconcile_interrupted_jobs()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        for label, path in (
            ("storage", self._config.storage_root),
            ("downloads", self._config.downloads_root),
            ("binary", self._config.bin_root),
        ):
            if not config_module._ensure_writable_directory(path):
                raise BootstrapError(f"The {label} directory '{path}' is not writable.")
            LOGGER.debug("Ensured directory exists: %s", path)

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring database schema at %s", self._config.database_file)
        with contextlib.closing(sqlite3.connect(self._config.database_file)) as connection:
            cursor = connection.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS videos (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    video_id TEXT NOT NULL UNIQUE,
                    url TEXT NOT NULL,
                    title TEXT DEFAULT '',
                    duration_seconds REAL,
                    download_status TEXT,
                    download_progress INTEGER,
                    download_format TEXT,
                    download_file_path TEXT,
                    download_file_size INTEGER,
                    last_error_message TEXT,
                    error_type TEXT,
                    last_downloaded_at INTEGER,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                );
                """
            )
            connection.commit()

            for column, definition in (
                ("optimization_status", "TEXT"),
                ("optimization_progress", "INTEGER"),
                ("original_file_size", "INTEGER"),
                ("last_optimized_at", "INTEGER"),
            ):
                try:
                    cursor.execute(f"ALTER TABLE videos ADD COLUMN {column} {definition}")
                except sqlite3.OperationalError as error:
                    message = str(error).lower()
                    if "duplicate column name" not in message:
                        raise
            connection.commit()

    def _reconcile_interrupted_jobs(self) -> None:
        """Fail mirror rows left queued or running by a previous process.

        The in-memory queues always start empty, so such rows would otherwise
        block re-submission forever.
        """

        now = int(time.time())
        with contextlib.closing(sqlite3.connect(self._config.database_file)) as connection:
            downloads = connection.execute(
                """
                UPDATE videos
                SET download_status = 'failed', last_error_message = ?, error_type = ?, updated_at = ?
                WHERE download_status IN ('queued', 'downloading')
                """,
                (INTERRUPTED_MESSAGE, INTERRUPTED_ERROR_TYPE, now),
            ).rowcount
            optimizations = connection.execute(
                """
                UPDATE videos
                SET optimization_status = 'failed', last_error_message = ?, error_type = ?, updated_at = ?
                WHERE optimization_status IN ('queued', 'optimizing')
                """,
                (INTERRUPTED_MESSAGE, INTERRUPTED_ERROR_TYPE, now),
            ).rowcount
            connection.commit()
        if downloads or optimizations:
            LOGGER.warning(
                "Marked interrupted jobs as failed (downloads=%s, optimizations=%s)",
                downloads,
                optimizations,
            )


def initialize_app(config_path: Path | None = None, *, reconcile_jobs: bool = True) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization.

    Only the process that owns the queues should pass ``reconcile_jobs=True``.
    """

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config, reconcile_jobs=reconcile_jobs)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "INTERRUPTED_MESSAGE", "initialize_app"]
