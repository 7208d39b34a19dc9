"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig


@dataclass
class VideoRecord:
    id: int
    video_id: str
    url: str
    title: str
    duration_seconds: Optional[float]
    download_status: Optional[str]
    download_progress: Optional[int]
    download_format: Optional[str]
    download_file_path: Optional[str]
    download_file_size: Optional[int]
    last_error_message: Optional[str]
    error_type: Optional[str]
    last_downloaded_at: Optional[int]
    optimization_status: Optional[str]
    optimization_progress: Optional[int]
    original_file_size: Optional[int]
    last_optimized_at: Optional[int]
    created_at: int
    updated_at: int


_MISSING = object()

_VIDEO_COLUMNS = (
    "id, video_id, url, title, duration_seconds, download_status, download_progress, "
    "download_format, download_file_path, download_file_size, last_error_message, "
    "error_type, last_downloaded_at, optimization_status, optimization_progress, "
    "original_file_size, last_optimized_at, created_at, updated_at"
)


LOGGER = logging.getLogger(__name__)


class VideoRepository:
    """Catalog of known videos and the mirrored state of their jobs."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(action, payload=filtered, duration_ms=duration_ms)

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | Tuple[Any, ...] | None = None,
        *,
        action: str,
        table: Optional[str] = "videos",
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters) if parameters is not None else ()
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount is not None and cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        with self._track_db_event("connect", database=str(self._db_path)) as event:
            connection = sqlite3.connect(self._db_path)
            event.setdefault("sqlite_version", sqlite3.sqlite_version)
        connection.row_factory = sqlite3.Row
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> VideoRecord:
        return VideoRecord(**{key: row[key] for key in row.keys()})

    # ---------------------------------------------------------------------
    # Catalog helpers
    # ---------------------------------------------------------------------
    def add_video(
        self,
        video_id: str,
        url: str,
        title: str = "",
        *,
        duration_seconds: Optional[float] = None,
    ) -> int:
        """Insert a catalog entry and return its row id.

        Raises :class:`sqlite3.IntegrityError` when ``video_id`` is already
        registered.
        """

        now = int(time.time())
        LOGGER.debug("Adding video '%s' (%s)", video_id, url)
        with self._track_db_event("add_video", video_id=video_id) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    """
                    INSERT INTO videos(video_id, url, title, duration_seconds, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (video_id, url, title or "", duration_seconds, now, now),
                    action="videos.insert",
                )
                event["row_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def get_video(self, video_id: str) -> Optional[VideoRecord]:
        with self._connect() as connection:
            row = self._execute(
                connection,
                f"SELECT {_VIDEO_COLUMNS} FROM videos WHERE video_id = ?",
                (video_id,),
                action="videos.get",
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list_videos(self) -> List[VideoRecord]:
        with self._connect() as connection:
            rows = self._execute(
                connection,
                f"SELECT {_VIDEO_COLUMNS} FROM videos ORDER BY created_at, id",
                action="videos.list",
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def remove_video(self, video_id: str) -> bool:
        LOGGER.debug("Removing video '%s'", video_id)
        with self._connect() as connection:
            cursor = self._execute(
                connection,
                "DELETE FROM videos WHERE video_id = ?",
                (video_id,),
                action="videos.delete",
            )
            return cursor.rowcount > 0

    def update_video(
        self,
        video_id: str,
        *,
        title: Optional[str] | object = _MISSING,
        duration_seconds: Optional[float] | object = _MISSING,
    ) -> None:
        fields: Dict[str, Any] = {}
        if title is not _MISSING:
            fields["title"] = title or ""
        if duration_seconds is not _MISSING:
            fields["duration_seconds"] = duration_seconds
        self._update_fields(video_id, fields, action="update_video")

    # ---------------------------------------------------------------------
    # Job state mirror
    # ---------------------------------------------------------------------
    def update_download_state(
        self,
        video_id: str,
        *,
        status: Optional[str] | object = _MISSING,
        progress: Optional[int] | object = _MISSING,
        download_format: Optional[str] | object = _MISSING,
        file_path: Optional[str] | object = _MISSING,
        file_size: Optional[int] | object = _MISSING,
        error_message: Optional[str] | object = _MISSING,
        error_type: Optional[str] | object = _MISSING,
        downloaded_at: Optional[int] | object = _MISSING,
    ) -> None:
        fields: Dict[str, Any] = {}
        if status is not _MISSING:
            fields["download_status"] = status
        if progress is not _MISSING:
            fields["download_progress"] = progress
        if download_format is not _MISSING:
            fields["download_format"] = download_format
        if file_path is not _MISSING:
            fields["download_file_path"] = file_path
        if file_size is not _MISSING:
            fields["download_file_size"] = file_size
        if error_message is not _MISSING:
            fields["last_error_message"] = error_message
        if error_type is not _MISSING:
            fields["error_type"] = error_type
        if downloaded_at is not _MISSING:
            fields["last_downloaded_at"] = downloaded_at
        self._update_fields(video_id, fields, action="update_download_state")

    def update_optimization_state(
        self,
        video_id: str,
        *,
        status: Optional[str] | object = _MISSING,
        progress: Optional[int] | object = _MISSING,
        original_file_size: Optional[int] | object = _MISSING,
        file_size: Optional[int] | object = _MISSING,
        error_message: Optional[str] | object = _MISSING,
        error_type: Optional[str] | object = _MISSING,
        optimized_at: Optional[int] | object = _MISSING,
    ) -> None:
        fields: Dict[str, Any] = {}
        if status is not _MISSING:
            fields["optimization_status"] = status
        if progress is not _MISSING:
            fields["optimization_progress"] = progress
        if original_file_size is not _MISSING:
            fields["original_file_size"] = original_file_size
        if file_size is not _MISSING:
            fields["download_file_size"] = file_size
        if error_message is not _MISSING:
            fields["last_error_message"] = error_message
        if error_type is not _MISSING:
            fields["error_type"] = error_type
        if optimized_at is not _MISSING:
            fields["last_optimized_at"] = optimized_at
        self._update_fields(video_id, fields, action="update_optimization_state")

    def _update_fields(self, video_id: str, fields: Dict[str, Any], *, action: str) -> None:
        if not fields:
            return
        assignments = [f"{column} = ?" for column in fields]
        assignments.append("updated_at = ?")
        params: List[Any] = list(fields.values())
        params.append(int(time.time()))
        params.append(video_id)
        with self._track_db_event(action, video_id=video_id, columns=sorted(fields)):
            with self._connect() as connection:
                self._execute(
                    connection,
                    f"UPDATE videos SET {', '.join(assignments)} WHERE video_id = ?",
                    params,
                    action=f"videos.{action}",
                )


__all__ = ["VideoRecord", "VideoRepository"]
