"""FastAPI application exposing the video catalog and the job queues."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..processing.binaries import FFMPEG, YTDLP
from ..processing.formats import estimate_optimized_size
from ..services.events import EventType, emit_db_event, emit_structured_event
from ..services.jobs import BinaryUnavailableError, JobNotFoundError
from ..services.naming import derive_video_id
from ..services.queue import QueueManager, QueueSet, build_queues
from ..services.settings import DOWNLOAD_QUALITIES, SettingsStore, UserSettings
from ..services.storage import VideoRecord, VideoRepository


LOGGER = logging.getLogger(__name__)


TargetResolution = Literal["original", "1080p", "720p", "480p"]


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(EventType.API, message, context=context, logger=LOGGER)


def _serialize_video(record: VideoRecord) -> Dict[str, Any]:
    return asdict(record)


class VideoCreatePayload(BaseModel):
    url: str
    video_id: Optional[str] = None
    title: str = ""
    duration_seconds: Optional[float] = None


class DownloadRequest(BaseModel):
    video_ids: List[str] = Field(default_factory=list)
    format: Optional[str] = None


class OptimizationRequest(BaseModel):
    video_ids: List[str] = Field(default_factory=list)
    target_resolution: TargetResolution = "original"


class AudioRequest(BaseModel):
    video_ids: List[str] = Field(default_factory=list)
    format: Literal["mp3", "m4a", "opus"] = "mp3"
    quality: Literal["high", "medium", "low"] = "medium"
    delete_original: bool = False


class SettingsPayload(BaseModel):
    download_quality: Optional[Literal["360p", "480p", "720p", "1080p"]] = None
    auto_optimize: Optional[bool] = None
    auto_optimize_threshold_mb: Optional[int] = Field(default=None, gt=0)


class ForwardedRootPathMiddleware:
    """Apply proxy-provided root path information to incoming requests."""

    def __init__(self, app: ASGIApp) -> None:
        self._app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") not in {"http", "websocket"}:
            await self._app(scope, receive, send)
            return

        prefix = _extract_forwarded_prefix(scope)
        if prefix is None:
            await self._app(scope, receive, send)
            return

        adjusted_scope = dict(scope)
        adjusted_scope["root_path"] = prefix
        adjusted_scope["path"] = _trim_path(scope.get("path", "/"), prefix)

        raw_path = scope.get("raw_path")
        if isinstance(raw_path, (bytes, bytearray)):
            decoded = raw_path.decode("latin-1")
            adjusted_scope["raw_path"] = _trim_path(decoded, prefix).encode("latin-1")

        await self._app(adjusted_scope, receive, send)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _headers_to_dict(scope: Scope) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for key, value in scope.get("headers", []):
        lower_key = key.decode("latin-1").lower()
        if lower_key not in headers:
            headers[lower_key] = value.decode("latin-1")
    return headers


def _extract_forwarded_prefix(scope: Scope) -> Optional[str]:
    headers = _headers_to_dict(scope)
    value = headers.get("x-forwarded-prefix")
    if value is None:
        return None
    candidate = value.split(",", 1)[0].strip()
    normalized = _normalize_root_path(candidate)
    return normalized or None


def _trim_path(path: Any, prefix: str) -> str:
    working = path.decode("latin-1") if isinstance(path, (bytes, bytearray)) else str(path)
    if not working.startswith("/"):
        working = f"/{working}"
    if prefix and working.startswith(prefix):
        working = working[len(prefix) :] or "/"
    if not working.startswith("/"):
        working = f"/{working}"
    return working


def create_app(
    repository: VideoRepository,
    *,
    config: AppConfig,
    root_path: str | None = None,
    queues: QueueSet | None = None,
    settings_store: SettingsStore | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    settings_store = settings_store or SettingsStore(config)
    if queues is None:
        queues = build_queues(config, repository, settings_store)
    repository.configure_event_emitter(emit_db_event)

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        LOGGER.info("VidLearn API starting (storage=%s)", config.storage_root)
        try:
            yield
        finally:
            await queues.shutdown()
            LOGGER.info("VidLearn API stopped")

    app = FastAPI(
        title="VidLearn Tools",
        description="Download and optimize study videos",
        root_path=_normalize_root_path(root_path),
        lifespan=lifespan,
    )
    app.state.queues = queues
    app.state.repository = repository
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ForwardedRootPathMiddleware)

    def _require_video(video_id: str) -> VideoRecord:
        record = repository.get_video(video_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Video not found")
        return record

    def _require_binary(name: str) -> Path:
        try:
            return queues.locator.require(name)
        except BinaryUnavailableError as error:
            raise HTTPException(status_code=503, detail=str(error)) from error

    async def _cancel(queue: QueueManager, job_id: str) -> Dict[str, Any]:
        try:
            job = await queue.cancel(job_id)
        except JobNotFoundError as error:
            raise HTTPException(status_code=404, detail="Job not found") from error
        _log_event("Cancelled job", job_id=job_id, kind=job.kind)
        return {"job": job.to_dict()}

    def _has_pending_job(video_id: str) -> bool:
        for queue in (queues.downloads, queues.optimizations, queues.audio):
            snapshot = queue.get_status()
            if any(job.video_id == video_id for job in (*snapshot.queued, *snapshot.active)):
                return True
        return False

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    @app.get("/api/videos")
    async def list_videos() -> Dict[str, Any]:
        videos = [_serialize_video(record) for record in repository.list_videos()]
        _log_event("Listing videos", count=len(videos))
        return {"videos": videos}

    @app.post("/api/videos", status_code=status.HTTP_201_CREATED)
    async def create_video(payload: VideoCreatePayload) -> Dict[str, Any]:
        url = payload.url.strip()
        if not url:
            raise HTTPException(status_code=400, detail="Video URL is required")
        video_id = (payload.video_id or "").strip() or derive_video_id(url)
        try:
            repository.add_video(
                video_id,
                url,
                payload.title.strip(),
                duration_seconds=payload.duration_seconds,
            )
        except sqlite3.IntegrityError as error:
            raise HTTPException(status_code=409, detail="Video already exists") from error
        _log_event("Created video", video_id=video_id)
        return {"video": _serialize_video(_require_video(video_id))}

    @app.get("/api/videos/{video_id}")
    async def get_video(video_id: str) -> Dict[str, Any]:
        return {"video": _serialize_video(_require_video(video_id))}

    @app.delete(
        "/api/videos/{video_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        response_class=Response,
    )
    async def delete_video(video_id: str) -> Response:
        _require_video(video_id)
        if _has_pending_job(video_id):
            raise HTTPException(status_code=409, detail="Video has a queued or active job")
        repository.remove_video(video_id)
        _log_event("Deleted video", video_id=video_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------
    @app.post("/api/downloads", status_code=status.HTTP_202_ACCEPTED)
    async def enqueue_downloads(payload: DownloadRequest) -> Dict[str, Any]:
        if not payload.video_ids:
            raise HTTPException(status_code=400, detail="No videos selected")
        _require_binary(YTDLP)
        explicit_format = (payload.format or "").strip() or None
        job_ids = await queues.downloads.enqueue(payload.video_ids, explicit_format)
        _log_event("Queued downloads", requested=len(payload.video_ids), queued=len(job_ids))
        return {"job_ids": job_ids, "skipped": len(payload.video_ids) - len(job_ids)}

    @app.get("/api/downloads/status")
    async def download_status() -> Dict[str, Any]:
        return queues.downloads.get_status().to_dict()

    @app.delete("/api/downloads/{job_id}")
    async def cancel_download(job_id: str) -> Dict[str, Any]:
        return await _cancel(queues.downloads, job_id)

    # ------------------------------------------------------------------
    # Optimizations
    # ------------------------------------------------------------------
    @app.post("/api/optimizations", status_code=status.HTTP_202_ACCEPTED)
    async def enqueue_optimizations(payload: OptimizationRequest) -> Dict[str, Any]:
        if not payload.video_ids:
            raise HTTPException(status_code=400, detail="No videos selected")
        _require_binary(FFMPEG)
        job_ids = await queues.optimizations.enqueue(payload.video_ids, payload.target_resolution)
        _log_event(
            "Queued optimizations",
            requested=len(payload.video_ids),
            queued=len(job_ids),
            target_resolution=payload.target_resolution,
        )
        return {"job_ids": job_ids, "skipped": len(payload.video_ids) - len(job_ids)}

    @app.get("/api/optimizations/status")
    async def optimization_status() -> Dict[str, Any]:
        return queues.optimizations.get_status().to_dict()

    @app.get("/api/optimizations/estimate")
    async def optimization_estimate(
        video_id: str, target_resolution: TargetResolution = "original"
    ) -> Dict[str, Any]:
        record = _require_video(video_id)
        path = Path(record.download_file_path) if record.download_file_path else None
        if path is None or not path.is_file():
            raise HTTPException(status_code=404, detail="Video file not downloaded")
        current_size = path.stat().st_size
        estimated = estimate_optimized_size(current_size, target_resolution)
        return {
            "video_id": video_id,
            "target_resolution": target_resolution,
            "current_size": current_size,
            "estimated_size": estimated,
            "estimated_savings": current_size - estimated,
        }

    @app.delete("/api/optimizations/{job_id}")
    async def cancel_optimization(job_id: str) -> Dict[str, Any]:
        return await _cancel(queues.optimizations, job_id)

    # ------------------------------------------------------------------
    # Audio extraction
    # ------------------------------------------------------------------
    @app.post("/api/audio", status_code=status.HTTP_202_ACCEPTED)
    async def enqueue_audio(payload: AudioRequest) -> Dict[str, Any]:
        if not payload.video_ids:
            raise HTTPException(status_code=400, detail="No videos selected")
        _require_binary(FFMPEG)
        job_ids = await queues.audio.enqueue(
            payload.video_ids,
            payload.format,
            payload.quality,
            delete_original=payload.delete_original,
        )
        _log_event(
            "Queued audio extraction",
            requested=len(payload.video_ids),
            queued=len(job_ids),
            format=payload.format,
        )
        return {"job_ids": job_ids, "skipped": len(payload.video_ids) - len(job_ids)}

    @app.get("/api/audio/status")
    async def audio_status() -> Dict[str, Any]:
        return queues.audio.get_status().to_dict()

    @app.delete("/api/audio/{job_id}")
    async def cancel_audio(job_id: str) -> Dict[str, Any]:
        return await _cancel(queues.audio, job_id)

    # ------------------------------------------------------------------
    # Binaries and settings
    # ------------------------------------------------------------------
    @app.get("/api/binaries")
    async def binary_status() -> Dict[str, Any]:
        binaries = queues.locator.status()
        missing = [name for name, path in binaries.items() if path is None]
        return {"binaries": binaries, "missing": missing, "bin_root": str(queues.locator.bin_root)}

    @app.get("/api/settings")
    async def get_settings() -> Dict[str, Any]:
        return {"settings": asdict(settings_store.load()), "qualities": list(DOWNLOAD_QUALITIES)}

    @app.put("/api/settings")
    async def update_settings(payload: SettingsPayload) -> Dict[str, Any]:
        updates: Dict[str, Any] = payload.model_dump(exclude_none=True)
        settings: UserSettings = settings_store.update(**updates)
        _log_event("Updated settings", fields=sorted(updates))
        return {"settings": asdict(settings)}

    return app


__all__ = ["create_app"]
