"""Download, optimization and audio queues scheduling external process workers."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import os
import sqlite3
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Sequence

from ..config import AppConfig
from ..processing.binaries import BinaryLocator
from ..processing.formats import (
    AUDIO_FORMATS,
    AUDIO_QUALITIES,
    TARGET_RESOLUTIONS,
    build_format_selector,
    quality_ceilings,
)
from ..processing.progress import MAX_RUNNING_PROGRESS, ProgressEvent
from ..processing.worker import WorkerPool, default_worker_factory
from .events import emit_file_event, emit_task_event
from .jobs import (
    ErrorClass,
    Job,
    JobKind,
    JobNotFoundError,
    JobStatus,
    QueueError,
    QueueSnapshot,
    QueueStats,
    WorkerOutcome,
    new_job_id,
)
from .naming import (
    audio_path_for,
    build_output_template,
    extracting_path_for,
    is_partial_artifact,
    is_unmerged_stream,
    optimizing_path_for,
)
from .replacement import EmptyOutputError, ReplacementError, replace_atomically
from .settings import SettingsStore, UserSettings
from .storage import VideoRecord, VideoRepository


LOGGER = logging.getLogger(__name__)


CompletionHook = Callable[[Job], Awaitable[None]]

AUTO_OPTIMIZE_RESOLUTIONS = {
    "360p": "480p",
    "480p": "480p",
    "720p": "720p",
    "1080p": "720p",
}


class QueueManager:
    """Scheduling authority for the jobs of one kind.

    Queued and active jobs live in one insertion-ordered map; finished jobs are
    moved into bounded completed/failed rings (most recent first). All state
    changes happen on the event loop that runs the scheduler.
    """

    kind: JobKind
    active_label = "active"
    finalize_error_class = ErrorClass.PROCESS_ERROR

    def __init__(
        self,
        repository: VideoRepository,
        worker_pool: WorkerPool,
        *,
        max_concurrent: int = 1,
        poll_interval: float = 2.0,
        progress_interval: float = 0.5,
        history_limit: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._pool = worker_pool
        self._max_concurrent = max(1, int(max_concurrent))
        self._poll_interval = poll_interval
        self._progress_interval = progress_interval
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._completed: Deque[Job] = deque(maxlen=history_limit)
        self._failed: Deque[Job] = deque(maxlen=history_limit)
        self._cancelled: Dict[str, Job] = {}
        self._last_persisted: Dict[str, float] = {}
        self._watchers: Dict[str, "asyncio.Task[None]"] = {}
        self._completion_hooks: List[CompletionHook] = []
        self._scheduler: Optional["asyncio.Task[None]"] = None
        self._lock = asyncio.Lock()
        self._space_saved = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def add_completion_hook(self, hook: CompletionHook) -> None:
        self._completion_hooks.append(hook)

    # ------------------------------------------------------------------
    # Hooks for the concrete queues
    # ------------------------------------------------------------------
    def _accept(self, job: Job, record: VideoRecord) -> Optional[str]:
        """Fill in *job* from its catalog *record*; return a rejection reason or ``None``."""

        raise NotImplementedError

    def _mirror_status(self, record: VideoRecord) -> Optional[str]:
        raise NotImplementedError

    def _write_mirror(self, video_id: str, **fields: Any) -> None:
        raise NotImplementedError

    async def _complete(self, job: Job, output_path: Optional[Path]) -> Dict[str, Any]:
        """Validate the output of *job* and return extra mirror fields."""

        raise NotImplementedError

    def _queued_fields(self, job: Job) -> Dict[str, Any]:
        return {}

    def _discard_artifacts(self, job: Job) -> None:
        """Delete temporary files belonging to an unfinished *job*."""

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------
    async def add_to_queue(self, candidates: Iterable[Job]) -> List[str]:
        """Record valid candidates as queued jobs and start the scheduler."""

        added: List[str] = []
        async with self._lock:
            for job in candidates:
                reason = self._validate(job)
                if reason is not None:
                    LOGGER.warning("Skipping %s job for %s: %s", self.kind.value, job.video_id, reason)
                    continue
                job.status = JobStatus.QUEUED
                job.progress = 0
                self._jobs[job.id] = job
                self._persist(
                    job.video_id,
                    status=JobStatus.QUEUED,
                    progress=0,
                    error_message=None,
                    error_type=None,
                    **self._queued_fields(job),
                )
                emit_task_event(
                    "queued",
                    f"Queued {self.kind.value} job",
                    context={"job_id": job.id, "video_id": job.video_id},
                )
                added.append(job.id)
        if added:
            self.start()
        return added

    def _validate(self, job: Job) -> Optional[str]:
        if any(existing.video_id == job.video_id for existing in self._jobs.values()):
            return "already queued or active"
        record = self._repository.get_video(job.video_id)
        if record is None:
            return "video not found in catalog"
        if self._mirror_status(record) in ("queued", self.active_label):
            return "already queued or active"
        return self._accept(job, record)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start the periodic scheduler on the running loop if it is idle."""

        if self._scheduler is not None and not self._scheduler.done():
            return
        self._scheduler = asyncio.get_running_loop().create_task(
            self._run_scheduler(), name=f"{self.kind.value}-scheduler"
        )

    async def stop(self) -> None:
        scheduler = self._scheduler
        self._scheduler = None
        if scheduler is None or scheduler.done():
            return
        scheduler.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler

    def is_processing(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    async def _run_scheduler(self) -> None:
        LOGGER.debug("%s scheduler started", self.kind.value)
        while True:
            await self.tick()
            if not self._jobs:
                break
            await asyncio.sleep(self._poll_interval)
        LOGGER.debug("%s scheduler idle", self.kind.value)

    async def tick(self) -> List[str]:
        """Promote queued jobs FIFO into free worker slots; return the started ids."""

        started: List[str] = []
        async with self._lock:
            active = sum(1 for job in self._jobs.values() if job.status is JobStatus.ACTIVE)
            slots = self._max_concurrent - active
            if slots <= 0:
                return started
            queued = [job for job in self._jobs.values() if job.status is JobStatus.QUEUED][:slots]
            for job in queued:
                try:
                    self._start_job(job)
                except Exception as exc:
                    LOGGER.exception("Failed to start %s job %s", self.kind.value, job.id)
                    self._fail(job, f"Failed to start: {exc}", ErrorClass.SPAWN_ERROR)
                else:
                    started.append(job.id)
        return started

    def _start_job(self, job: Job) -> None:
        job.status = JobStatus.ACTIVE
        job.progress = 0
        job.started_at = time.time()
        self._persist(job.video_id, status=JobStatus.ACTIVE, progress=0)
        task = self._pool.spawn(job, self.update_progress)
        if task is None:
            raise QueueError(f"A worker for job {job.id} is already running")
        self._watchers[job.id] = asyncio.get_running_loop().create_task(
            self._watch(job.id, task), name=f"watch-{job.id}"
        )
        emit_task_event(
            "started",
            f"Started {self.kind.value} job",
            context={"job_id": job.id, "video_id": job.video_id},
        )

    async def _watch(self, job_id: str, task: "asyncio.Task[WorkerOutcome]") -> None:
        try:
            outcome = await task
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Worker for job %s crashed", job_id)
            outcome = WorkerOutcome(
                job_id=job_id,
                exit_code=None,
                error_message=f"Worker crashed: {exc}",
                error_class=ErrorClass.SPAWN_ERROR,
            )
        finally:
            self._watchers.pop(job_id, None)
        try:
            await self._handle_outcome(outcome)
        except Exception as exc:
            LOGGER.exception("Finalising %s job %s failed", self.kind.value, job_id)
            job = self._jobs.get(job_id)
            if job is not None and job.status is JobStatus.ACTIVE:
                await self.mark_failed(job_id, f"Finalising failed: {exc}", self.finalize_error_class)

    async def _handle_outcome(self, outcome: WorkerOutcome) -> None:
        cancelled = self._cancelled.pop(outcome.job_id, None)
        if cancelled is not None:
            # The process has exited; remove whatever it wrote after the cancel.
            self._discard_artifacts(cancelled)
            return
        job = self._jobs.get(outcome.job_id)
        if job is None or job.status is not JobStatus.ACTIVE:
            return
        if outcome.succeeded:
            await self.mark_completed(job.id, outcome.output_path)
        else:
            await self.mark_failed(
                job.id,
                outcome.error_message or "Process ended unexpectedly",
                outcome.error_class or ErrorClass.PROCESS_ERROR,
            )

    # ------------------------------------------------------------------
    # Progress and finalisation
    # ------------------------------------------------------------------
    async def update_progress(self, job_id: str, event: ProgressEvent) -> bool:
        """Apply *event* to an active job; the mirror write is throttled per job."""

        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.ACTIVE:
            return False
        job.progress = min(max(job.progress, int(event.progress)), MAX_RUNNING_PROGRESS)
        for name in ("total_size", "downloaded_size", "speed", "eta"):
            value = getattr(event, name)
            if value is not None:
                setattr(job, name, value)

        now = self._clock()
        last = self._last_persisted.get(job_id)
        if last is not None and now - last < self._progress_interval:
            return True
        self._last_persisted[job_id] = now
        self._persist(job.video_id, progress=job.progress)
        return True

    async def mark_completed(self, job_id: str, output_path: Optional[Path]) -> Job:
        async with self._lock:
            job = self._require(job_id)
            try:
                extra = await self._complete(job, output_path)
            except EmptyOutputError as exc:
                self._fail(job, str(exc), ErrorClass.EMPTY_OUTPUT)
                return job
            except ReplacementError as exc:
                self._fail(job, str(exc), ErrorClass.REPLACE_ERROR)
                return job
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.completed_at = time.time()
            self._retire(job, self._completed)
            self._persist(
                job.video_id,
                status=JobStatus.COMPLETED,
                progress=100,
                error_message=None,
                error_type=None,
                **extra,
            )
            emit_task_event(
                "completed",
                f"Completed {self.kind.value} job",
                context={"job_id": job.id, "video_id": job.video_id},
                payload={"final_size": job.final_size},
                duration_ms=self._elapsed_ms(job),
            )
        await self._notify_completed(job)
        return job

    async def mark_failed(self, job_id: str, message: str, error_class: ErrorClass) -> Job:
        async with self._lock:
            job = self._require(job_id)
            self._fail(job, message, error_class)
            return job

    def _fail(self, job: Job, message: str, error_class: ErrorClass) -> None:
        job.status = JobStatus.FAILED
        job.error_message = message
        job.error_class = error_class
        job.completed_at = time.time()
        self._retire(job, self._failed)
        self._discard_artifacts(job)
        self._persist(
            job.video_id,
            status=JobStatus.FAILED,
            error_message=message,
            error_type=error_class.value,
        )
        emit_task_event(
            "failed",
            f"{self.kind.value.capitalize()} job failed: {message}",
            context={"job_id": job.id, "video_id": job.video_id},
            payload={"error_class": error_class},
            duration_ms=self._elapsed_ms(job),
            level=logging.WARNING,
        )

    async def cancel(self, job_id: str) -> Job:
        """Cancel a queued or active job; active processes receive SIGTERM."""

        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            was_active = job.status is JobStatus.ACTIVE
            job.status = JobStatus.CANCELLED
            job.completed_at = time.time()
            self._jobs.pop(job_id)
            self._last_persisted.pop(job_id, None)
            if was_active:
                self._cancelled[job_id] = job
                if not self._pool.kill(job_id):
                    self._cancelled.pop(job_id, None)
                self._discard_artifacts(job)
            self._persist(job.video_id, status=JobStatus.CANCELLED)
            emit_task_event(
                "cancelled",
                f"Cancelled {self.kind.value} job",
                context={"job_id": job.id, "video_id": job.video_id},
                payload={"was_active": was_active},
            )
            return job

    async def shutdown(self) -> None:
        """Stop scheduling and kill every owned process."""

        await self.stop()
        watchers = list(self._watchers.values())
        for watcher in watchers:
            watcher.cancel()
        await self._pool.shutdown()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
        async with self._lock:
            for job in [job for job in self._jobs.values() if job.status is JobStatus.ACTIVE]:
                self._fail(job, "Interrupted by application shutdown", ErrorClass.PROCESS_ERROR)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None:
            job = next(
                (item for item in (*self._completed, *self._failed) if item.id == job_id), None
            )
        return dataclasses.replace(job) if job is not None else None

    def get_status(self) -> QueueSnapshot:
        queued = [dataclasses.replace(job) for job in self._jobs.values() if job.status is JobStatus.QUEUED]
        active = [dataclasses.replace(job) for job in self._jobs.values() if job.status is JobStatus.ACTIVE]
        average = int(sum(job.progress for job in active) / len(active) + 0.5) if active else 0
        stats = QueueStats(
            total_queued=len(queued),
            total_active=len(active),
            total_completed=len(self._completed),
            total_failed=len(self._failed),
            average_progress=average,
            total_space_saved=self._space_saved,
        )
        return QueueSnapshot(
            queued=queued,
            active=active,
            completed=[dataclasses.replace(job) for job in self._completed],
            failed=[dataclasses.replace(job) for job in self._failed],
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _retire(self, job: Job, ring: Deque[Job]) -> None:
        self._jobs.pop(job.id, None)
        self._last_persisted.pop(job.id, None)
        ring.appendleft(job)

    def _persist(self, video_id: str, *, status: Optional[JobStatus] = None, **fields: Any) -> None:
        if status is not None:
            fields["status"] = self.active_label if status is JobStatus.ACTIVE else status.value
        try:
            self._write_mirror(video_id, **fields)
        except sqlite3.Error as exc:
            LOGGER.warning("Could not update %s state of %s: %s", self.kind.value, video_id, exc)

    async def _notify_completed(self, job: Job) -> None:
        for hook in self._completion_hooks:
            try:
                await hook(job)
            except Exception:
                LOGGER.exception("Completion hook failed for job %s", job.id)

    @staticmethod
    def _elapsed_ms(job: Job) -> Optional[float]:
        if job.started_at is None or job.completed_at is None:
            return None
        return (job.completed_at - job.started_at) * 1000.0


def _attach_downloaded_source(job: Job, record: VideoRecord) -> Optional[str]:
    """Point *job* at the downloaded file of *record*; return a rejection reason or ``None``."""

    if not record.download_file_path:
        return "video has not been downloaded"
    source = Path(record.download_file_path)
    if not source.is_file():
        return f"source file missing: {source}"
    job.source = str(source)
    job.title = record.title
    job.original_size = source.stat().st_size
    job.duration_seconds = record.duration_seconds
    return None


def _remove_temp_output(job: Job) -> None:
    if not job.temp_path:
        return
    temp = Path(job.temp_path)
    if not temp.exists():
        return
    try:
        temp.unlink()
    except OSError as exc:
        LOGGER.warning("Could not remove temporary output %s: %s", temp, exc)
    else:
        emit_file_event("Removed temporary output", payload={"path": temp})


class DownloadQueue(QueueManager):
    """Queue of yt-dlp downloads into the downloads directory."""

    kind = JobKind.DOWNLOAD
    active_label = "downloading"

    def __init__(
        self,
        repository: VideoRepository,
        worker_pool: WorkerPool,
        *,
        downloads_root: Path,
        settings_store: Optional[SettingsStore] = None,
        on_completed: Optional[CompletionHook] = None,
        **options: Any,
    ) -> None:
        options.setdefault("max_concurrent", 2)
        super().__init__(repository, worker_pool, **options)
        self._downloads_root = downloads_root
        self._settings_store = settings_store
        if on_completed is not None:
            self.add_completion_hook(on_completed)

    def _settings(self) -> UserSettings:
        return self._settings_store.load() if self._settings_store is not None else UserSettings()

    async def enqueue(self, video_ids: Sequence[str], explicit_format: Optional[str] = None) -> List[str]:
        selector = explicit_format or build_format_selector(
            quality_ceilings(self._settings().download_quality)
        )
        candidates = [
            Job(
                id=new_job_id(self.kind),
                video_id=video_id,
                kind=self.kind,
                source="",
                destination=build_output_template(self._downloads_root, video_id),
                format_selector=selector,
            )
            for video_id in video_ids
        ]
        return await self.add_to_queue(candidates)

    def _accept(self, job: Job, record: VideoRecord) -> Optional[str]:
        if not record.url:
            return "video has no source URL"
        job.source = record.url
        job.title = record.title
        job.duration_seconds = record.duration_seconds
        return None

    def _mirror_status(self, record: VideoRecord) -> Optional[str]:
        return record.download_status

    def _write_mirror(self, video_id: str, **fields: Any) -> None:
        self._repository.update_download_state(video_id, **fields)

    def _queued_fields(self, job: Job) -> Dict[str, Any]:
        return {"download_format": job.format_selector}

    async def _complete(self, job: Job, output_path: Optional[Path]) -> Dict[str, Any]:
        if output_path is None or not output_path.exists():
            raise EmptyOutputError("Output file not created")
        size = output_path.stat().st_size
        if size == 0:
            raise EmptyOutputError("Output file is empty")
        job.destination = str(output_path)
        job.final_size = size
        return {
            "file_path": str(output_path),
            "file_size": size,
            "downloaded_at": int(time.time()),
        }

    def _discard_artifacts(self, job: Job) -> None:
        directory = Path(job.destination).parent
        marker = f"[{job.video_id}]"
        if not directory.is_dir():
            return
        for path in directory.iterdir():
            if marker in path.name and is_partial_artifact(path):
                try:
                    path.unlink()
                except OSError as exc:
                    LOGGER.warning("Could not remove partial download %s: %s", path, exc)
                else:
                    emit_file_event("Removed partial download", payload={"path": path})


class OptimizationQueue(QueueManager):
    """Queue of ffmpeg re-encodes that replace downloaded files in place."""

    kind = JobKind.OPTIMIZATION
    active_label = "optimizing"
    finalize_error_class = ErrorClass.REPLACE_ERROR

    async def enqueue(self, video_ids: Sequence[str], target_resolution: str = "original") -> List[str]:
        if target_resolution not in TARGET_RESOLUTIONS:
            raise ValueError(f"Unsupported target resolution: {target_resolution}")
        candidates = [
            Job(
                id=new_job_id(self.kind),
                video_id=video_id,
                kind=self.kind,
                source="",
                destination="",
                target_resolution=target_resolution,
            )
            for video_id in video_ids
        ]
        return await self.add_to_queue(candidates)

    def _accept(self, job: Job, record: VideoRecord) -> Optional[str]:
        reason = _attach_downloaded_source(job, record)
        if reason is not None:
            return reason
        source = Path(job.source)
        job.destination = str(source)
        job.temp_path = str(optimizing_path_for(source))
        return None

    def _mirror_status(self, record: VideoRecord) -> Optional[str]:
        return record.optimization_status

    def _write_mirror(self, video_id: str, **fields: Any) -> None:
        self._repository.update_optimization_state(video_id, **fields)

    async def _complete(self, job: Job, output_path: Optional[Path]) -> Dict[str, Any]:
        temp = output_path or Path(job.temp_path or "")
        # Copy-based backups of large files must not stall the event loop.
        new_size = await asyncio.to_thread(replace_atomically, Path(job.destination), temp)
        job.final_size = new_size
        if job.original_size is not None:
            self._space_saved += max(job.original_size - new_size, 0)
        return {
            "original_file_size": job.original_size,
            "file_size": new_size,
            "optimized_at": int(time.time()),
        }

    def _discard_artifacts(self, job: Job) -> None:
        _remove_temp_output(job)


class AudioQueue(QueueManager):
    """Queue of ffmpeg audio extractions written beside the downloaded video.

    Audio jobs are tracked in memory only; the catalog is touched when the
    video file is deleted after a successful extraction.
    """

    kind = JobKind.AUDIO
    active_label = "converting"
    finalize_error_class = ErrorClass.PROCESS_ERROR

    async def enqueue(
        self,
        video_ids: Sequence[str],
        audio_format: str = "mp3",
        quality: str = "medium",
        *,
        delete_original: bool = False,
    ) -> List[str]:
        if audio_format not in AUDIO_FORMATS:
            raise ValueError(f"Unsupported audio format: {audio_format}")
        if quality not in AUDIO_QUALITIES:
            raise ValueError(f"Unsupported audio quality: {quality}")
        candidates = [
            Job(
                id=new_job_id(self.kind),
                video_id=video_id,
                kind=self.kind,
                source="",
                destination="",
                audio_format=audio_format,
                audio_quality=quality,
                delete_original=delete_original,
            )
            for video_id in video_ids
        ]
        return await self.add_to_queue(candidates)

    def _accept(self, job: Job, record: VideoRecord) -> Optional[str]:
        reason = _attach_downloaded_source(job, record)
        if reason is not None:
            return reason
        source = Path(job.source)
        assert job.audio_format is not None
        target = audio_path_for(source, job.audio_format)
        if target == source:
            return f"source is already {job.audio_format} audio"
        job.destination = str(target)
        job.temp_path = str(extracting_path_for(source, job.audio_format))
        return None

    def _mirror_status(self, record: VideoRecord) -> Optional[str]:
        return None

    def _write_mirror(self, video_id: str, **fields: Any) -> None:
        if "file_path" in fields:
            self._repository.update_download_state(
                video_id, file_path=fields["file_path"], file_size=fields["file_size"]
            )

    async def _complete(self, job: Job, output_path: Optional[Path]) -> Dict[str, Any]:
        temp = output_path or Path(job.temp_path or "")
        if not temp.exists():
            raise EmptyOutputError("Output file not created")
        size = temp.stat().st_size
        if size == 0:
            raise EmptyOutputError("Output file is empty")
        target = Path(job.destination)
        try:
            os.replace(temp, target)
        except OSError as exc:
            raise ReplacementError(f"Could not move audio into {target.name}: {exc}") from exc
        job.final_size = size
        emit_file_event("Extracted audio", payload={"path": target, "size": size})
        if not job.delete_original:
            return {}

        source = Path(job.source)
        try:
            source.unlink()
        except OSError as exc:
            LOGGER.warning("Could not delete original video %s: %s", source, exc)
            return {}
        emit_file_event("Deleted original video", payload={"path": source})
        if job.original_size is not None:
            self._space_saved += max(job.original_size - size, 0)
        return {"file_path": str(target), "file_size": size}

    def _discard_artifacts(self, job: Job) -> None:
        _remove_temp_output(job)


def make_auto_optimize_hook(
    optimizations: OptimizationQueue, settings_store: SettingsStore
) -> CompletionHook:
    """Return a hook that queues large merged downloads for optimization."""

    async def auto_optimize(job: Job) -> None:
        settings = settings_store.load()
        if not settings.auto_optimize:
            return
        threshold = int(settings.auto_optimize_threshold_mb) * 1024 * 1024
        if job.final_size is None or job.final_size <= threshold:
            return
        if is_unmerged_stream(job.destination):
            LOGGER.info("Not optimizing unmerged stream %s", job.destination)
            return
        resolution = AUTO_OPTIMIZE_RESOLUTIONS.get(settings.download_quality, "480p")
        LOGGER.info(
            "Auto-optimizing %s (%s bytes) to %s", job.video_id, job.final_size, resolution
        )
        await optimizations.enqueue([job.video_id], resolution)

    return auto_optimize


@dataclass
class QueueSet:
    """The queues built by :func:`build_queues` plus their shared locator."""

    downloads: DownloadQueue
    optimizations: OptimizationQueue
    audio: AudioQueue
    locator: BinaryLocator

    async def shutdown(self) -> None:
        await self.downloads.shutdown()
        await self.optimizations.shutdown()
        await self.audio.shutdown()


def build_queues(
    config: AppConfig,
    repository: VideoRepository,
    settings_store: SettingsStore,
    *,
    locator: Optional[BinaryLocator] = None,
    download_pool: Optional[WorkerPool] = None,
    optimization_pool: Optional[WorkerPool] = None,
    audio_pool: Optional[WorkerPool] = None,
) -> QueueSet:
    """Construct the queues and wire download completion to auto-optimization."""

    locator = locator or BinaryLocator(config.bin_root)
    queue_settings = config.queue
    common = {
        "poll_interval": queue_settings.poll_interval,
        "progress_interval": queue_settings.progress_interval,
        "history_limit": queue_settings.history_limit,
    }
    optimizations = OptimizationQueue(
        repository,
        optimization_pool or WorkerPool(default_worker_factory(JobKind.OPTIMIZATION, locator)),
        max_concurrent=queue_settings.optimization_max_concurrent,
        **common,
    )
    downloads = DownloadQueue(
        repository,
        download_pool or WorkerPool(default_worker_factory(JobKind.DOWNLOAD, locator)),
        downloads_root=config.downloads_root,
        settings_store=settings_store,
        on_completed=make_auto_optimize_hook(optimizations, settings_store),
        max_concurrent=queue_settings.download_max_concurrent,
        **common,
    )
    audio = AudioQueue(
        repository,
        audio_pool or WorkerPool(default_worker_factory(JobKind.AUDIO, locator)),
        max_concurrent=queue_settings.audio_max_concurrent,
        **common,
    )
    return QueueSet(downloads=downloads, optimizations=optimizations, audio=audio, locator=locator)


__all__ = [
    "AUTO_OPTIMIZE_RESOLUTIONS",
    "AudioQueue",
    "DownloadQueue",
    "OptimizationQueue",
    "QueueManager",
    "QueueSet",
    "build_queues",
    "make_auto_optimize_hook",
]
