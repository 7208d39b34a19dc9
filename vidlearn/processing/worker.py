"""Workers that own exactly one external yt-dlp or ffmpeg process each."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from pathlib import Path
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from ..services.events import emit_process_event
from ..services.jobs import BinaryUnavailableError, ErrorClass, Job, JobKind, WorkerOutcome
from ..services.naming import is_partial_artifact, is_unmerged_stream
from .binaries import FFMPEG, FFPROBE, YTDLP, BinaryLocator
from .formats import (
    build_audio_extraction_args,
    build_download_args,
    build_transcode_args,
    command_as_string,
)
from .probe import probe_duration
from .progress import (
    ProgressEvent,
    parse_destination,
    parse_download_progress,
    parse_selected_formats,
    parse_transcode_progress,
)


LOGGER = logging.getLogger(__name__)


ProgressSink = Callable[[str, ProgressEvent], Awaitable[object]]
WorkerFactory = Callable[[Job, ProgressSink], "ProcessWorker"]

_STREAM_LIMIT = 1024 * 1024
_ERROR_TAIL = 20


class ProcessWorker:
    """Run one external process and report its progress and outcome.

    Subclasses provide the command line, interpret output lines and decide
    what a zero exit code produced. The worker never decides job status.
    """

    binary_name = ""

    def __init__(self, job: Job, progress_sink: ProgressSink, locator: BinaryLocator) -> None:
        self._job = job
        self._progress_sink = progress_sink
        self._locator = locator
        self._process: Optional[asyncio.subprocess.Process] = None
        self._terminate_requested = False
        self._stderr_tail: Deque[str] = deque(maxlen=_ERROR_TAIL)

    @property
    def job(self) -> Job:
        return self._job

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    async def build_command(self) -> List[str]:
        raise NotImplementedError

    async def handle_line(self, line: str, stream: str) -> None:
        raise NotImplementedError

    def build_outcome(self, exit_code: int) -> WorkerOutcome:
        raise NotImplementedError

    def terminate(self) -> None:
        """Send SIGTERM to the process; a not yet started process is never launched."""

        self._terminate_requested = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        emit_process_event(
            "Terminate requested",
            context={"job_id": self._job.id, "binary": self.binary_name},
            payload={"pid": process.pid},
        )

    async def run(self) -> WorkerOutcome:
        job = self._job
        try:
            cmd = await self.build_command()
        except BinaryUnavailableError as exc:
            LOGGER.error("Cannot start %s for job %s: %s", self.binary_name, job.id, exc)
            return self._spawn_failure(str(exc))

        if self._terminate_requested:
            return WorkerOutcome(job_id=job.id, exit_code=None, error_message="Cancelled before start")

        LOGGER.info("Starting %s for job %s: %s", self.binary_name, job.id, command_as_string(cmd))
        started = time.perf_counter()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            LOGGER.error("Failed to spawn %s for job %s: %s", self.binary_name, job.id, exc)
            return self._spawn_failure(f"Failed to start {self.binary_name}: {exc}")

        process = self._process
        emit_process_event(
            "Spawned",
            context={"job_id": job.id, "binary": self.binary_name},
            payload={"pid": process.pid},
        )
        if self._terminate_requested:
            self.terminate()

        assert process.stdout is not None and process.stderr is not None
        await asyncio.gather(
            self._pump(process.stdout, "stdout"),
            self._pump(process.stderr, "stderr"),
        )
        exit_code = await process.wait()
        emit_process_event(
            "Exited",
            context={"job_id": job.id, "binary": self.binary_name},
            payload={"pid": process.pid, "exit_code": exit_code},
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return self.build_outcome(exit_code)

    async def _pump(self, stream: asyncio.StreamReader, name: str) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; skip what is buffered.
                LOGGER.debug("Discarding oversized %s line for job %s", name, self._job.id)
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            if name == "stderr":
                self._stderr_tail.append(line)
            await self.handle_line(line, name)

    async def _report(self, event: Optional[ProgressEvent]) -> None:
        if event is not None:
            await self._progress_sink(self._job.id, event)

    def _spawn_failure(self, message: str) -> WorkerOutcome:
        return WorkerOutcome(
            job_id=self._job.id,
            exit_code=None,
            error_message=message,
            error_class=ErrorClass.SPAWN_ERROR,
        )

    def _last_error_line(self) -> Optional[str]:
        for line in reversed(self._stderr_tail):
            if "ERROR" in line or "Error" in line:
                return line
        return self._stderr_tail[-1] if self._stderr_tail else None


class DownloadWorker(ProcessWorker):
    """yt-dlp process writing into the job's output template."""

    binary_name = YTDLP

    def __init__(self, job: Job, progress_sink: ProgressSink, locator: BinaryLocator) -> None:
        super().__init__(job, progress_sink, locator)
        self._announced_path: Optional[Path] = None

    @property
    def announced_path(self) -> Optional[Path]:
        return self._announced_path

    async def build_command(self) -> List[str]:
        ytdlp = self._locator.require(YTDLP)
        job = self._job
        return [
            str(ytdlp),
            *build_download_args(
                job.source,
                job.destination,
                job.format_selector or "best",
                ffmpeg_location=self._locator.locate(FFMPEG),
            ),
        ]

    async def handle_line(self, line: str, stream: str) -> None:
        if stream == "stderr":
            LOGGER.debug("yt-dlp[%s] %s", self._job.id, line)
            return

        event = parse_download_progress(line)
        if event is not None:
            await self._report(event)
            return

        destination = parse_destination(line)
        if destination:
            self._announced_path = Path(destination)
            LOGGER.debug("Job %s destination announced: %s", self._job.id, destination)
            return

        formats = parse_selected_formats(line)
        if formats:
            LOGGER.info("Job %s selected format(s) %s", self._job.id, "+".join(formats))
            if len(formats) > 1 and self._locator.locate(FFMPEG) is None:
                LOGGER.warning(
                    "Job %s needs merging but ffmpeg is unavailable; streams stay separate",
                    self._job.id,
                )
        elif line.startswith("[Merger]"):
            LOGGER.info("Job %s %s", self._job.id, line)

    def build_outcome(self, exit_code: int) -> WorkerOutcome:
        job = self._job
        if exit_code != 0:
            message = f"yt-dlp exited with code {exit_code}"
            detail = self._last_error_line()
            if detail:
                message = f"{message}: {detail}"
            return WorkerOutcome(
                job_id=job.id,
                exit_code=exit_code,
                error_message=message,
                error_class=ErrorClass.PROCESS_ERROR,
            )
        return WorkerOutcome(job_id=job.id, exit_code=0, output_path=self.find_output())

    def find_output(self) -> Optional[Path]:
        """Return the announced file, else the best ``[video_id]`` match on disk."""

        if self._announced_path is not None and self._announced_path.exists():
            return self._announced_path

        directory = Path(self._job.destination).parent
        marker = f"[{self._job.video_id}]"
        if not directory.is_dir():
            return None
        matches = sorted(
            path
            for path in directory.iterdir()
            if path.is_file() and marker in path.name and not is_partial_artifact(path)
        )
        if not matches:
            return None
        merged = [path for path in matches if not is_unmerged_stream(path)]
        return (merged or matches)[0]


class TranscodeWorker(ProcessWorker):
    """ffmpeg process re-encoding the job's source into its temp path."""

    binary_name = FFMPEG

    async def build_command(self) -> List[str]:
        ffmpeg = self._locator.require(FFMPEG)
        job = self._job
        if not job.duration_seconds:
            job.duration_seconds = await probe_duration(
                Path(job.source), self._locator.locate(FFPROBE)
            )
            if not job.duration_seconds:
                LOGGER.warning("Duration of %s unknown; progress will not be reported", job.source)
        assert job.temp_path is not None
        return [str(ffmpeg), *self.ffmpeg_arguments(Path(job.source), Path(job.temp_path))]

    def ffmpeg_arguments(self, source: Path, output: Path) -> List[str]:
        return build_transcode_args(source, output, self._job.target_resolution or "original")

    async def handle_line(self, line: str, stream: str) -> None:
        if stream == "stderr":
            LOGGER.debug("ffmpeg[%s] %s", self._job.id, line)
            return
        await self._report(parse_transcode_progress(line, self._job.duration_seconds))

    def build_outcome(self, exit_code: int) -> WorkerOutcome:
        job = self._job
        if exit_code != 0:
            return WorkerOutcome(
                job_id=job.id,
                exit_code=exit_code,
                error_message=f"FFmpeg exited with code {exit_code}",
                error_class=ErrorClass.PROCESS_ERROR,
            )
        assert job.temp_path is not None
        return WorkerOutcome(job_id=job.id, exit_code=0, output_path=Path(job.temp_path))


class AudioExtractionWorker(TranscodeWorker):
    """ffmpeg process writing only the audio stream of the job's source."""

    def ffmpeg_arguments(self, source: Path, output: Path) -> List[str]:
        job = self._job
        return build_audio_extraction_args(
            source, output, job.audio_format or "mp3", job.audio_quality or "medium"
        )


_WORKER_CLASSES = {
    JobKind.DOWNLOAD: DownloadWorker,
    JobKind.OPTIMIZATION: TranscodeWorker,
    JobKind.AUDIO: AudioExtractionWorker,
}


def default_worker_factory(kind: JobKind, locator: BinaryLocator) -> WorkerFactory:
    worker_class = _WORKER_CLASSES[kind]

    def factory(job: Job, progress_sink: ProgressSink) -> ProcessWorker:
        return worker_class(job, progress_sink, locator)

    return factory


class WorkerPool:
    """At most one live :class:`ProcessWorker` per job id."""

    def __init__(self, factory: WorkerFactory) -> None:
        self._factory = factory
        self._workers: Dict[str, ProcessWorker] = {}
        self._tasks: Dict[str, "asyncio.Task[WorkerOutcome]"] = {}

    def spawn(self, job: Job, progress_sink: ProgressSink) -> Optional["asyncio.Task[WorkerOutcome]"]:
        """Start a worker for *job* and return the task resolving to its outcome."""

        if job.id in self._workers:
            LOGGER.warning("Worker for job %s already running; ignoring duplicate spawn", job.id)
            return None
        worker = self._factory(job, progress_sink)
        task = asyncio.get_running_loop().create_task(worker.run(), name=f"worker-{job.id}")
        self._workers[job.id] = worker
        self._tasks[job.id] = task
        task.add_done_callback(lambda _task, job_id=job.id: self._forget(job_id))
        return task

    def _forget(self, job_id: str) -> None:
        self._workers.pop(job_id, None)
        self._tasks.pop(job_id, None)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._workers

    def running_job_ids(self) -> List[str]:
        return list(self._workers)

    def kill(self, job_id: str) -> bool:
        worker = self._workers.get(job_id)
        if worker is None:
            return False
        worker.terminate()
        return True

    async def shutdown(self) -> None:
        """Terminate every owned process and wait for the workers to finish."""

        tasks = list(self._tasks.values())
        for worker in list(self._workers.values()):
            worker.terminate()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "AudioExtractionWorker",
    "DownloadWorker",
    "ProcessWorker",
    "ProgressSink",
    "TranscodeWorker",
    "WorkerFactory",
    "WorkerPool",
    "default_worker_factory",
]
