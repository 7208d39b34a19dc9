"""Entry-point for the VidLearn application."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from vidlearn.bootstrap import initialize_app
from vidlearn.config import AppConfig
from vidlearn.logging_utils import (
    build_handlers,
    configure_logging,
    get_log_file_path,
    quiet_subprocess_loggers,
)
from vidlearn.processing.formats import AUDIO_FORMATS, AUDIO_QUALITIES, TARGET_RESOLUTIONS
from vidlearn.services.events import emit_db_event
from vidlearn.services.jobs import QueueSnapshot
from vidlearn.services.naming import derive_video_id
from vidlearn.services.queue import QueueManager, build_queues
from vidlearn.services.settings import SettingsStore
from vidlearn.services.storage import VideoRecord, VideoRepository
from vidlearn.web import create_app


LOGGER = logging.getLogger("vidlearn.cli")


cli = typer.Typer(add_completion=False, help="VidLearn management commands")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
POLL_SECONDS = 1.0

_PENDING_STATUSES = {"queued", "downloading", "optimizing"}


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_handlers(storage_root))
    LOGGER.debug("Logging to %s", get_log_file_path(storage_root))


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _open_repository(config: AppConfig) -> VideoRepository:
    repository = VideoRepository(config)
    repository.configure_event_emitter(emit_db_event)
    return repository


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="VIDLEARN_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI server that owns the job queues."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)
    quiet_subprocess_loggers()

    repository = _open_repository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    server.run()


@cli.command()
def add(
    url: str = typer.Argument(..., help="Source URL of the video"),
    video_id: Optional[str] = typer.Option(None, help="Identifier to store the video under"),
    title: str = typer.Option("", help="Display title"),
) -> None:
    """Register a video in the catalog."""

    config = initialize_app(reconcile_jobs=False)
    _prepare_logging(config.storage_root)

    repository = _open_repository(config)
    resolved_id = (video_id or "").strip() or derive_video_id(url)
    try:
        repository.add_video(resolved_id, url.strip(), title.strip())
    except sqlite3.IntegrityError as error:
        raise typer.BadParameter(f"Video '{resolved_id}' already exists") from error
    typer.echo(f"Added video {resolved_id}")


def _format_snapshot(label: str, snapshot: QueueSnapshot) -> List[str]:
    lines = [
        f"{label}: {snapshot.stats.total_active} active, {snapshot.stats.total_queued} queued, "
        f"{snapshot.stats.total_completed} completed, {snapshot.stats.total_failed} failed"
    ]
    for job in snapshot.active:
        details = " ".join(
            part
            for part in (
                f"of {job.total_size}" if job.total_size else "",
                f"at {job.speed}" if job.speed else "",
                f"ETA {job.eta}" if job.eta else "",
            )
            if part
        )
        lines.append(f"  {job.video_id}: {job.progress}% {details}".rstrip())
    return lines


async def _run_until_idle(queue: QueueManager, label: str) -> QueueSnapshot:
    try:
        while queue.is_processing():
            for line in _format_snapshot(label, queue.get_status()):
                typer.echo(line)
            await asyncio.sleep(POLL_SECONDS)
    finally:
        await queue.shutdown()
    return queue.get_status()


def _report_results(snapshot: QueueSnapshot, job_ids: List[str]) -> None:
    failures = 0
    for job in snapshot.completed:
        if job.id in job_ids:
            typer.echo(f"Completed {job.video_id}: {job.destination}")
    for job in snapshot.failed:
        if job.id in job_ids:
            failures += 1
            typer.echo(f"Failed {job.video_id}: {job.error_message}")
    if failures:
        raise typer.Exit(code=1)


@cli.command()
def download(
    video_ids: List[str] = typer.Argument(..., help="Catalog ids of the videos to download"),
    format_selector: Optional[str] = typer.Option(
        None, "--format", "-f", help="Explicit yt-dlp format selector"
    ),
) -> None:
    """Download videos in this process, reporting progress every second."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = _open_repository(config)
    queues = build_queues(config, repository, SettingsStore(config))

    async def _run() -> QueueSnapshot:
        job_ids = await queues.downloads.enqueue(video_ids, format_selector)
        if not job_ids:
            raise typer.BadParameter("No downloadable videos were queued; see the log for details")
        snapshot = await _run_until_idle(queues.downloads, "downloads")
        if queues.optimizations.is_processing():
            typer.echo("Waiting for automatic optimizations")
            await _run_until_idle(queues.optimizations, "optimizations")
        _report_results(snapshot, job_ids)
        return snapshot

    asyncio.run(_run())


@cli.command()
def optimize(
    video_ids: List[str] = typer.Argument(..., help="Catalog ids of downloaded videos"),
    resolution: str = typer.Option("original", help="Target resolution"),
) -> None:
    """Re-encode downloaded videos in place, reporting progress every second."""

    if resolution not in TARGET_RESOLUTIONS:
        raise typer.BadParameter(f"Resolution must be one of: {', '.join(TARGET_RESOLUTIONS)}")

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = _open_repository(config)
    queues = build_queues(config, repository, SettingsStore(config))

    async def _run() -> QueueSnapshot:
        job_ids = await queues.optimizations.enqueue(video_ids, resolution)
        if not job_ids:
            raise typer.BadParameter("No videos were queued for optimization; see the log for details")
        snapshot = await _run_until_idle(queues.optimizations, "optimizations")
        _report_results(snapshot, job_ids)
        return snapshot

    asyncio.run(_run())


@cli.command("extract-audio")
def extract_audio(
    video_ids: List[str] = typer.Argument(..., help="Catalog ids of downloaded videos"),
    audio_format: str = typer.Option("mp3", "--format", help="Audio container: mp3, m4a or opus"),
    quality: str = typer.Option("medium", help="Audio quality: high, medium or low"),
    delete_original: bool = typer.Option(
        False, "--delete-original", help="Delete the video file once the audio is written"
    ),
) -> None:
    """Write the audio track of downloaded videos next to them."""

    if audio_format not in AUDIO_FORMATS:
        raise typer.BadParameter(f"Format must be one of: {', '.join(AUDIO_FORMATS)}")
    if quality not in AUDIO_QUALITIES:
        raise typer.BadParameter(f"Quality must be one of: {', '.join(AUDIO_QUALITIES)}")

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = _open_repository(config)
    queues = build_queues(config, repository, SettingsStore(config))

    async def _run() -> QueueSnapshot:
        job_ids = await queues.audio.enqueue(
            video_ids, audio_format, quality, delete_original=delete_original
        )
        if not job_ids:
            raise typer.BadParameter("No videos were queued for audio extraction; see the log for details")
        snapshot = await _run_until_idle(queues.audio, "audio")
        _report_results(snapshot, job_ids)
        return snapshot

    asyncio.run(_run())


def _describe_record(record: VideoRecord) -> str:
    parts = [record.video_id]
    if record.download_status:
        parts.append(f"download={record.download_status}({record.download_progress or 0}%)")
    if record.optimization_status:
        parts.append(
            f"optimization={record.optimization_status}({record.optimization_progress or 0}%)"
        )
    if record.last_error_message and "failed" in (
        record.download_status,
        record.optimization_status,
    ):
        parts.append(f"error={record.last_error_message}")
    return " ".join(parts)


def _has_pending(records: List[VideoRecord]) -> bool:
    return any(
        record.download_status in _PENDING_STATUSES
        or record.optimization_status in _PENDING_STATUSES
        for record in records
    )


@cli.command()
def status(
    wait: bool = typer.Option(False, "--wait", help="Poll every second until no job is pending"),
) -> None:
    """Show the mirrored job state of every catalog entry."""

    config = initialize_app(reconcile_jobs=False)
    _prepare_logging(config.storage_root)
    repository = _open_repository(config)

    while True:
        records = repository.list_videos()
        for record in records:
            typer.echo(_describe_record(record))
        if not wait or not _has_pending(records):
            break
        typer.echo("---")
        time.sleep(POLL_SECONDS)


if __name__ == "__main__":
    cli()
