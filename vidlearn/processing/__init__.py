"""External process integration: parsing, argument building and workers."""

from .binaries import BinaryLocator
from .formats import (
    build_audio_extraction_args,
    build_format_selector,
    build_transcode_args,
    estimate_optimized_size,
)
from .progress import ProgressEvent, format_size, parse_download_progress, parse_size, parse_transcode_progress
from .worker import AudioExtractionWorker, DownloadWorker, ProcessWorker, TranscodeWorker, WorkerPool

__all__ = [
    "AudioExtractionWorker",
    "BinaryLocator",
    "DownloadWorker",
    "ProcessWorker",
    "ProgressEvent",
    "TranscodeWorker",
    "WorkerPool",
    "build_audio_extraction_args",
    "build_format_selector",
    "build_transcode_args",
    "estimate_optimized_size",
    "format_size",
    "parse_download_progress",
    "parse_size",
    "parse_transcode_progress",
]
