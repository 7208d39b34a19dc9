"""Job records, outcomes and queue snapshots shared by the queues."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class JobKind(str, Enum):
    DOWNLOAD = "download"
    OPTIMIZATION = "optimization"
    AUDIO = "audio"

    @property
    def id_prefix(self) -> str:
        return _ID_PREFIXES[self]


_ID_PREFIXES = {JobKind.DOWNLOAD: "dl", JobKind.OPTIMIZATION: "opt", JobKind.AUDIO: "audio"}


class JobStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ErrorClass(str, Enum):
    SPAWN_ERROR = "spawn_error"
    PROCESS_ERROR = "process_error"
    REPLACE_ERROR = "replace_error"
    EMPTY_OUTPUT = "empty_output"


class QueueError(RuntimeError):
    """Base class for queue related failures."""


class JobNotFoundError(QueueError):
    """Raised when a job id is unknown to a queue."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job '{job_id}' not found")
        self.job_id = job_id


class BinaryUnavailableError(QueueError):
    """Raised when a required external binary cannot be located."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} binary is not available")
        self.name = name


def new_job_id(kind: JobKind) -> str:
    return f"{kind.id_prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _serialise(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    return value


@dataclass
class Job:
    """A download, optimization or audio extraction request tracked by a queue."""

    id: str
    video_id: str
    kind: JobKind
    source: str
    destination: str
    title: str = ""
    temp_path: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    original_size: Optional[int] = None
    final_size: Optional[int] = None
    total_size: Optional[str] = None
    downloaded_size: Optional[str] = None
    speed: Optional[str] = None
    eta: Optional[str] = None
    error_message: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    added_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    format_selector: Optional[str] = None
    target_resolution: Optional[str] = None
    audio_format: Optional[str] = None
    audio_quality: Optional[str] = None
    delete_original: bool = False
    duration_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {item.name: _serialise(getattr(self, item.name)) for item in fields(self)}


@dataclass
class WorkerOutcome:
    """Terminal report of one external process.

    ``output_path`` is only set on a zero exit; the queue decides the job status.
    """

    job_id: str
    exit_code: Optional[int]
    output_path: Optional[Path] = None
    error_message: Optional[str] = None
    error_class: Optional[ErrorClass] = None

    @property
    def succeeded(self) -> bool:
        return self.error_class is None and self.exit_code == 0


@dataclass
class QueueStats:
    total_queued: int = 0
    total_active: int = 0
    total_completed: int = 0
    total_failed: int = 0
    average_progress: int = 0
    total_space_saved: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalQueued": self.total_queued,
            "totalActive": self.total_active,
            "totalCompleted": self.total_completed,
            "totalFailed": self.total_failed,
            "averageProgress": self.average_progress,
            "totalSpaceSaved": self.total_space_saved,
        }


@dataclass
class QueueSnapshot:
    """Point-in-time copy of a queue; mutating it never affects the queue."""

    queued: List[Job]
    active: List[Job]
    completed: List[Job]
    failed: List[Job]
    stats: QueueStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queued": [job.to_dict() for job in self.queued],
            "active": [job.to_dict() for job in self.active],
            "completed": [job.to_dict() for job in self.completed],
            "failed": [job.to_dict() for job in self.failed],
            "stats": self.stats.to_dict(),
        }


__all__ = [
    "BinaryUnavailableError",
    "ErrorClass",
    "Job",
    "JobKind",
    "JobNotFoundError",
    "JobStatus",
    "QueueError",
    "QueueSnapshot",
    "QueueStats",
    "WorkerOutcome",
    "new_job_id",
]
