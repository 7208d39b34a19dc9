from __future__ import annotations

import asyncio
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vidlearn.bootstrap import Bootstrapper
from vidlearn.config import AppConfig
from vidlearn.services.jobs import ErrorClass, Job, WorkerOutcome
from vidlearn.services.storage import VideoRepository


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/vidlearn.db",
            "downloads_root": "storage/downloads",
            "bin_root": "storage/bin",
            "queues": {"poll_interval": 0.01, "progress_interval": 0.5},
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> VideoRepository:
    return VideoRepository(temp_config)


@pytest.fixture()
def make_executable(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a Python script that can be executed directly as a fake binary."""

    bin_dir = tmp_path / "fakebin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class FakeWorkerPool:
    """Worker pool whose processes are futures resolved by the test."""

    def __init__(self, *, fail_for: Optional[Set[str]] = None) -> None:
        self.spawned: List[Job] = []
        self.killed: List[str] = []
        self.sinks: Dict[str, Callable] = {}
        self._outcomes: Dict[str, asyncio.Future] = {}
        self._fail_for = fail_for or set()

    def spawn(self, job: Job, progress_sink):
        if job.video_id in self._fail_for:
            raise OSError("spawn refused")
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._outcomes[job.id] = future
        self.sinks[job.id] = progress_sink
        self.spawned.append(job)

        async def _wait() -> WorkerOutcome:
            return await future

        return loop.create_task(_wait())

    def finish(self, job_id: str, outcome: WorkerOutcome) -> None:
        self._outcomes[job_id].set_result(outcome)

    def kill(self, job_id: str) -> bool:
        self.killed.append(job_id)
        future = self._outcomes.get(job_id)
        if future is None or future.done():
            return False
        future.set_result(
            WorkerOutcome(
                job_id=job_id,
                exit_code=-15,
                error_message="terminated",
                error_class=ErrorClass.PROCESS_ERROR,
            )
        )
        return True

    async def shutdown(self) -> None:
        for job_id, future in list(self._outcomes.items()):
            if not future.done():
                self.kill(job_id)


def make_file(path: Path, payload: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path
