import sqlite3
from pathlib import Path

import pytest

import vidlearn.config as config_module
from vidlearn.bootstrap import INTERRUPTED_MESSAGE, BootstrapError, Bootstrapper
from vidlearn.config import AppConfig
from vidlearn.services.storage import VideoRepository


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    storage_root = tmp_path / "storage"

    config = AppConfig(
        storage_root=storage_root,
        database_file=storage_root / "vidlearn.db",
        downloads_root=storage_root / "downloads",
        bin_root=storage_root / "bin",
    )

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    bootstrapper = Bootstrapper(config)

    with pytest.raises(BootstrapError) as excinfo:
        bootstrapper.initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrap_creates_schema_idempotently(temp_config: AppConfig) -> None:
    Bootstrapper(temp_config).initialize()

    with sqlite3.connect(temp_config.database_file) as connection:
        columns = {row[1] for row in connection.execute("PRAGMA table_info(videos)")}

    assert {
        "video_id",
        "download_status",
        "download_progress",
        "download_file_path",
        "optimization_status",
        "original_file_size",
        "last_optimized_at",
    } <= columns


def test_bootstrap_fails_jobs_left_pending_by_previous_run(temp_config: AppConfig) -> None:
    repository = VideoRepository(temp_config)
    repository.add_video("queued", "https://example.com/queued")
    repository.add_video("running", "https://example.com/running")
    repository.add_video("done", "https://example.com/done")
    repository.update_download_state("queued", status="queued")
    repository.update_optimization_state("running", status="optimizing", progress=40, error_type="replace_error")
    repository.update_download_state("done", status="completed")

    Bootstrapper(temp_config, reconcile_jobs=False).initialize()
    assert repository.get_video("queued").download_status == "queued"

    Bootstrapper(temp_config).initialize()

    queued = repository.get_video("queued")
    assert queued.download_status == "failed"
    assert queued.last_error_message == INTERRUPTED_MESSAGE
    assert queued.error_type == "process_error"
    running = repository.get_video("running")
    assert running.optimization_status == "failed"
    assert running.last_error_message == INTERRUPTED_MESSAGE
    assert running.error_type == "process_error"
    assert repository.get_video("done").download_status == "completed"
