"""Configuration loading utilities for the VidLearn application."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".vidlearn_write_check"


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The helper attempts to create ``preferred`` and returns it when writable. If
    the preferred location is unavailable, each candidate in ``fallbacks`` is
    tried in order. The first writable fallback is returned along with a flag
    indicating that a fallback was used. When no candidate can be prepared the
    original ``preferred`` path is returned.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _positive_float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass(frozen=True)
class QueueSettings:
    """Scheduling knobs shared by the download, optimization and audio queues."""

    download_max_concurrent: int = 2
    optimization_max_concurrent: int = 1
    audio_max_concurrent: int = 1
    poll_interval: float = 2.0
    progress_interval: float = 0.5
    history_limit: int = 10

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "QueueSettings":
        defaults = cls()
        if not mapping:
            return defaults
        return cls(
            download_max_concurrent=_positive_int(
                mapping.get("download_max_concurrent"), defaults.download_max_concurrent
            ),
            optimization_max_concurrent=_positive_int(
                mapping.get("optimization_max_concurrent"),
                defaults.optimization_max_concurrent,
            ),
            audio_max_concurrent=_positive_int(
                mapping.get("audio_max_concurrent"), defaults.audio_max_concurrent
            ),
            poll_interval=_positive_float(mapping.get("poll_interval"), defaults.poll_interval),
            progress_interval=_positive_float(
                mapping.get("progress_interval"), defaults.progress_interval
            ),
            history_limit=_positive_int(mapping.get("history_limit"), defaults.history_limit),
        )


@dataclass(frozen=True)
class AppConfig:
    """Simple container describing runtime paths for the application."""

    storage_root: Path
    database_file: Path
    downloads_root: Path
    bin_root: Path
    queue: QueueSettings = field(default_factory=QueueSettings)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".vidlearn" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()

        preferred_downloads = (
            base_path / mapping.get("downloads_root", f"{mapping['storage_root']}/downloads")
        ).resolve()
        downloads_root, _ = _select_writable_directory(
            preferred_downloads,
            label="downloads",
            fallbacks=(storage_root / "downloads",),
        )

        preferred_bin = (
            base_path / mapping.get("bin_root", f"{mapping['storage_root']}/bin")
        ).resolve()
        bin_root, _ = _select_writable_directory(
            preferred_bin,
            label="binary",
            fallbacks=(storage_root / "bin",),
        )

        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if _ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        if not _ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            if fallback_database != database_file and _ensure_writable_directory(
                fallback_database.parent
            ):
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database
            else:
                LOGGER.warning(
                    "Database location '%s' is not writable and no fallback is available.",
                    database_file,
                )

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            downloads_root=downloads_root,
            bin_root=bin_root,
            queue=QueueSettings.from_mapping(mapping.get("queues")),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "QueueSettings", "load_config"]
