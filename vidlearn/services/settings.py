"""Persistence of the user's download and optimization preferences."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Literal

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)


DownloadQuality = Literal["360p", "480p", "720p", "1080p"]

DOWNLOAD_QUALITIES = ("360p", "480p", "720p", "1080p")


@dataclass
class UserSettings:
    """Preferences consulted when jobs are queued and when downloads finish."""

    download_quality: DownloadQuality = "480p"
    auto_optimize: bool = True
    auto_optimize_threshold_mb: int = 100

    def validated(self) -> "UserSettings":
        """Return a copy with out-of-range values reset to their defaults."""

        defaults = UserSettings()
        quality = self.download_quality if self.download_quality in DOWNLOAD_QUALITIES else defaults.download_quality
        try:
            threshold = int(self.auto_optimize_threshold_mb)
        except (TypeError, ValueError):
            threshold = defaults.auto_optimize_threshold_mb
        if threshold <= 0:
            threshold = defaults.auto_optimize_threshold_mb
        return replace(
            self,
            download_quality=quality,
            auto_optimize=bool(self.auto_optimize),
            auto_optimize_threshold_mb=threshold,
        )


class SettingsStore:
    """Read and write ``settings.json`` in the storage root.

    The file is re-read on every :meth:`load`, so changes made through the API
    apply to the next job without restarting the queues.
    """

    def __init__(self, config: AppConfig) -> None:
        self._path = config.storage_root / "settings.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UserSettings:
        if not self._path.exists():
            return UserSettings()

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable settings file at %s: %s", self._path, exc)
            return UserSettings()
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring malformed settings file at %s", self._path)
            return UserSettings()

        known = {key: value for key, value in payload.items() if key in UserSettings.__dataclass_fields__}
        return UserSettings(**known).validated()

    def save(self, settings: UserSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")

    def update(self, **changes: Any) -> UserSettings:
        """Apply *changes* on top of the stored settings, save and return them."""

        current: Dict[str, Any] = asdict(self.load())
        current.update(changes)
        settings = UserSettings(**current).validated()
        self.save(settings)
        LOGGER.info("Updated settings: %s", ", ".join(sorted(changes)) or "no changes")
        return settings


__all__ = ["DOWNLOAD_QUALITIES", "DownloadQuality", "SettingsStore", "UserSettings"]
