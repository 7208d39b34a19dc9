"""Resolution of the external yt-dlp, ffmpeg and ffprobe binaries."""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..services.jobs import BinaryUnavailableError


LOGGER = logging.getLogger(__name__)


YTDLP = "yt-dlp"
FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"

KNOWN_BINARIES = (YTDLP, FFMPEG, FFPROBE)

ENVIRONMENT_OVERRIDES = {
    YTDLP: "VIDLEARN_YTDLP_PATH",
    FFMPEG: "VIDLEARN_FFMPEG_PATH",
    FFPROBE: "VIDLEARN_FFPROBE_PATH",
}


def platform_binary_name(name: str, platform: Optional[str] = None) -> str:
    """Return the file name the release of *name* uses on *platform*."""

    platform = platform or sys.platform
    if platform == "win32":
        return f"{name}.exe"
    if name == YTDLP and platform == "darwin":
        return "yt-dlp_macos"
    return name


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class BinaryLocator:
    """Answer "where is yt-dlp / ffmpeg / ffprobe, if anywhere".

    Lookup order: explicit overrides, ``VIDLEARN_*_PATH`` environment
    variables, the managed ``bin_root`` directory, then ``PATH``.
    """

    def __init__(
        self,
        bin_root: Path,
        *,
        overrides: Optional[Mapping[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        platform: Optional[str] = None,
        search_path: bool = True,
    ) -> None:
        self._bin_root = bin_root
        self._overrides = {name: Path(path) for name, path in (overrides or {}).items()}
        self._environ = os.environ if environ is None else environ
        self._platform = platform or sys.platform
        self._search_path = search_path

    @property
    def bin_root(self) -> Path:
        return self._bin_root

    def locate(self, name: str) -> Optional[Path]:
        if name not in KNOWN_BINARIES:
            raise ValueError(f"Unknown binary: {name}")

        candidates: List[Path] = []
        if name in self._overrides:
            candidates.append(self._overrides[name])
        env_value = self._environ.get(ENVIRONMENT_OVERRIDES[name])
        if env_value:
            candidates.append(Path(env_value).expanduser())
        candidates.append(self._bin_root / platform_binary_name(name, self._platform))

        for candidate in candidates:
            if _is_executable(candidate):
                return candidate
            LOGGER.debug("Binary candidate %s for %s is not usable", candidate, name)

        if self._search_path:
            found = shutil.which(platform_binary_name(name, self._platform)) or shutil.which(name)
            if found:
                return Path(found)
        return None

    def require(self, name: str) -> Path:
        path = self.locate(name)
        if path is None:
            raise BinaryUnavailableError(name)
        return path

    def status(self) -> Dict[str, Optional[str]]:
        """Return the resolved path (or ``None``) for every known binary."""

        result: Dict[str, Optional[str]] = {}
        for name in KNOWN_BINARIES:
            path = self.locate(name)
            result[name] = str(path) if path is not None else None
        return result

    def validate(self) -> List[str]:
        """Return a list of error strings for missing binaries; empty means all good."""

        return [f"Binary not found: {name}" for name, path in self.status().items() if path is None]


__all__ = [
    "BinaryLocator",
    "ENVIRONMENT_OVERRIDES",
    "FFMPEG",
    "FFPROBE",
    "KNOWN_BINARIES",
    "YTDLP",
    "platform_binary_name",
]
