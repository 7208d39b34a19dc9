"""Thin wrapper around the ffprobe CLI."""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER = logging.getLogger(__name__)


class ProbeError(RuntimeError):
    """Raised when ffprobe cannot describe a file."""


@dataclass(frozen=True)
class ProbeResult:
    path: Path
    duration_seconds: float
    width: int
    height: int
    video_codec: str
    audio_codec: str


def probe(file: Path, ffprobe: Path) -> ProbeResult:
    """Run ffprobe on *file* and return a :class:`ProbeResult`.

    Raises:
        FileNotFoundError: if the input file does not exist
        ProbeError: if ffprobe exits with a non-zero code or prints garbage
    """

    if not file.exists():
        raise FileNotFoundError(f"Input file not found: {file}")

    cmd = [
        str(ffprobe),
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(file),
    ]
    result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed on {file.name}: {result.stderr.strip()}")
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise ProbeError(f"ffprobe returned invalid JSON for {file.name}") from exc
    return _parse(file, data)


async def probe_duration(file: Path, ffprobe: Optional[Path]) -> Optional[float]:
    """Return the duration of *file* in seconds, or ``None`` when unknown."""

    if ffprobe is None:
        return None
    try:
        result = await asyncio.to_thread(probe, file, ffprobe)
    except (OSError, ProbeError) as exc:
        LOGGER.warning("Could not probe duration of %s: %s", file, exc)
        return None
    return result.duration_seconds or None


def _parse(file: Path, data: Dict[str, Any]) -> ProbeResult:
    fmt = data.get("format", {})
    streams = data.get("streams", [])

    try:
        duration = float(fmt.get("duration", 0.0))
    except (TypeError, ValueError):
        duration = 0.0

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), {})
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), {})

    return ProbeResult(
        path=file,
        duration_seconds=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        video_codec=video_stream.get("codec_name", ""),
        audio_codec=audio_stream.get("codec_name", ""),
    )


__all__ = ["ProbeError", "ProbeResult", "probe", "probe_duration"]
