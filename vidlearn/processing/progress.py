"""Line parsers for yt-dlp and ffmpeg progress output.

Every function here is pure: the same line always yields the same result,
independent of any job or process state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional


MAX_RUNNING_PROGRESS = 99

_DOWNLOAD_LINE = re.compile(
    r"\[download\]\s+(\d+(?:\.\d+)?)%"
    r"(?:\s+of\s+~?\s*([\d.]+\s*(?:[KMGT]i?)?B))?"
    r"(?:\s+at\s+([\d.]+\s*(?:[KMGT]i?)?B/s))?"
    r"(?:\s+ETA\s+([\d:]+))?",
    re.IGNORECASE,
)
_SIZE = re.compile(r"^\s*([\d.]+)\s*([KMGT]?)(i?)B\s*$", re.IGNORECASE)
_DESTINATION = re.compile(r"\[download\]\s+Destination:\s+(.+)")
_MERGER = re.compile(r"\[Merger\]\s+Merging formats into\s+\"(.+?)\"")
_ALREADY_DOWNLOADED = re.compile(r"\[download\]\s+(.+?)\s+has already been downloaded")
_SELECTED_FORMATS = re.compile(r"\[info\]\s+\S+:\s+Downloading\s+\d+\s+format\(s\):\s+(\S+)")
_CLOCK = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")

_BINARY_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")
_DECIMAL_UNITS = ("B", "KB", "MB", "GB", "TB")
_EXPONENTS = {"": 0, "K": 1, "M": 2, "G": 3, "T": 4}


@dataclass(frozen=True)
class ProgressEvent:
    """Structured progress parsed from a single output line."""

    progress: int
    total_size: Optional[str] = None
    downloaded_size: Optional[str] = None
    speed: Optional[str] = None
    eta: Optional[str] = None


def _round_percent(value: float) -> int:
    return int(value + 0.5)


def parse_size(text: str) -> Optional[int]:
    """Convert a human size such as ``10.5MiB`` or ``3 KB`` into bytes.

    ``KiB``-style units use a multiplier of 1024, ``KB``-style units 1000.
    Returns ``None`` for anything that is not a size.
    """

    match = _SIZE.match(text or "")
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    exponent = _EXPONENTS[match.group(2).upper()]
    base = 1024 if match.group(3) else 1000
    return int(round(value * base**exponent))


def format_size(num_bytes: float, *, binary: bool = True) -> str:
    """Render *num_bytes* with two decimals in binary (default) or decimal units."""

    units = _BINARY_UNITS if binary else _DECIMAL_UNITS
    step = 1024.0 if binary else 1000.0
    size = float(num_bytes)
    index = 0
    while abs(size) >= step and index < len(units) - 1:
        size /= step
        index += 1
    if index == 0:
        return f"{int(round(size))}B"
    return f"{size:.2f}{units[index]}"


def parse_download_progress(line: str) -> Optional[ProgressEvent]:
    """Parse a yt-dlp ``[download] NN.N% of SIZE at RATE ETA T`` line."""

    match = _DOWNLOAD_LINE.search(line)
    if not match:
        return None
    percent = float(match.group(1))
    total_size = match.group(2).replace(" ", "") if match.group(2) else None
    speed = match.group(3).replace(" ", "") if match.group(3) else None
    eta = match.group(4)

    downloaded_size = None
    if total_size and percent > 0:
        total_bytes = parse_size(total_size)
        if total_bytes:
            downloaded_size = format_size(total_bytes * percent / 100)

    return ProgressEvent(
        progress=_round_percent(min(percent, 100.0)),
        total_size=total_size,
        downloaded_size=downloaded_size,
        speed=speed,
        eta=eta,
    )


def parse_clock(value: str) -> Optional[float]:
    """Convert ``HH:MM:SS[.ffffff]`` into seconds."""

    match = _CLOCK.match(value.strip())
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_transcode_progress(
    line: str, duration_seconds: Optional[float]
) -> Optional[ProgressEvent]:
    """Parse one ``key=value`` line of ffmpeg's ``-progress`` stream.

    The percentage is clamped to :data:`MAX_RUNNING_PROGRESS`; only the exit
    code may complete a job.
    """

    if not duration_seconds or duration_seconds <= 0:
        return None
    key, separator, value = line.strip().partition("=")
    if not separator:
        return None
    value = value.strip()
    if not value or value.upper() == "N/A":
        return None

    elapsed: Optional[float]
    if key in ("out_time_ms", "out_time_us"):
        try:
            elapsed = int(value) / 1_000_000
        except ValueError:
            return None
    elif key == "out_time":
        elapsed = parse_clock(value)
    else:
        return None
    if elapsed is None or elapsed < 0:
        return None

    percent = elapsed / duration_seconds * 100
    return ProgressEvent(progress=min(_round_percent(percent), MAX_RUNNING_PROGRESS))


def parse_destination(line: str) -> Optional[str]:
    """Return the output path announced by yt-dlp on *line*, if any."""

    for pattern in (_MERGER, _DESTINATION, _ALREADY_DOWNLOADED):
        match = pattern.search(line)
        if match:
            return match.group(1).strip().strip('"').strip()
    return None


def parse_selected_formats(line: str) -> Optional[List[str]]:
    """Return the format ids yt-dlp chose (``244+251`` -> ``["244", "251"]``)."""

    match = _SELECTED_FORMATS.search(line)
    if not match:
        return None
    return [part for part in match.group(1).split("+") if part]


__all__ = [
    "MAX_RUNNING_PROGRESS",
    "ProgressEvent",
    "format_size",
    "parse_clock",
    "parse_destination",
    "parse_download_progress",
    "parse_selected_formats",
    "parse_size",
    "parse_transcode_progress",
]
