"""Format selection and argument construction for yt-dlp and ffmpeg.

The builders return plain ``list[str]`` argument vectors (without the binary
itself) so commands can be logged and unit-tested without running anything.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class CompatibilityOption:
    """A container/codec combination the embedded player can play."""

    name: str
    video_filter: str
    audio_filter: str


WEBM = CompatibilityOption("webm", "[ext=webm]", "[ext=webm]")
MP4_AVC1 = CompatibilityOption("mp4-avc1", "[ext=mp4][vcodec^=avc1]", "[ext=m4a]")

DEFAULT_COMPATIBILITY: tuple[CompatibilityOption, ...] = (WEBM, MP4_AVC1)

DEFAULT_DOWNLOAD_QUALITY = "480p"

TARGET_RESOLUTIONS = ("original", "1080p", "720p", "480p")

VIDEO_BITRATES = {"1080p": "5000k", "720p": "2500k", "480p": "1000k"}
RESOLUTION_WIDTHS = {"1080p": 1920, "720p": 1280, "480p": 854}
COMPRESSION_RATIOS = {"original": 0.7, "1080p": 0.5, "720p": 0.35, "480p": 0.2}

DEFAULT_CRF = 23
DEFAULT_PRESET = "medium"
DEFAULT_AUDIO_BITRATE = "128k"

AUDIO_FORMATS = ("mp3", "m4a", "opus")
AUDIO_QUALITIES = ("high", "medium", "low")
AUDIO_CODECS = {"mp3": "libmp3lame", "m4a": "aac", "opus": "libopus"}
AUDIO_BITRATES = {"high": "192k", "medium": "128k", "low": "96k"}

_QUALITY = re.compile(r"^(\d{3,4})p$")


def quality_ceilings(preference: Optional[str]) -> List[int]:
    """Return the height ceilings to try for a download quality preference.

    ``"1080p"`` yields ``[1080, 720, 480]``; unknown values fall back to
    :data:`DEFAULT_DOWNLOAD_QUALITY`.
    """

    match = _QUALITY.match((preference or "").strip().lower())
    if not match:
        match = _QUALITY.match(DEFAULT_DOWNLOAD_QUALITY)
        assert match is not None
    maximum = int(match.group(1))
    ceilings: List[int] = []
    for value in (maximum, min(maximum, 720), min(maximum, 480)):
        if value not in ceilings:
            ceilings.append(value)
    return ceilings


def build_format_selector(
    ceilings: Iterable[int],
    compatibility: Sequence[CompatibilityOption] = DEFAULT_COMPATIBILITY,
) -> str:
    """Return a yt-dlp ``-f`` expression trying compatible formats first.

    Each compatibility option is exhausted at every ceiling, highest first,
    before the next option is considered; ``best`` is the last resort.
    """

    ordered = sorted({int(ceiling) for ceiling in ceilings if int(ceiling) > 0}, reverse=True)
    alternatives: List[str] = []
    for option in compatibility:
        for ceiling in ordered:
            height = f"[height<={ceiling}]"
            alternatives.append(f"best{height}{option.video_filter}")
            alternatives.append(
                f"bestvideo{height}{option.video_filter}+bestaudio{option.audio_filter}"
            )
    if ordered:
        alternatives.append(f"best[height<={ordered[0]}]")
    alternatives.append("best")
    return "/".join(alternatives)


def build_download_args(
    url: str,
    output_template: str,
    format_selector: str,
    *,
    ffmpeg_location: Optional[Path] = None,
) -> List[str]:
    args = [url, "--newline", "--no-playlist", "--no-mtime", "-o", output_template]
    if ffmpeg_location is not None:
        args.extend(["--ffmpeg-location", str(ffmpeg_location)])
    args.extend(["-f", format_selector])
    return args


def build_transcode_args(
    input_file: Path,
    output_file: Path,
    target_resolution: str = "original",
    *,
    crf: int = DEFAULT_CRF,
    preset: str = DEFAULT_PRESET,
    audio_bitrate: str = DEFAULT_AUDIO_BITRATE,
) -> List[str]:
    """Build the ffmpeg arguments that re-encode *input_file* to H.264/AAC.

    ``original`` keeps the resolution and uses constant quality (CRF); a pinned
    resolution uses an explicit bitrate ceiling and a ``scale=<width>:-2``
    filter that keeps the aspect ratio with an even height.
    """

    if target_resolution not in TARGET_RESOLUTIONS:
        raise ValueError(f"Unsupported target resolution: {target_resolution}")

    args = ["-i", str(input_file), "-c:v", "libx264", "-preset", preset]
    if target_resolution == "original":
        args.extend(["-crf", str(crf)])
    else:
        bitrate = VIDEO_BITRATES[target_resolution]
        buffer = f"{int(bitrate[:-1]) * 2}k"
        args.extend(["-b:v", bitrate, "-maxrate", bitrate, "-bufsize", buffer])
        args.extend(["-vf", f"scale={RESOLUTION_WIDTHS[target_resolution]}:-2"])
    args.extend(["-c:a", "aac", "-b:a", audio_bitrate])
    args.extend(["-movflags", "+faststart"])
    args.extend(["-progress", "pipe:1", "-nostats", "-y", str(output_file)])
    return args


def build_audio_extraction_args(
    input_file: Path,
    output_file: Path,
    audio_format: str = "mp3",
    quality: str = "medium",
) -> List[str]:
    """Build the ffmpeg arguments that drop the video stream of *input_file*."""

    if audio_format not in AUDIO_FORMATS:
        raise ValueError(f"Unsupported audio format: {audio_format}")
    if quality not in AUDIO_QUALITIES:
        raise ValueError(f"Unsupported audio quality: {quality}")

    return [
        "-i",
        str(input_file),
        "-vn",
        "-c:a",
        AUDIO_CODECS[audio_format],
        "-b:a",
        AUDIO_BITRATES[quality],
        "-progress",
        "pipe:1",
        "-nostats",
        "-y",
        str(output_file),
    ]


def estimate_optimized_size(current_size: int, target_resolution: str) -> int:
    """Rough size after optimization, from typical compression ratios."""

    ratio = COMPRESSION_RATIOS.get(target_resolution, COMPRESSION_RATIOS["original"])
    return int(current_size * ratio)


def command_as_string(cmd: Sequence[str]) -> str:
    """Human-readable version of the command for logging."""

    return " ".join(cmd)


__all__ = [
    "AUDIO_FORMATS",
    "AUDIO_QUALITIES",
    "COMPRESSION_RATIOS",
    "CompatibilityOption",
    "DEFAULT_COMPATIBILITY",
    "DEFAULT_DOWNLOAD_QUALITY",
    "MP4_AVC1",
    "TARGET_RESOLUTIONS",
    "WEBM",
    "build_audio_extraction_args",
    "build_download_args",
    "build_format_selector",
    "build_transcode_args",
    "command_as_string",
    "estimate_optimized_size",
    "quality_ceilings",
]
