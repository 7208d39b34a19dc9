"""Utility helpers for consistent file naming around jobs."""

from __future__ import annotations

import re
from pathlib import Path

__all__ = [
    "BACKUP_SUFFIX",
    "PARTIAL_SUFFIXES",
    "audio_path_for",
    "backup_path_for",
    "build_output_template",
    "derive_video_id",
    "extracting_path_for",
    "is_partial_artifact",
    "is_unmerged_stream",
    "optimizing_path_for",
    "slugify",
]


BACKUP_SUFFIX = ".backup"
PARTIAL_SUFFIXES = (".part", ".ytdl")

_FORMAT_MARKER = re.compile(r"\.f\d+\.")


def slugify(value: str) -> str:
    """Return a filesystem-friendly representation of *value*."""

    value = value.strip().lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    value = re.sub(r"-+", "-", value).strip("-")
    return value or "item"


def build_output_template(downloads_root: Path, video_id: str) -> str:
    """Return the yt-dlp output template that tags files with ``[video_id]``."""

    return str(downloads_root / f"%(title)s [{video_id}].%(ext)s")


def optimizing_path_for(original: Path) -> Path:
    """Return the temporary transcode output placed beside *original*."""

    return original.with_name(f"{original.stem}.optimizing.mp4")


def audio_path_for(source: Path, audio_format: str) -> Path:
    """Return the extracted audio file placed beside the *source* video."""

    return source.with_suffix(f".{audio_format}")


def extracting_path_for(source: Path, audio_format: str) -> Path:
    return source.with_name(f"{source.stem}.extracting.{audio_format}")


def backup_path_for(original: Path) -> Path:
    return original.with_name(original.name + BACKUP_SUFFIX)


def is_partial_artifact(path: Path) -> bool:
    return path.name.endswith(PARTIAL_SUFFIXES) or ".part-Frag" in path.name


def is_unmerged_stream(path: Path | str) -> bool:
    """Return ``True`` for single-stream files such as ``video.f137.mp4``."""

    return _FORMAT_MARKER.search(Path(path).name) is not None


_YOUTUBE_ID = re.compile(r"(?:v=|youtu\.be/|/shorts/|/embed/)([A-Za-z0-9_-]{11})")


def derive_video_id(url: str) -> str:
    """Return the YouTube id embedded in *url*, or a slug of the URL otherwise."""

    match = _YOUTUBE_ID.search(url)
    if match:
        return match.group(1)
    return slugify(re.sub(r"^[a-z]+://", "", url.strip(), flags=re.IGNORECASE))
