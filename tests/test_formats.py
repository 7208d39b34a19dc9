from __future__ import annotations

from pathlib import Path

import pytest

from vidlearn.processing.formats import (
    CompatibilityOption,
    WEBM,
    build_audio_extraction_args,
    build_download_args,
    build_format_selector,
    build_transcode_args,
    estimate_optimized_size,
    quality_ceilings,
)


@pytest.mark.parametrize(
    ("preference", "expected"),
    [
        ("1080p", [1080, 720, 480]),
        ("720p", [720, 480]),
        ("480p", [480]),
        ("360p", [360]),
        ("bogus", [480]),
        (None, [480]),
    ],
)
def test_quality_ceilings(preference, expected) -> None:
    assert quality_ceilings(preference) == expected


def test_selector_tries_each_option_at_every_ceiling() -> None:
    selector = build_format_selector([480, 720])

    assert selector.split("/") == [
        "best[height<=720][ext=webm]",
        "bestvideo[height<=720][ext=webm]+bestaudio[ext=webm]",
        "best[height<=480][ext=webm]",
        "bestvideo[height<=480][ext=webm]+bestaudio[ext=webm]",
        "best[height<=720][ext=mp4][vcodec^=avc1]",
        "bestvideo[height<=720][ext=mp4][vcodec^=avc1]+bestaudio[ext=m4a]",
        "best[height<=480][ext=mp4][vcodec^=avc1]",
        "bestvideo[height<=480][ext=mp4][vcodec^=avc1]+bestaudio[ext=m4a]",
        "best[height<=720]",
        "best",
    ]


def test_compatible_low_resolution_beats_incompatible_high_resolution() -> None:
    hevc = CompatibilityOption("hevc", "[vcodec^=hvc1]", "")
    alternatives = build_format_selector([1080, 720, 480], (WEBM, hevc)).split("/")

    last_webm = max(index for index, item in enumerate(alternatives) if "[ext=webm]" in item)
    first_hevc = min(index for index, item in enumerate(alternatives) if "hvc1" in item)

    assert last_webm < first_hevc
    assert "best[height<=480][ext=webm]" in alternatives[:last_webm + 1]
    assert alternatives[-1] == "best"


def test_selector_without_ceilings_still_falls_back() -> None:
    assert build_format_selector([]) == "best"


def test_download_args() -> None:
    args = build_download_args(
        "https://example.com/v",
        "/downloads/%(title)s [abc].%(ext)s",
        "best",
        ffmpeg_location=Path("/opt/bin/ffmpeg"),
    )

    assert args == [
        "https://example.com/v",
        "--newline",
        "--no-playlist",
        "--no-mtime",
        "-o",
        "/downloads/%(title)s [abc].%(ext)s",
        "--ffmpeg-location",
        "/opt/bin/ffmpeg",
        "-f",
        "best",
    ]
    assert "--ffmpeg-location" not in build_download_args("u", "t", "best")


def test_transcode_args_keep_resolution_with_crf() -> None:
    args = build_transcode_args(Path("in.webm"), Path("in.optimizing.mp4"))

    assert args[:6] == ["-i", "in.webm", "-c:v", "libx264", "-preset", "medium"]
    assert args[args.index("-crf") + 1] == "23"
    assert "-vf" not in args
    assert "-b:v" not in args
    assert args[args.index("-b:a") + 1] == "128k"
    assert args[args.index("-movflags") + 1] == "+faststart"
    assert args[-5:] == ["-progress", "pipe:1", "-nostats", "-y", "in.optimizing.mp4"]


def test_transcode_args_scale_with_bitrate_ceiling() -> None:
    args = build_transcode_args(Path("in.mp4"), Path("out.mp4"), "720p")

    assert "-crf" not in args
    assert args[args.index("-b:v") + 1] == "2500k"
    assert args[args.index("-maxrate") + 1] == "2500k"
    assert args[args.index("-bufsize") + 1] == "5000k"
    assert args[args.index("-vf") + 1] == "scale=1280:-2"


def test_transcode_args_reject_unknown_resolution() -> None:
    with pytest.raises(ValueError):
        build_transcode_args(Path("in.mp4"), Path("out.mp4"), "4k")


@pytest.mark.parametrize(
    ("audio_format", "quality", "codec", "bitrate"),
    [("mp3", "high", "libmp3lame", "192k"), ("m4a", "medium", "aac", "128k"), ("opus", "low", "libopus", "96k")],
)
def test_audio_extraction_args(audio_format: str, quality: str, codec: str, bitrate: str) -> None:
    args = build_audio_extraction_args(Path("in.webm"), Path(f"in.{audio_format}"), audio_format, quality)

    assert args[:3] == ["-i", "in.webm", "-vn"]
    assert args[args.index("-c:a") + 1] == codec
    assert args[args.index("-b:a") + 1] == bitrate
    assert "-c:v" not in args
    assert args[-5:] == ["-progress", "pipe:1", "-nostats", "-y", f"in.{audio_format}"]


def test_audio_extraction_args_reject_unknown_values() -> None:
    with pytest.raises(ValueError):
        build_audio_extraction_args(Path("in.mp4"), Path("out.flac"), "flac")
    with pytest.raises(ValueError):
        build_audio_extraction_args(Path("in.mp4"), Path("out.mp3"), "mp3", "lossless")


@pytest.mark.parametrize(
    ("target", "expected"),
    [("original", 700), ("1080p", 500), ("720p", 350), ("480p", 200)],
)
def test_estimate_optimized_size(target: str, expected: int) -> None:
    assert estimate_optimized_size(1000, target) == expected
