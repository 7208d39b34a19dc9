from pathlib import Path

import pytest

from vidlearn.services.naming import (
    audio_path_for,
    backup_path_for,
    build_output_template,
    derive_video_id,
    extracting_path_for,
    is_partial_artifact,
    is_unmerged_stream,
    optimizing_path_for,
    slugify,
)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10", "dQw4w9WgXcQ"),
        ("https://youtu.be/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/shorts/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://vimeo.com/12345", "vimeo-com-12345"),
    ],
)
def test_derive_video_id(url: str, expected: str) -> None:
    assert derive_video_id(url) == expected


def test_slugify_never_returns_empty() -> None:
    assert slugify("  Hello, World!  ") == "hello-world"
    assert slugify("???") == "item"


def test_job_file_names(tmp_path: Path) -> None:
    original = tmp_path / "Lecture [abc].webm"

    assert build_output_template(tmp_path, "abc") == str(tmp_path / "%(title)s [abc].%(ext)s")
    assert optimizing_path_for(original) == tmp_path / "Lecture [abc].optimizing.mp4"
    assert backup_path_for(original) == tmp_path / "Lecture [abc].webm.backup"
    assert audio_path_for(original, "mp3") == tmp_path / "Lecture [abc].mp3"
    assert extracting_path_for(original, "opus") == tmp_path / "Lecture [abc].extracting.opus"


def test_artifact_classification() -> None:
    assert is_partial_artifact(Path("Clip [abc].mp4.part"))
    assert is_partial_artifact(Path("Clip [abc].f137.mp4.ytdl"))
    assert is_partial_artifact(Path("Clip [abc].mp4.part-Frag12"))
    assert not is_partial_artifact(Path("Clip [abc].mp4"))

    assert is_unmerged_stream("Clip [abc].f137.mp4")
    assert not is_unmerged_stream(Path("Clip [abc].mp4"))
