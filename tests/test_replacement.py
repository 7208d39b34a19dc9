from __future__ import annotations

import os
from pathlib import Path

import pytest

from vidlearn.services import replacement as replacement_module
from vidlearn.services.replacement import EmptyOutputError, ReplacementError, replace_atomically


def _write(path: Path, payload: bytes) -> Path:
    path.write_bytes(payload)
    return path


def test_replacement_swaps_file_and_removes_backup(tmp_path: Path) -> None:
    original = _write(tmp_path / "lecture [abc].webm", b"o" * 100)
    optimized = _write(tmp_path / "lecture [abc].optimizing.mp4", b"n" * 40)

    new_size = replace_atomically(original, optimized)

    assert new_size == 40
    assert original.read_bytes() == b"n" * 40
    assert not optimized.exists()
    assert not (tmp_path / "lecture [abc].webm.backup").exists()


def test_missing_output_is_rejected(tmp_path: Path) -> None:
    original = _write(tmp_path / "video.mp4", b"original")

    with pytest.raises(EmptyOutputError, match="Output file not created"):
        replace_atomically(original, tmp_path / "video.optimizing.mp4")

    assert original.read_bytes() == b"original"


def test_empty_output_is_rejected(tmp_path: Path) -> None:
    original = _write(tmp_path / "video.mp4", b"original")
    optimized = _write(tmp_path / "video.optimizing.mp4", b"")

    with pytest.raises(EmptyOutputError, match="Output file is empty"):
        replace_atomically(original, optimized)

    assert original.read_bytes() == b"original"


def test_failed_rename_leaves_original_untouched(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    original = _write(tmp_path / "video.mp4", b"original bytes")
    optimized = _write(tmp_path / "video.optimizing.mp4", b"new")

    def _refuse(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(replacement_module.os, "replace", _refuse)

    with pytest.raises(ReplacementError, match="disk full"):
        replace_atomically(original, optimized)

    assert original.read_bytes() == b"original bytes"
    assert not (tmp_path / "video.mp4.backup").exists()


def test_original_is_restored_from_backup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    original = _write(tmp_path / "video.mp4", b"original bytes")
    optimized = _write(tmp_path / "video.optimizing.mp4", b"new")
    real_replace = os.replace
    calls = []

    def _lose_original(src, dst):
        calls.append((Path(src), Path(dst)))
        if len(calls) == 1:
            Path(dst).unlink()
            raise OSError("interrupted")
        return real_replace(src, dst)

    monkeypatch.setattr(replacement_module.os, "replace", _lose_original)

    with pytest.raises(ReplacementError):
        replace_atomically(original, optimized)

    assert original.read_bytes() == b"original bytes"
    assert calls[-1] == (tmp_path / "video.mp4.backup", original)
