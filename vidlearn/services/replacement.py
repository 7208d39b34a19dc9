"""Backup-then-rename replacement of a file with its optimized version."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
from pathlib import Path

from .events import emit_file_event
from .naming import backup_path_for


LOGGER = logging.getLogger(__name__)


class ReplacementError(RuntimeError):
    """Raised when the optimized file could not be swapped in."""


class EmptyOutputError(ReplacementError):
    """Raised when the replacement file is missing or zero bytes."""


def _create_backup(original: Path, backup: Path) -> None:
    if backup.exists():
        backup.unlink()
    try:
        os.link(original, backup)
    except OSError:
        # Filesystems without hard links get a full copy instead.
        shutil.copy2(original, backup)


def replace_atomically(original: Path, replacement: Path) -> int:
    """Move *replacement* onto *original* and return the new size in bytes.

    The original path never goes missing: a backup sibling is created first
    and ``os.replace`` swaps the file in a single rename. If the swap fails the
    backup is restored and :class:`ReplacementError` is raised.
    """

    if not replacement.exists():
        raise EmptyOutputError("Output file not created")
    if replacement.stat().st_size == 0:
        raise EmptyOutputError("Output file is empty")

    backup = backup_path_for(original)
    try:
        _create_backup(original, backup)
    except OSError as exc:
        with contextlib.suppress(OSError):
            backup.unlink()
        raise ReplacementError(f"Could not back up {original.name}: {exc}") from exc

    try:
        os.replace(replacement, original)
    except OSError as exc:
        LOGGER.error("Replacing %s failed, rolling back: %s", original, exc)
        if not original.exists():
            os.replace(backup, original)
        else:
            backup.unlink()
        emit_file_event(
            "Rolled back optimized file replacement",
            payload={"path": original, "error": str(exc)},
            level=logging.WARNING,
        )
        raise ReplacementError(f"Failed to replace {original.name}: {exc}") from exc

    try:
        backup.unlink()
    except OSError as exc:
        LOGGER.warning("Could not remove backup %s: %s", backup, exc)

    new_size = original.stat().st_size
    emit_file_event(
        "Replaced file with optimized version",
        payload={"path": original, "size": new_size},
    )
    return new_size


__all__ = ["EmptyOutputError", "ReplacementError", "replace_atomically"]
