from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

FRAME_EXTENSION = ".jpg"


def list_frames(directory: str | Path) -> list[Path]:
    """Return extracted frames in temporal order (filename ascending)."""

    frame_dir = Path(directory)
    if not frame_dir.is_dir():
        return []
    return sorted(
        (entry for entry in frame_dir.iterdir() if entry.is_file() and entry.suffix == FRAME_EXTENSION),
        key=lambda entry: entry.name,
    )


def clear_frames(directory: str | Path) -> int:
    """Best-effort removal of frame images; returns how many were deleted."""

    deleted = 0
    for frame in list_frames(directory):
        try:
            frame.unlink()
        except OSError:
            logger.exception("Error deleting %s", frame)
            continue
        deleted += 1
    return deleted
