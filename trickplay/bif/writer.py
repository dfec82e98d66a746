from __future__ import annotations

import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import BinaryIO, Sequence

from trickplay.errors import BifWriteError

logger = logging.getLogger(__name__)

BIF_MAGIC = bytes([0x89, 0x42, 0x49, 0x46, 0x0D, 0x0A, 0x1A, 0x0A])
BIF_VERSION = 0
INTERVAL_MS = 10_000
HEADER_SIZE = 64
INDEX_ENTRY_SIZE = 8
SENTINEL_INDEX = 0xFFFFFFFF
UINT32_MAX = 0xFFFFFFFF


def pack_uint32(value: int, byteorder: str = sys.byteorder) -> bytes:
    """Encode ``value`` as a little-endian uint32.

    The value is laid out in host byte order first and reversed on big-endian
    hosts. Values outside 32 bits wrap.
    """

    raw = (value & UINT32_MAX).to_bytes(4, byteorder)
    if byteorder != "little":
        raw = raw[::-1]
    return raw


def first_image_offset(image_count: int) -> int:
    return HEADER_SIZE + INDEX_ENTRY_SIZE * image_count + INDEX_ENTRY_SIZE


def write_bif(stream: BinaryIO, frames: Sequence[Path], byteorder: str = sys.byteorder) -> int:
    """Serialize ``frames`` into a BIF container on ``stream``.

    Returns the total number of bytes the container occupies.
    """

    frame_paths = [Path(frame) for frame in frames]
    try:
        sizes = [frame.stat().st_size for frame in frame_paths]

        stream.write(BIF_MAGIC)
        stream.write(pack_uint32(BIF_VERSION, byteorder))
        stream.write(pack_uint32(len(frame_paths), byteorder))
        stream.write(pack_uint32(INTERVAL_MS, byteorder))
        stream.write(bytes(HEADER_SIZE - 20))

        image_offset = first_image_offset(len(frame_paths))
        for index, size in enumerate(sizes):
            stream.write(pack_uint32(index, byteorder))
            stream.write(pack_uint32(image_offset, byteorder))
            image_offset += size

        if image_offset > UINT32_MAX:
            logger.warning(
                "BIF container is %d bytes; index offsets beyond 4 GiB wrap around",
                image_offset,
            )
        stream.write(pack_uint32(SENTINEL_INDEX, byteorder))
        stream.write(pack_uint32(image_offset, byteorder))

        for frame in frame_paths:
            with frame.open("rb") as handle:
                shutil.copyfileobj(handle, stream)
    except OSError as exc:
        raise BifWriteError(f"Failed to write BIF container: {exc}") from exc

    return image_offset


def write_bif_file(path: Path, frames: Sequence[Path]) -> Path:
    """Write a BIF container to ``path`` through a sibling temporary file.

    The destination only appears once the container is complete.
    """

    destination = Path(path)
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=destination.parent,
            prefix=f".{destination.name}.",
            suffix=".tmp",
            delete=False,
        )
    except OSError as exc:
        raise BifWriteError(f"Failed to create BIF container at {destination}: {exc}") from exc

    temp_path = Path(handle.name)
    try:
        with handle:
            total = write_bif(handle, frames)
        os.replace(temp_path, destination)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise BifWriteError(f"Failed to write BIF container at {destination}: {exc}") from exc
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    logger.debug("Wrote %d frame(s), %d bytes to %s", len(frames), total, destination)
    return destination
