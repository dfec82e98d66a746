from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from trickplay.bif.writer import BIF_MAGIC, HEADER_SIZE, INDEX_ENTRY_SIZE, SENTINEL_INDEX

_HEADER = struct.Struct("<8sIII")
_ENTRY = struct.Struct("<II")


@dataclass(slots=True)
class BifIndex:
    """Parsed header and frame index of a BIF container."""

    version: int
    image_count: int
    interval_ms: int
    offsets: list[tuple[int, int]] = field(default_factory=list)
    total_size: int = 0

    def frame_bytes(self, data: bytes, position: int) -> bytes:
        start = self.offsets[position][1]
        end = self.offsets[position + 1][1] if position + 1 < len(self.offsets) else self.total_size
        return data[start:end]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "image_count": self.image_count,
            "interval_ms": self.interval_ms,
            "total_size": self.total_size,
            "frames": [
                {"index": index, "offset": offset, "timestamp_ms": index * self.interval_ms}
                for index, offset in self.offsets
            ],
        }


def read_bif(data: bytes) -> BifIndex:
    """Parse a BIF container held in memory."""

    if len(data) < HEADER_SIZE:
        raise ValueError(f"BIF container is truncated: {len(data)} bytes, header needs {HEADER_SIZE}")

    magic, version, image_count, interval_ms = _HEADER.unpack_from(data, 0)
    if magic != BIF_MAGIC:
        raise ValueError("Not a BIF container: magic signature mismatch.")

    index_end = HEADER_SIZE + INDEX_ENTRY_SIZE * (image_count + 1)
    if len(data) < index_end:
        raise ValueError(f"BIF index is truncated: expected {image_count} entries plus sentinel.")

    offsets = [
        _ENTRY.unpack_from(data, HEADER_SIZE + INDEX_ENTRY_SIZE * position)
        for position in range(image_count)
    ]
    sentinel_index, total_size = _ENTRY.unpack_from(data, HEADER_SIZE + INDEX_ENTRY_SIZE * image_count)
    if sentinel_index != SENTINEL_INDEX:
        raise ValueError(f"BIF index sentinel missing; found 0x{sentinel_index:08X}.")
    if total_size != len(data):
        raise ValueError(f"BIF sentinel offset {total_size} does not match container size {len(data)}.")

    return BifIndex(
        version=version,
        image_count=image_count,
        interval_ms=interval_ms,
        offsets=[(index, offset) for index, offset in offsets],
        total_size=total_size,
    )


def load_bif(path: str | Path) -> tuple[BifIndex, bytes]:
    data = Path(path).read_bytes()
    return read_bif(data), data
