from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

_TICKS_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass(slots=True)
class MediaStream:
    """One elementary stream inside a media source."""

    index: int
    stream_type: str
    codec: str | None = None
    width: int | None = None
    height: int | None = None
    bitrate: int | None = None
    channels: int | None = None


@dataclass(slots=True)
class MediaSource:
    """A playable rendition of a video asset."""

    source_id: str
    path: str
    protocol: str = "file"
    video_3d_format: str | None = None
    streams: list[MediaStream] = field(default_factory=list)
    container: str | None = None
    bitrate: int | None = None

    def default_audio_stream_index(self) -> int:
        return next((stream.index for stream in self.streams if stream.stream_type == "audio"), 0)


@dataclass(slots=True)
class VideoAsset:
    """Library item whose media sources get trickplay containers."""

    item_id: str
    date_modified: datetime
    media_sources: list[MediaSource] = field(default_factory=list)
    metadata_path: Path | None = None

    def internal_metadata_path(self, metadata_root: Path) -> Path:
        if self.metadata_path is not None:
            return Path(self.metadata_path)
        return Path(metadata_root) / "library" / self.item_id[:2] / self.item_id


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Identity of one BIF artifact; changes whenever the asset is modified."""

    item_id: str
    modifier: str
    media_source_id: str
    width: int

    def path(self, metadata_dir: Path) -> Path:
        return Path(metadata_dir) / "bif" / self.modifier / self.media_source_id / str(self.width) / "index.bif"


@dataclass(slots=True)
class BuildResult:
    """Outcome of one (media source, width) unit of work."""

    media_source_id: str
    width: int
    path: str
    status: str
    error: str | None = None


def item_modifier(date_modified: datetime) -> str:
    """Express a modification time as 100ns ticks since 0001-01-01 UTC."""

    if date_modified.tzinfo is None:
        date_modified = date_modified.replace(tzinfo=timezone.utc)
    delta = date_modified - _TICKS_EPOCH
    ticks = (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10
    return str(ticks)
