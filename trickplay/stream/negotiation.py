from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from trickplay.models import MediaSource

logger = logging.getLogger(__name__)

DIRECT_PLAY_CONTAINERS = frozenset({"mp4", "m4v", "mov", "mkv", "matroska"})
DIRECT_PLAY_VIDEO_CODECS = frozenset({"h264", "hevc", "vp9"})
BASE_AUDIO_CODECS = frozenset({"aac", "mp3"})
DOLBY_AUDIO_CODECS = frozenset({"ac3", "eac3"})
DTS_AUDIO_CODECS = frozenset({"dts"})
DIRECT_PROTOCOLS = frozenset({"file", "http"})


class AudioOutputMode(str, Enum):
    STEREO = "stereo"
    DDPLUS = "ddplus"
    DTS = "dts"

    @property
    def rank(self) -> int:
        return list(AudioOutputMode).index(self)

    def at_least(self, other: AudioOutputMode) -> bool:
        return self.rank >= other.rank


@dataclass(frozen=True, slots=True)
class DeviceProfile:
    """Direct-play capabilities of the Roku player the previews are built for."""

    supports_ac3: bool = False
    supports_dts: bool = False

    @property
    def audio_codecs(self) -> frozenset[str]:
        codecs = set(BASE_AUDIO_CODECS)
        if self.supports_ac3:
            codecs |= DOLBY_AUDIO_CODECS
        if self.supports_dts:
            codecs |= DTS_AUDIO_CODECS
        return frozenset(codecs)


def build_device_profile(audio_mode: AudioOutputMode | str) -> DeviceProfile:
    mode = AudioOutputMode(audio_mode)
    return DeviceProfile(
        supports_ac3=mode.at_least(AudioOutputMode.DDPLUS),
        supports_dts=mode.at_least(AudioOutputMode.DTS),
    )


class StreamNegotiator(Protocol):
    def is_direct_stream(
        self,
        profile: DeviceProfile,
        max_bitrate: int | None,
        source: MediaSource,
        device_id: str,
        audio_stream_index: int,
    ) -> bool:
        ...


class DirectStreamNegotiator:
    """Decide whether a media source plays on the device without transcoding."""

    def is_direct_stream(
        self,
        profile: DeviceProfile,
        max_bitrate: int | None,
        source: MediaSource,
        device_id: str,
        audio_stream_index: int,
    ) -> bool:
        reason = self._transcode_reason(profile, max_bitrate, source, audio_stream_index)
        if reason is not None:
            logger.debug(
                "Media source %s requires transcoding for device %s: %s",
                source.source_id,
                device_id,
                reason,
            )
            return False
        return True

    def _transcode_reason(
        self,
        profile: DeviceProfile,
        max_bitrate: int | None,
        source: MediaSource,
        audio_stream_index: int,
    ) -> str | None:
        if source.protocol not in DIRECT_PROTOCOLS:
            return f"protocol {source.protocol!r} is not supported"
        if source.video_3d_format:
            return "3D video"
        if not _container_supported(source.container):
            return f"container {source.container!r} is not supported"
        if max_bitrate and source.bitrate and source.bitrate > max_bitrate:
            return f"bitrate {source.bitrate} exceeds {max_bitrate}"

        video = next((stream for stream in source.streams if stream.stream_type == "video"), None)
        if video is None:
            return "no video stream"
        if (video.codec or "").lower() not in DIRECT_PLAY_VIDEO_CODECS:
            return f"video codec {video.codec!r} is not supported"

        audio = next(
            (
                stream
                for stream in source.streams
                if stream.stream_type == "audio" and stream.index == audio_stream_index
            ),
            None,
        )
        if audio is not None and (audio.codec or "").lower() not in profile.audio_codecs:
            return f"audio codec {audio.codec!r} is not supported"
        return None


def _container_supported(container: str | None) -> bool:
    if not container:
        return False
    # ffprobe reports comma-separated aliases, e.g. "mov,mp4,m4a,3gp,3g2,mj2"
    return any(part.strip().lower() in DIRECT_PLAY_CONTAINERS for part in container.split(","))
