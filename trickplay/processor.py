from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path

from trickplay.bif.writer import write_bif_file
from trickplay.build_gate import BuildGate
from trickplay.config import Settings
from trickplay.errors import BuildCancelledError
from trickplay.frames.store import clear_frames, list_frames
from trickplay.ingest.extract_frames import FrameExtractor
from trickplay.models import BuildResult, CacheKey, MediaSource, VideoAsset, item_modifier
from trickplay.stream.negotiation import StreamNegotiator, build_device_profile

logger = logging.getLogger(__name__)

FRAME_INTERVAL_SECONDS = 10
FRAME_PREFIX = "img_"


class VideoProcessor:
    """Build and cache BIF containers for every direct-streamable source of an asset."""

    def __init__(
        self,
        settings: Settings,
        extractor: FrameExtractor,
        negotiator: StreamNegotiator,
        gate: BuildGate | None = None,
    ) -> None:
        self.settings = settings
        self.extractor = extractor
        self.negotiator = negotiator
        self.gate = gate if gate is not None else BuildGate()

    @property
    def metadata_root(self) -> Path:
        return Path(self.settings.paths.metadata_root).expanduser()

    @property
    def cache_dir(self) -> Path:
        return Path(self.settings.paths.cache_dir).expanduser()

    def run(self, asset: VideoAsset, cancel_event: threading.Event | None = None) -> list[BuildResult]:
        """Ensure a container exists for each eligible (media source, width) pair.

        Failures are contained per pair and reported as ``failed`` results;
        cancellation aborts the remaining work for the asset.
        """

        modifier = item_modifier(asset.date_modified)
        profile = build_device_profile(self.settings.playback.audio_output_mode)
        widths = self.settings.thumbnails.enabled_widths()
        results: list[BuildResult] = []

        for source in asset.media_sources:
            _raise_if_cancelled(cancel_event)

            is_direct = self.negotiator.is_direct_stream(
                profile=profile,
                max_bitrate=self.settings.playback.max_bitrate,
                source=source,
                device_id=uuid.uuid4().hex,
                audio_stream_index=source.default_audio_stream_index(),
            )
            if not is_direct:
                logger.debug("Skipping media source %s of %s: not a direct stream", source.source_id, asset.item_id)
                continue

            for width in widths:
                _raise_if_cancelled(cancel_event)
                results.append(self._run_one(asset, modifier, source, width, cancel_event))

        return results

    def bif_path(self, asset: VideoAsset, media_source_id: str, width: int, modifier: str | None = None) -> Path:
        key = CacheKey(
            item_id=asset.item_id,
            modifier=modifier or item_modifier(asset.date_modified),
            media_source_id=media_source_id,
            width=width,
        )
        return key.path(asset.internal_metadata_path(self.metadata_root))

    def get_empty_bif(self, cancel_event: threading.Event | None = None) -> Path:
        """Return the path of a valid zero-image container, creating it once."""

        path = self.cache_dir / "roku-thumbs" / "empty.bif"
        self.gate.ensure(path, lambda: write_bif_file(path, []), cancel_event)
        return path

    def build_bif(
        self,
        path: Path,
        width: int,
        source: MediaSource,
        cancel_event: threading.Event | None = None,
    ) -> None:
        logger.info("Creating roku thumbnails at %s width, for %s", width, source.path)

        # the artifact directory is unique per cache key, so it doubles as the frame working directory
        directory = path.parent
        directory.mkdir(parents=True, exist_ok=True)
        clear_frames(directory)

        try:
            self.extractor.extract_images_on_interval(
                input_path=source.path,
                protocol=source.protocol,
                video_3d_format=source.video_3d_format,
                interval_seconds=FRAME_INTERVAL_SECONDS,
                output_dir=directory,
                prefix=FRAME_PREFIX,
                width=width,
                cancel_event=cancel_event,
            )
            frames = list_frames(directory)
            write_bif_file(path, frames)
            logger.info("Wrote %d thumbnail(s) to %s", len(frames), path)
        finally:
            clear_frames(directory)

    def _run_one(
        self,
        asset: VideoAsset,
        modifier: str,
        source: MediaSource,
        width: int,
        cancel_event: threading.Event | None,
    ) -> BuildResult:
        path = self.bif_path(asset, source.source_id, width, modifier=modifier)
        try:
            built = self.gate.ensure(
                path,
                lambda: self.build_bif(path, width, source, cancel_event),
                cancel_event,
            )
        except BuildCancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Failed to build thumbnails for %s (source %s, width %s): %s",
                asset.item_id,
                source.source_id,
                width,
                exc,
            )
            return BuildResult(
                media_source_id=source.source_id,
                width=width,
                path=str(path),
                status="failed",
                error=str(exc),
            )

        return BuildResult(
            media_source_id=source.source_id,
            width=width,
            path=str(path),
            status="built" if built else "cached",
        )


def _raise_if_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise BuildCancelledError("Thumbnail generation cancelled.")
