from __future__ import annotations

import json
import subprocess
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from trickplay.models import MediaSource, MediaStream, VideoAsset

_SHARED_LIBRARY_MARKER = "error while loading shared libraries"


def probe_media_source(
    source_path: str | Path,
    source_id: str,
    ffprobe_binary: str = "ffprobe",
) -> MediaSource:
    """Describe a local media file as a MediaSource via ffprobe."""

    resolved = Path(source_path).expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"Media file not found: {resolved}")

    payload = _run_ffprobe(resolved, ffprobe_binary=ffprobe_binary)
    return _media_source_from_payload(resolved, source_id, payload)


def video_asset_from_file(
    source_path: str | Path,
    item_id: str | None = None,
    ffprobe_binary: str = "ffprobe",
) -> VideoAsset:
    """Build a single-source VideoAsset for a local file."""

    resolved = Path(source_path).expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"Media file not found: {resolved}")

    resolved_id = item_id or uuid.uuid5(uuid.NAMESPACE_URL, resolved.as_uri()).hex
    modified = datetime.fromtimestamp(resolved.stat().st_mtime, tz=timezone.utc)
    source = probe_media_source(resolved, source_id=resolved_id, ffprobe_binary=ffprobe_binary)
    return VideoAsset(item_id=resolved_id, date_modified=modified, media_sources=[source])


def _run_ffprobe(media_path: Path, ffprobe_binary: str = "ffprobe") -> dict[str, Any]:
    command = [
        ffprobe_binary,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(media_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if _SHARED_LIBRARY_MARKER in stderr:
            raise RuntimeError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise RuntimeError(f"ffprobe failed while probing media file: {media_path}.{details}") from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError("ffprobe returned invalid JSON output.") from exc


def _media_source_from_payload(media_path: Path, source_id: str, payload: dict[str, Any]) -> MediaSource:
    format_entry = payload.get("format", {})
    streams = [
        stream
        for stream in (_normalize_stream(entry) for entry in payload.get("streams", []))
        if stream is not None
    ]
    return MediaSource(
        source_id=source_id,
        path=str(media_path),
        protocol="file",
        video_3d_format=_stereo_mode(payload.get("streams", [])),
        streams=streams,
        container=format_entry.get("format_name"),
        bitrate=_to_int(format_entry.get("bit_rate")),
    )


def _normalize_stream(stream: dict[str, Any]) -> MediaStream | None:
    codec_type = stream.get("codec_type")
    if codec_type not in {"video", "audio", "subtitle"}:
        return None
    return MediaStream(
        index=int(stream.get("index", 0)),
        stream_type=codec_type,
        codec=stream.get("codec_name"),
        width=_to_int(stream.get("width")),
        height=_to_int(stream.get("height")),
        bitrate=_to_int(stream.get("bit_rate")),
        channels=_to_int(stream.get("channels")),
    )


def _stereo_mode(streams: list[dict[str, Any]]) -> str | None:
    for stream in streams:
        if stream.get("codec_type") != "video":
            continue
        mode = (stream.get("tags") or {}).get("stereo_mode")
        if mode and mode != "mono":
            return mode
    return None


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
