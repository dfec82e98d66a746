from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from trickplay.stream.negotiation import AudioOutputMode

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "TRICKPLAY_"


class PathSettings(BaseModel):
    metadata_root: Path = Path("data/metadata")
    cache_dir: Path = Path("data/cache")


class ThumbnailSettings(BaseModel):
    enable_hd: bool = True
    enable_sd: bool = False

    def enabled_widths(self) -> list[int]:
        widths: list[int] = []
        if self.enable_hd:
            widths.append(320)
        if self.enable_sd:
            widths.append(240)
        return widths


class PlaybackSettings(BaseModel):
    audio_output_mode: AudioOutputMode = AudioOutputMode.STEREO
    max_bitrate: int | None = None


class ExtractorSettings(BaseModel):
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    jpeg_quality: int = 4


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Path | None = None


class Settings(BaseModel):
    paths: PathSettings = Field(default_factory=PathSettings)
    thumbnails: ThumbnailSettings = Field(default_factory=ThumbnailSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)
    extractor: ExtractorSettings = Field(default_factory=ExtractorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    if existing_value is None and raw_value.lower() in {"", "none", "null"}:
        return None
    return raw_value
