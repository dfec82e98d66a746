from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from trickplay.ingest.probe import _run_ffprobe, probe_media_source, video_asset_from_file

_FFPROBE_PAYLOAD = {
    "format": {"format_name": "matroska,webm", "bit_rate": "5400000", "duration": "3600.0"},
    "streams": [
        {"index": 0, "codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080, "tags": {}},
        {"index": 1, "codec_type": "audio", "codec_name": "eac3", "channels": 6, "bit_rate": "640000"},
        {"index": 2, "codec_type": "subtitle", "codec_name": "subrip"},
        {"index": 3, "codec_type": "attachment", "codec_name": "ttf"},
    ],
}


def _completed(payload: dict) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["ffprobe"], returncode=0, stdout=json.dumps(payload), stderr="")


def test_run_ffprobe_wraps_missing_binary_error(tmp_path: Path) -> None:
    vod_path = tmp_path / "sample.mkv"
    vod_path.write_bytes(b"data")

    def _raise_missing(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("ffprobe")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_missing)
        with pytest.raises(RuntimeError, match="ffprobe executable was not found"):
            _run_ffprobe(vod_path)


def test_run_ffprobe_reports_shared_library_issue(tmp_path: Path) -> None:
    vod_path = tmp_path / "sample.mkv"
    vod_path.write_bytes(b"data")

    command = ["ffprobe", str(vod_path)]

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=127,
            cmd=command,
            output="",
            stderr=(
                "ffprobe: error while loading shared libraries: "
                "libSvtAv1Enc.so.4: cannot open shared object file: No such file or directory"
            ),
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(RuntimeError, match="failed to start because required shared libraries are missing"):
            _run_ffprobe(vod_path)


def test_run_ffprobe_wraps_other_called_process_error(tmp_path: Path) -> None:
    vod_path = tmp_path / "sample.mkv"
    vod_path.write_bytes(b"data")

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=1,
            cmd=["ffprobe", str(vod_path)],
            output="",
            stderr="invalid data found when processing input",
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(RuntimeError, match="ffprobe failed while probing media file"):
            _run_ffprobe(vod_path)


def test_probe_media_source_maps_streams(tmp_path: Path, monkeypatch) -> None:
    vod_path = tmp_path / "movie.mkv"
    vod_path.write_bytes(b"data")
    monkeypatch.setattr(subprocess, "run", lambda *args, **kwargs: _completed(_FFPROBE_PAYLOAD))

    source = probe_media_source(vod_path, source_id="src-1")

    assert source.source_id == "src-1"
    assert source.path == str(vod_path.resolve())
    assert source.protocol == "file"
    assert source.container == "matroska,webm"
    assert source.bitrate == 5_400_000
    assert source.video_3d_format is None
    assert [(stream.index, stream.stream_type, stream.codec) for stream in source.streams] == [
        (0, "video", "h264"),
        (1, "audio", "eac3"),
        (2, "subtitle", "subrip"),
    ]
    assert source.streams[1].channels == 6


def test_probe_media_source_detects_stereo_mode(tmp_path: Path, monkeypatch) -> None:
    vod_path = tmp_path / "movie3d.mkv"
    vod_path.write_bytes(b"data")
    payload = json.loads(json.dumps(_FFPROBE_PAYLOAD))
    payload["streams"][0]["tags"] = {"stereo_mode": "left_right"}
    monkeypatch.setattr(subprocess, "run", lambda *args, **kwargs: _completed(payload))

    assert probe_media_source(vod_path, source_id="s").video_3d_format == "left_right"


def test_video_asset_from_file_is_stable(tmp_path: Path, monkeypatch) -> None:
    vod_path = tmp_path / "movie.mkv"
    vod_path.write_bytes(b"data")
    monkeypatch.setattr(subprocess, "run", lambda *args, **kwargs: _completed(_FFPROBE_PAYLOAD))

    first = video_asset_from_file(vod_path)
    second = video_asset_from_file(vod_path)
    named = video_asset_from_file(vod_path, item_id="custom")

    assert first.item_id == second.item_id
    assert first.date_modified == second.date_modified
    assert first.media_sources[0].source_id == first.item_id
    assert named.item_id == "custom"


def test_video_asset_from_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Media file not found"):
        video_asset_from_file(tmp_path / "absent.mkv")
