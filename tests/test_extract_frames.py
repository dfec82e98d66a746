from __future__ import annotations

import subprocess
import threading
from pathlib import Path

import pytest

from trickplay.errors import BuildCancelledError, FrameExtractionError
from trickplay.frames.store import list_frames
from trickplay.ingest import extract_frames
from trickplay.ingest.extract_frames import FfmpegFrameExtractor


class _FakeStderr:
    def __init__(self, text: str) -> None:
        self._text = text

    def read(self) -> str:
        return self._text

    def close(self) -> None:
        pass


class _FakeProcess:
    def __init__(
        self,
        return_code: int = 0,
        stderr: str = "",
        hang: bool = False,
        interrupt: bool = False,
    ) -> None:
        self.return_code = return_code
        self.stderr = _FakeStderr(stderr)
        self.hang = hang
        self.interrupt = interrupt
        self.killed = False

    def wait(self, timeout: float | None = None) -> int:
        if self.interrupt and not self.killed:
            raise KeyboardInterrupt
        if self.hang and not self.killed:
            raise subprocess.TimeoutExpired(cmd="ffmpeg", timeout=timeout or 0)
        return -9 if self.killed else self.return_code

    def poll(self) -> int | None:
        if self.killed:
            return -9
        return None if (self.hang or self.interrupt) else self.return_code

    def kill(self) -> None:
        self.killed = True


def test_build_command_samples_interval_and_scales(tmp_path: Path) -> None:
    command = FfmpegFrameExtractor(ffmpeg_binary="/opt/ffmpeg", jpeg_quality=3).build_command(
        input_argument="/videos/movie.mkv",
        video_3d_format=None,
        interval_seconds=10,
        output_pattern=tmp_path / "img_%08d.jpg",
        width=320,
    )

    assert command[0] == "/opt/ffmpeg"
    assert command[command.index("-i") + 1] == "/videos/movie.mkv"
    assert command[command.index("-vf") + 1] == "fps=1/10,scale=320:-2"
    assert command[command.index("-q:v") + 1] == "3"
    assert command[-1] == str(tmp_path / "img_%08d.jpg")


@pytest.mark.parametrize(
    ("video_3d_format", "crop"),
    [
        ("HalfSideBySide", "crop=iw/2:ih:0:0"),
        ("top_bottom", "crop=iw:ih/2:0:0"),
    ],
)
def test_build_command_crops_one_eye_for_3d(tmp_path: Path, video_3d_format: str, crop: str) -> None:
    command = FfmpegFrameExtractor().build_command(
        input_argument="in.mkv",
        video_3d_format=video_3d_format,
        interval_seconds=10,
        output_pattern=tmp_path / "img_%08d.jpg",
        width=240,
    )

    assert command[command.index("-vf") + 1] == f"{crop},fps=1/10,scale=240:-2"


def test_extract_runs_ffmpeg_into_output_dir(tmp_path: Path, monkeypatch) -> None:
    captured: dict[str, list[str]] = {}

    def _popen(command, **kwargs):
        captured["command"] = command
        return _FakeProcess()

    monkeypatch.setattr(extract_frames.subprocess, "Popen", _popen)
    output_dir = tmp_path / "frames"

    FfmpegFrameExtractor().extract_images_on_interval(
        input_path="http://server/stream.mkv",
        protocol="http",
        video_3d_format=None,
        interval_seconds=10,
        output_dir=output_dir,
        prefix="img_",
        width=320,
    )

    assert output_dir.is_dir()
    assert captured["command"][captured["command"].index("-i") + 1] == "http://server/stream.mkv"
    assert captured["command"][-1] == str(output_dir / "img_%08d.jpg")


def test_extract_wraps_missing_binary(tmp_path: Path, monkeypatch) -> None:
    def _raise_missing(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(extract_frames.subprocess, "Popen", _raise_missing)

    with pytest.raises(FrameExtractionError, match="ffmpeg executable was not found"):
        FfmpegFrameExtractor().extract_images_on_interval("in.mkv", "file", None, 10, tmp_path, "img_", 320)


def test_extract_reports_ffmpeg_stderr_on_failure(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(
        extract_frames.subprocess,
        "Popen",
        lambda *args, **kwargs: _FakeProcess(return_code=1, stderr="Invalid data found when processing input"),
    )

    with pytest.raises(FrameExtractionError, match="Invalid data found"):
        FfmpegFrameExtractor().extract_images_on_interval("in.mkv", "file", None, 10, tmp_path, "img_", 320)


def test_extract_kills_ffmpeg_on_cancel(tmp_path: Path, monkeypatch) -> None:
    process = _FakeProcess(hang=True)
    monkeypatch.setattr(extract_frames.subprocess, "Popen", lambda *args, **kwargs: process)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(BuildCancelledError):
        FfmpegFrameExtractor().extract_images_on_interval(
            "in.mkv", "file", None, 10, tmp_path, "img_", 320, cancel_event=cancel
        )

    assert process.killed is True


def test_extract_kills_ffmpeg_when_interrupted(tmp_path: Path, monkeypatch) -> None:
    process = _FakeProcess(interrupt=True)
    monkeypatch.setattr(extract_frames.subprocess, "Popen", lambda *args, **kwargs: process)

    with pytest.raises(KeyboardInterrupt):
        FfmpegFrameExtractor().extract_images_on_interval("in.mkv", "file", None, 10, tmp_path, "img_", 320)

    assert process.killed is True


def test_frame_numbering_keeps_chronological_filename_order(tmp_path: Path) -> None:
    names = [f"img_{extract_frames.FRAME_NUMBER_FORMAT % number}.jpg" for number in (9, 99_999, 100_000, 1_000_000)]
    for name in reversed(names):
        (tmp_path / name).write_bytes(b"x")

    assert [frame.name for frame in list_frames(tmp_path)] == names
