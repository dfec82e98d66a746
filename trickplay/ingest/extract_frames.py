from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from typing import Protocol

from trickplay.errors import BuildCancelledError, FrameExtractionError

logger = logging.getLogger(__name__)

CANCEL_POLL_SECONDS = 0.5
# wide enough that filename order stays chronological for any realistic duration
FRAME_NUMBER_FORMAT = "%08d"

_SIDE_BY_SIDE_FORMATS = {"halfsidebyside", "fullsidebyside", "left_right", "right_left"}
_TOP_BOTTOM_FORMATS = {"halftopandbottom", "fulltopandbottom", "top_bottom", "bottom_top"}


class FrameExtractor(Protocol):
    def extract_images_on_interval(
        self,
        input_path: str,
        protocol: str,
        video_3d_format: str | None,
        interval_seconds: float,
        output_dir: Path,
        prefix: str,
        width: int,
        cancel_event: threading.Event | None = None,
    ) -> None:
        ...


class FfmpegFrameExtractor:
    """Sample one JPEG every ``interval_seconds`` with ffmpeg."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", jpeg_quality: int = 4) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.jpeg_quality = jpeg_quality

    def extract_images_on_interval(
        self,
        input_path: str,
        protocol: str,
        video_3d_format: str | None,
        interval_seconds: float,
        output_dir: Path,
        prefix: str,
        width: int,
        cancel_event: threading.Event | None = None,
    ) -> None:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        command = self.build_command(
            input_argument=_input_argument(input_path, protocol),
            video_3d_format=video_3d_format,
            interval_seconds=interval_seconds,
            output_pattern=output_dir / f"{prefix}{FRAME_NUMBER_FORMAT}.jpg",
            width=width,
        )
        logger.debug("Running %s", " ".join(command))
        self._run(command, cancel_event)

    def build_command(
        self,
        input_argument: str,
        video_3d_format: str | None,
        interval_seconds: float,
        output_pattern: Path,
        width: int,
    ) -> list[str]:
        filters = [_crop_filter(video_3d_format), f"fps=1/{interval_seconds:g}", f"scale={width}:-2"]
        return [
            self.ffmpeg_binary,
            "-v",
            "error",
            "-y",
            "-i",
            input_argument,
            "-an",
            "-sn",
            "-threads",
            "0",
            "-vf",
            ",".join(part for part in filters if part),
            "-q:v",
            str(self.jpeg_quality),
            "-f",
            "image2",
            str(output_pattern),
        ]

    def _run(self, command: list[str], cancel_event: threading.Event | None) -> None:
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as exc:
            raise FrameExtractionError(
                "ffmpeg executable was not found. Install FFmpeg so ffmpeg is available on PATH."
            ) from exc

        # stderr is drained on a thread so a chatty ffmpeg never blocks on a full pipe
        stderr_chunks: list[str] = []
        reader = threading.Thread(target=_drain, args=(process, stderr_chunks), daemon=True)
        reader.start()

        try:
            return_code = _wait_for_exit(process, cancel_event)
        except BaseException:
            # never leave ffmpeg writing into a directory the caller is about to clear
            if process.poll() is None:
                process.kill()
                process.wait()
            raise
        finally:
            reader.join()

        if return_code != 0:
            stderr = "".join(stderr_chunks).strip()
            details = f" ffmpeg stderr: {stderr}" if stderr else ""
            raise FrameExtractionError(f"ffmpeg frame extraction failed with exit code {return_code}.{details}")


def _wait_for_exit(process: subprocess.Popen, cancel_event: threading.Event | None) -> int:
    while True:
        try:
            return process.wait(timeout=CANCEL_POLL_SECONDS)
        except subprocess.TimeoutExpired:
            if cancel_event is not None and cancel_event.is_set():
                raise BuildCancelledError("Frame extraction cancelled.")


def _drain(process: subprocess.Popen, sink: list[str]) -> None:
    if process.stderr is None:
        return
    sink.append(process.stderr.read())
    process.stderr.close()


def _input_argument(input_path: str, protocol: str) -> str:
    if protocol == "file":
        return str(Path(input_path))
    return input_path


def _crop_filter(video_3d_format: str | None) -> str | None:
    if not video_3d_format:
        return None
    normalized = video_3d_format.replace(" ", "").lower()
    if normalized in _SIDE_BY_SIDE_FORMATS:
        return "crop=iw/2:ih:0:0"
    if normalized in _TOP_BOTTOM_FORMATS:
        return "crop=iw:ih/2:0:0"
    return None
