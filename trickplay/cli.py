from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from trickplay.bif.reader import load_bif
from trickplay.config import Settings, load_settings
from trickplay.ingest.extract_frames import FfmpegFrameExtractor
from trickplay.ingest.probe import video_asset_from_file
from trickplay.logging_config import configure_logging
from trickplay.processor import VideoProcessor
from trickplay.stream.negotiation import DirectStreamNegotiator

app = typer.Typer(help="Roku trickplay (BIF) thumbnail builder.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="TRICKPLAY_CONFIG",
    help="Path to YAML configuration file.",
)


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _run_cancellable(work: Callable[[], T], cancel_event: threading.Event) -> T:
    """Run ``work`` on a worker thread so Ctrl-C can signal it to stop cleanly."""

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="trickplay-build") as executor:
        future = executor.submit(work)
        try:
            return future.result()
        except KeyboardInterrupt:
            # the worker observes the event, kills ffmpeg and unwinds before shutdown returns
            cancel_event.set()
            raise


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _build_processor(settings: Settings) -> VideoProcessor:
    return VideoProcessor(
        settings=settings,
        extractor=FfmpegFrameExtractor(
            ffmpeg_binary=settings.extractor.ffmpeg_binary,
            jpeg_quality=settings.extractor.jpeg_quality,
        ),
        negotiator=DirectStreamNegotiator(),
    )


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("build")
def build(
    video_path: str,
    item_id: str | None = typer.Option(None, help="Library item id. Defaults to a stable id derived from the path."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Probe a video file and build its BIF containers."""

    settings = _bootstrap(config_path)
    processor = _build_processor(settings)
    cancel_event = threading.Event()
    total_steps = 2

    try:
        asset = _run_with_progress(
            1,
            total_steps,
            "Probe media",
            lambda: video_asset_from_file(
                video_path,
                item_id=item_id,
                ffprobe_binary=settings.extractor.ffprobe_binary,
            ),
        )
        results = _run_with_progress(
            2,
            total_steps,
            "Build thumbnails",
            lambda: _run_cancellable(lambda: processor.run(asset, cancel_event=cancel_event), cancel_event),
        )
    except KeyboardInterrupt as exc:
        cancel_event.set()
        typer.echo("Cancelled.", err=True)
        raise typer.Exit(code=130) from exc
    except (RuntimeError, ValueError, FileNotFoundError) as exc:
        logger.error("Thumbnail build failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    failed = [result for result in results if result.status == "failed"]
    typer.echo(
        json.dumps(
            {
                "status": "failed" if failed else "ok",
                "item_id": asset.item_id,
                "video_path": video_path,
                "results": [asdict(result) for result in results],
            },
            indent=2,
        )
    )
    if failed:
        raise typer.Exit(code=1)


@app.command("empty")
def empty(config_path: Path = CONFIG_OPTION) -> None:
    """Create (once) and print the placeholder container with zero images."""

    settings = _bootstrap(config_path)
    try:
        path = _build_processor(settings).get_empty_bif()
    except RuntimeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(str(path))


@app.command("inspect")
def inspect(bif_path: Path = typer.Argument(..., help="Path to a .bif container.")) -> None:
    """Print the header and frame index of a BIF container."""

    try:
        index, _ = load_bif(bif_path)
    except (OSError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps({"path": str(bif_path), **index.to_dict()}, indent=2))


if __name__ == "__main__":
    app()
