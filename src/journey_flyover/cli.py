"""CLI entry point for journey-flyover."""

import logging
import shutil

import click
from tqdm import tqdm

from .config import DEFAULT_CONFIG, TrajectoryConfig
from .errors import FlyoverError, InputError
from .job import JobRunner
from .renderer import GlobeRenderer
from .request import load_request

QUALITY_PRESETS = {
    "fast": {"fps": 15, "preset": "veryfast", "crf": 23},
    "medium": {"fps": 24, "preset": "medium", "crf": 18},
    "high": {"fps": 30, "preset": "slow", "crf": 15},
}

FORMAT_PRESETS = {
    "instagram": {"width": 1080, "height": 1920},
    "youtube": {"width": 1920, "height": 1080},
    "tiktok": {"width": 1080, "height": 1920},
    "square": {"width": 1080, "height": 1080},
}


def _bar_callback(bar: tqdm):
    def on_progress(current: int, total: int) -> None:
        bar.total = total
        bar.n = current
        bar.refresh()
    return on_progress


@click.command()
@click.argument("route_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("output", type=click.Path(dir_okay=False), default="journey.mp4")
@click.option("--width", default=None, type=int, help="Video width in pixels.")
@click.option("--height", default=None, type=int, help="Video height in pixels.")
@click.option("--fps", default=None, type=int, help="Frames per second (overrides quality preset).")
@click.option("--duration", default=None, type=float,
              help="Video duration in seconds (default: 8s per leg).")
@click.option("--frames-per-leg", default=None, type=int,
              help="Exact frames per leg (overrides --duration).")
@click.option("--quality", type=click.Choice(list(QUALITY_PRESETS)), default="medium",
              help="Quality preset: fast=15fps, medium=24fps, high=30fps.")
@click.option("--format", "video_format", type=click.Choice(list(FORMAT_PRESETS)),
              default=None, help="Output format preset (overrides --width/--height).")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="JSON file overriding trajectory constants.")
@click.option("--auto-zoom/--no-auto-zoom", default=None,
              help="Pick each leg's cruise distance from its length.")
@click.option("--texture-zoom", default=3, show_default=True,
              help="Map tile zoom for the globe texture.")
@click.option("--no-texture", is_flag=True, help="Skip the satellite texture download.")
@click.option("--ready-timeout", default=30.0, show_default=True,
              help="Seconds to wait for the globe before rendering degraded.")
@click.option("--work-dir", type=click.Path(file_okay=False), default=None,
              help="Directory for intermediate frame stores.")
@click.option("-v", "--verbose", is_flag=True, help="Log progress details.")
def main(
    route_file: str,
    output: str,
    width: int | None,
    height: int | None,
    fps: int | None,
    duration: float | None,
    frames_per_leg: int | None,
    quality: str,
    video_format: str | None,
    config_path: str | None,
    auto_zoom: bool | None,
    texture_zoom: int,
    no_texture: bool,
    ready_timeout: float,
    work_dir: str | None,
    verbose: bool,
) -> None:
    """Render a multi-stop globe journey from ROUTE_FILE (JSON) into OUTPUT."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Pre-flight: check FFmpeg
    if not shutil.which("ffmpeg"):
        raise click.UsageError(
            "FFmpeg not found. Install it:\n"
            "  macOS:   brew install ffmpeg\n"
            "  Ubuntu:  sudo apt install ffmpeg\n"
            "  Windows: https://ffmpeg.org/download.html"
        )

    try:
        config = TrajectoryConfig.from_json(config_path) if config_path else DEFAULT_CONFIG
        if auto_zoom is not None:
            config = TrajectoryConfig.from_dict({**config.to_dict(), "auto_cruise": auto_zoom})

        click.echo(f"Loading route: {route_file}")
        request = load_request(route_file)
    except InputError as e:
        raise click.UsageError(str(e)) from None

    # Command line beats the route file, which beats the presets
    if video_format:
        fmt = FORMAT_PRESETS[video_format]
        width, height = fmt["width"], fmt["height"]
    width = width or request.width or FORMAT_PRESETS["youtube"]["width"]
    height = height or request.height or FORMAT_PRESETS["youtube"]["height"]

    preset = QUALITY_PRESETS[quality]
    effective_fps = fps or request.fps or preset["fps"]
    if duration is not None:
        request.duration = duration
    if frames_per_leg is not None:
        request.frames_per_leg = frames_per_leg

    route = request.route
    try:
        budget = request.budget(effective_fps)
    except InputError as e:
        raise click.UsageError(str(e)) from None
    total_frames = sum(budget)
    for leg in route.legs:
        click.echo(f"  {leg.start.name} -> {leg.end.name}: {leg.mode}, {leg.distance_km:.0f} km")
    click.echo(
        f"Quality: {quality} | {total_frames} frames at {width}x{height}, "
        f"{effective_fps}fps ({total_frames / effective_fps:.1f}s)"
    )

    tile_bar = None
    if not no_texture:
        tile_bar = tqdm(total=1, unit="tile", desc="Downloading map tiles", leave=False)
    renderer = GlobeRenderer(
        route,
        width=width,
        height=height,
        config=config,
        texture_zoom=None if no_texture else texture_zoom,
        tile_callback=_bar_callback(tile_bar) if tile_bar is not None else None,
    )
    runner = JobRunner(
        renderer,
        renderer.capture,
        work_dir=work_dir,
        config=config,
        ready_timeout=ready_timeout,
        crf=preset["crf"],
        preset=preset["preset"],
    )

    render_bar = tqdm(total=total_frames, unit="frame", desc="Rendering")
    encode_bar = tqdm(total=total_frames, unit="frame", desc="Encoding", leave=False)
    try:
        renderer.start()
        job = runner.run(
            route,
            output,
            fps=effective_fps,
            budget=budget,
            progress_callback=_bar_callback(render_bar),
            encode_callback=_bar_callback(encode_bar),
        )
    except InputError as e:
        raise click.UsageError(str(e)) from None
    except FlyoverError as e:
        failed = e.job
        if failed is not None and failed.frame_dir is not None and failed.frame_dir.exists():
            raise click.ClickException(f"{e}\nFrames kept in: {failed.frame_dir}") from None
        raise click.ClickException(str(e)) from None
    finally:
        for bar in (tile_bar, render_bar, encode_bar):
            if bar is not None:
                bar.close()
        renderer.close()

    for warning in job.warnings:
        click.echo(f"Warning: {warning}", err=True)
    click.echo(f"Video saved to: {job.artifact}")


if __name__ == "__main__":
    main()
